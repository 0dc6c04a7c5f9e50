from datetime import datetime, timedelta

import pytest

from danceclub.extensions import db
from danceclub.models import CardTransaction, Enrollment
from danceclub.services import ServiceError
from danceclub.services.enrollment import (batch_enroll_in_courses, batch_enroll_in_sessions,
                                           cancel_enrollment, enroll_in_course,
                                           get_course_waitlist, get_transfer_candidates,
                                           get_user_enrollment_status)


def test_full_enrollment_charges_every_session(make_profile, make_course):
    user = make_profile(balance=10)
    course = make_course(cards_per_session=2, n_sessions=4)

    enrollment, msg = enroll_in_course(user, course.id)

    assert enrollment.status == "enrolled"
    assert user.card_balance == 2
    tx = CardTransaction.query.filter_by(user_id=user.id).one()
    assert (tx.type, tx.amount, tx.balance_after) == ("deduct", -8, 2)
    assert tx.enrollment_id == enrollment.id
    assert "8 cards deducted" in msg


def test_insufficient_balance_is_refused(make_profile, make_course):
    user = make_profile(balance=3)
    course = make_course(n_sessions=4)

    with pytest.raises(ServiceError, match="Insufficient card balance"):
        enroll_in_course(user, course.id)
    assert user.card_balance == 3
    assert Enrollment.query.count() == 0


def test_duplicate_enrollment_is_refused(make_profile, make_course):
    user = make_profile(balance=20)
    course = make_course()
    enroll_in_course(user, course.id)

    with pytest.raises(ServiceError, match="already"):
        enroll_in_course(user, course.id)


def test_draft_and_closed_window_are_refused(make_profile, make_course):
    user = make_profile(balance=20)
    draft = make_course(status="draft")
    with pytest.raises(ServiceError, match="not open"):
        enroll_in_course(user, draft.id)

    course = make_course()
    course.enrollment_end_at = datetime.now() - timedelta(days=1)
    db.session.commit()
    with pytest.raises(ServiceError, match="closed"):
        enroll_in_course(user, course.id)


def test_single_session_enrollment(make_profile, make_course):
    user = make_profile(balance=5)
    course = make_course(cards_per_session=2)
    session = course.sessions[1]

    with pytest.raises(ServiceError, match="choose a session"):
        enroll_in_course(user, course.id, "single")

    enrollment, _ = enroll_in_course(user, course.id, "single", session.id)
    assert enrollment.session_id == session.id
    assert user.card_balance == 3
    status = get_user_enrollment_status(course.id, user.id)
    assert not status["is_enrolled"]
    assert status["single_session_ids"] == {session.id}


def test_full_course_goes_to_waitlist_without_charge(make_profile, make_course):
    course = make_course(capacity=1)
    first = make_profile(balance=10)
    second = make_profile(balance=10)
    enroll_in_course(first, course.id)

    enrollment, msg = enroll_in_course(second, course.id)

    assert enrollment.status == "waitlist"
    assert enrollment.waitlist_position == 1
    assert second.card_balance == 10
    assert "waitlist" in msg


def test_cancel_refunds_and_promotes_waitlist(make_profile, make_course):
    course = make_course(capacity=1)
    first = make_profile(balance=10)
    second = make_profile(balance=10)
    enroll_in_course(first, course.id)
    enroll_in_course(second, course.id)

    msg = cancel_enrollment(first, course.id)

    assert "4 cards refunded" in msg
    assert first.card_balance == 10
    promoted = Enrollment.query.filter_by(user_id=second.id).one()
    assert promoted.status == "enrolled"
    assert promoted.waitlist_position is None
    assert second.card_balance == 6


def test_promotion_skips_users_who_cannot_pay(make_profile, make_course):
    course = make_course(capacity=1)
    seated = make_profile(balance=10)
    broke = make_profile(balance=10)
    next_in_line = make_profile(balance=10)
    enroll_in_course(seated, course.id)
    enroll_in_course(broke, course.id)
    enroll_in_course(next_in_line, course.id)
    broke.card_balance = 0
    db.session.commit()

    cancel_enrollment(seated, course.id)

    assert Enrollment.query.filter_by(user_id=next_in_line.id).one().status == "enrolled"
    waiting = get_course_waitlist(course.id)
    assert [(e.user_id, e.waitlist_position) for e in waiting] == [(broke.id, 1)]


def test_leaving_the_waitlist_compacts_positions(make_profile, make_course):
    course = make_course(capacity=1)
    users = [make_profile(balance=10) for _ in range(4)]
    for u in users:
        enroll_in_course(u, course.id)

    cancel_enrollment(users[1], course.id)

    assert users[1].card_balance == 10
    assert [(e.user_id, e.waitlist_position) for e in get_course_waitlist(course.id)] == [
        (users[2].id, 1), (users[3].id, 2)]


def test_cancelled_enrollment_row_is_reused(make_profile, make_course):
    user = make_profile(balance=10)
    course = make_course()
    first, _ = enroll_in_course(user, course.id)
    cancel_enrollment(user, course.id)

    again, _ = enroll_in_course(user, course.id)

    assert again.id == first.id
    assert again.status == "enrolled"
    assert again.cancelled_at is None
    assert Enrollment.query.count() == 1


def test_cancel_without_enrollment(make_profile, make_course):
    with pytest.raises(ServiceError, match="not enrolled"):
        cancel_enrollment(make_profile(), make_course().id)


def test_batch_enrollment_waitlists_full_courses(make_profile, make_course, make_group):
    group = make_group()
    open_course = make_course(group=group, name="Bachata")
    full_course = make_course(group=group, name="Kizomba", capacity=1)
    enroll_in_course(make_profile(balance=10), full_course.id)
    user = make_profile(balance=10)

    msg = batch_enroll_in_courses(user, [open_course.id, full_course.id])

    assert "Enrolled in 1 courses, 4 cards deducted" in msg
    assert "Waitlisted for 1" in msg
    assert user.card_balance == 6
    assert get_user_enrollment_status(full_course.id, user.id)["waitlist_position"] == 1


def test_batch_enrollment_checks_total_cost(make_profile, make_course, make_group):
    group = make_group()
    courses = [make_course(group=group, name=n) for n in ("A", "B")]
    user = make_profile(balance=7)

    with pytest.raises(ServiceError, match="required: 8"):
        batch_enroll_in_courses(user, [c.id for c in courses])
    assert Enrollment.query.count() == 0


def test_batch_session_enrollment_skips_taken_sessions(make_profile, make_course):
    user = make_profile(balance=10)
    course = make_course()
    s1, s2, s3 = (s.id for s in course.sessions[:3])
    enroll_in_course(user, course.id, "single", s1)

    msg = batch_enroll_in_sessions(user, course.id, [s1, s2, s3])

    assert msg == "Enrolled in 2 sessions, 2 cards deducted."
    assert user.card_balance == 7


def test_transfer_candidates_exclude_the_actor(make_profile, make_course):
    course = make_course(capacity=1)
    actor = make_profile(balance=10, name="Actor")
    waiting = make_profile(balance=10, name="Waiting")
    enroll_in_course(actor, course.id)
    enroll_in_course(waiting, course.id)

    result = get_transfer_candidates(actor, course.id)

    assert [w["id"] for w in result["waitlist"]] == [waiting.id]
    assert actor.id not in {m["id"] for m in result["all_members"]}
