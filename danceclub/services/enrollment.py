import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..models import CardTransaction, Course, CourseSession, Enrollment, Profile
from . import ServiceError, commit_or_raise, get_or_fail
from .cards import record_card_movement

logger = logging.getLogger(__name__)

TYPE_LABELS = {"full": "full-term", "single": "single-session"}


def enrolled_count(course_id):
    return Enrollment.query.filter_by(course_id=course_id, status="enrolled").count()


def waitlist_count(course_id):
    return Enrollment.query.filter_by(course_id=course_id, status="waitlist").count()


def sessions_count(course_id):
    return CourseSession.query.filter_by(course_id=course_id).count()


def enrollment_cost(course, type_, n_sessions=None):
    if type_ == "full":
        if n_sessions is None:
            n_sessions = sessions_count(course.id)
        return course.cards_per_session * n_sessions
    return course.cards_per_session


def _find_existing(user_id, course_id, type_, session_id):
    q = Enrollment.query.filter_by(course_id=course_id, user_id=user_id)
    if type_ == "single" and session_id:
        q = q.filter_by(session_id=session_id)
    else:
        q = q.filter_by(type="full")
    return q.first()


def _check_enrollment_window(course, now):
    if course.status != "published":
        raise ServiceError("This course is not open for enrollment")
    if course.enrollment_start_at and course.enrollment_start_at > now:
        raise ServiceError("Enrollment has not started yet")
    if course.enrollment_end_at and course.enrollment_end_at < now:
        raise ServiceError("Enrollment has closed")


def _place(enrollment, course_id, user_id, type_, session_id, status, now, position=None):
    if enrollment is None:
        enrollment = Enrollment(course_id=course_id, user_id=user_id)
        db.session.add(enrollment)
    enrollment.status = status
    enrollment.type = type_
    enrollment.session_id = session_id
    enrollment.waitlist_position = position
    enrollment.source = "self"
    enrollment.enrolled_at = now
    enrollment.cancelled_at = None
    return enrollment


def enroll_in_course(actor, course_id, type_="full", session_id=None, now=None):
    """
    Enroll the actor in a course, full-term or for one session.

    A full course puts the actor on the waitlist instead; waitlisted
    enrollments are not charged until promoted.
    """
    now = now or datetime.now()
    if type_ not in TYPE_LABELS:
        raise ServiceError("Unknown enrollment type")
    if type_ == "single" and not session_id:
        raise ServiceError("Please choose a session")

    existing = _find_existing(actor.id, course_id, type_, session_id)
    if existing and existing.status != "cancelled":
        raise ServiceError(f"You are already {TYPE_LABELS[existing.type]} enrolled in this course")

    course = get_or_fail(Course, course_id, "Course does not exist")
    _check_enrollment_window(course, now)
    if type_ == "single":
        session = db.session.get(CourseSession, session_id)
        if session is None or session.course_id != course.id:
            raise ServiceError("Session does not exist")
        if session.is_cancelled:
            raise ServiceError("This session has been cancelled")

    cost = enrollment_cost(course, type_)
    if actor.card_balance < cost:
        raise ServiceError(f"Insufficient card balance (balance: {actor.card_balance}, required: {cost})")

    if enrolled_count(course.id) >= course.capacity:
        position = waitlist_count(course.id) + 1
        enrollment = _place(existing, course.id, actor.id, type_, session_id, "waitlist", now, position)
        commit_or_raise("Joining the waitlist")
        logger.info("user %s waitlisted for course %s at position %s", actor.id, course.id, position)
        return enrollment, "Added to the waitlist (no cards are deducted while waiting)"

    enrollment = _place(existing, course.id, actor.id, type_, session_id, "enrolled", now)
    db.session.flush()
    record_card_movement(actor, "deduct", -cost,
                         f"{TYPE_LABELS[type_].capitalize()} enrollment: {course.name}",
                         enrollment=enrollment)
    commit_or_raise("Enrollment")
    logger.info("user %s enrolled (%s) in course %s, charged %s", actor.id, type_, course.id, cost)
    return enrollment, f"Enrolled! {cost} cards deducted, {actor.card_balance} remaining."


def batch_enroll_in_courses(actor, course_ids, now=None):
    now = now or datetime.now()
    course_ids = [cid for cid in course_ids if cid]
    if not course_ids:
        return "No courses selected"

    courses = (Course.query.filter(Course.id.in_(course_ids))
               .order_by(Course.start_time).all())
    rows = {e.course_id: e for e in Enrollment.query.filter(
        Enrollment.user_id == actor.id,
        Enrollment.type == "full",
        Enrollment.course_id.in_(course_ids),
    ).all()}
    to_enroll = [c for c in courses
                 if c.status == "published"
                 and (c.id not in rows or rows[c.id].status == "cancelled")]
    if not to_enroll:
        raise ServiceError("The selected courses are already enrolled or not open for enrollment")

    counts = dict(db.session.query(CourseSession.course_id, func.count(CourseSession.id))
                  .filter(CourseSession.course_id.in_([c.id for c in to_enroll]))
                  .group_by(CourseSession.course_id).all())
    seated, waiting = [], []
    for c in to_enroll:
        (waiting if enrolled_count(c.id) >= c.capacity else seated).append(c)

    total = sum(enrollment_cost(c, "full", counts.get(c.id, 0)) for c in seated)
    if actor.card_balance < total:
        raise ServiceError(f"Insufficient card balance (balance: {actor.card_balance}, required: {total})")

    for c in seated:
        enrollment = _place(rows.get(c.id), c.id, actor.id, "full", None, "enrolled", now)
        db.session.flush()
        record_card_movement(actor, "deduct", -enrollment_cost(c, "full", counts.get(c.id, 0)),
                             f"Full-term enrollment: {c.name}", enrollment=enrollment)
    for c in waiting:
        _place(rows.get(c.id), c.id, actor.id, "full", None, "waitlist", now,
               waitlist_count(c.id) + 1)
    commit_or_raise("Enrollment")
    logger.info("user %s batch-enrolled in %s courses (%s waitlisted), charged %s",
                actor.id, len(seated), len(waiting), total)

    msg = f"Enrolled in {len(seated)} courses, {total} cards deducted."
    if waiting:
        msg += f" Waitlisted for {len(waiting)} full courses."
    return msg


def batch_enroll_in_sessions(actor, course_id, session_ids, now=None):
    now = now or datetime.now()
    session_ids = [sid for sid in session_ids if sid]
    if not session_ids:
        return "No sessions selected"

    course = get_or_fail(Course, course_id, "Course does not exist")
    _check_enrollment_window(course, now)
    valid = {s.id for s in course.sessions if not s.is_cancelled}
    rows = {e.session_id: e for e in Enrollment.query.filter_by(
        course_id=course.id, user_id=actor.id, type="single").all()}
    to_enroll = [sid for sid in session_ids
                 if sid in valid and (sid not in rows or rows[sid].status == "cancelled")]
    if not to_enroll:
        raise ServiceError("The selected sessions are already enrolled")

    total = course.cards_per_session * len(to_enroll)
    if actor.card_balance < total:
        raise ServiceError(f"Insufficient card balance (balance: {actor.card_balance}, required: {total})")

    for sid in to_enroll:
        enrollment = _place(rows.get(sid), course.id, actor.id, "single", sid, "enrolled", now)
        db.session.flush()
        record_card_movement(actor, "deduct", -course.cards_per_session,
                             f"Single-session enrollment: {course.name} (session #{sid})",
                             enrollment=enrollment)
    commit_or_raise("Enrollment")
    logger.info("user %s enrolled in %s sessions of course %s", actor.id, len(to_enroll), course.id)
    return f"Enrolled in {len(to_enroll)} sessions, {total} cards deducted."


def _charged_for(enrollment):
    net = (db.session.query(func.coalesce(func.sum(CardTransaction.amount), 0))
           .filter(CardTransaction.enrollment_id == enrollment.id,
                   CardTransaction.type.in_(("deduct", "refund")))
           .scalar())
    return -int(net)


def _promote_waitlist(course, now):
    waiting = (Enrollment.query.options(selectinload(Enrollment.user))
               .filter_by(course_id=course.id, status="waitlist")
               .order_by(Enrollment.waitlist_position.asc(), Enrollment.enrolled_at.asc())
               .all())
    promoted = None
    for e in waiting:
        cost = enrollment_cost(course, e.type)
        if e.user.card_balance >= cost:
            e.status = "enrolled"
            e.waitlist_position = None
            e.enrolled_at = now
            record_card_movement(e.user, "deduct", -cost,
                                 f"Promoted from waitlist: {course.name}", enrollment=e)
            promoted = e
            break
        logger.debug("waitlisted user %s skipped, balance %s < %s", e.user_id, e.user.card_balance, cost)
    position = 1
    for e in waiting:
        if e is promoted:
            continue
        e.waitlist_position = position
        position += 1
    return promoted


def cancel_enrollment(actor, course_id, session_id=None, now=None):
    now = now or datetime.now()
    q = Enrollment.query.filter(
        Enrollment.course_id == course_id,
        Enrollment.user_id == actor.id,
        Enrollment.status != "cancelled",
    )
    if session_id:
        q = q.filter_by(type="single", session_id=session_id)
    else:
        q = q.filter_by(type="full")
    enrollment = q.first()
    if enrollment is None:
        raise ServiceError("You are not enrolled in this course")

    was_enrolled = enrollment.status == "enrolled"
    enrollment.status = "cancelled"
    enrollment.cancelled_at = now
    enrollment.waitlist_position = None

    refunded = _charged_for(enrollment)
    if refunded > 0:
        record_card_movement(actor, "refund", refunded,
                             f"Cancelled enrollment: {enrollment.course.name}", enrollment=enrollment)

    promoted = None
    if was_enrolled:
        db.session.flush()
        promoted = _promote_waitlist(enrollment.course, now)
    else:
        db.session.flush()
        _compact_waitlist(course_id)
    commit_or_raise("Cancellation")
    logger.info("user %s cancelled enrollment %s (refund %s, promoted %s)",
                actor.id, enrollment.id, refunded, promoted.user_id if promoted else None)
    if refunded:
        return f"Enrollment cancelled, {refunded} cards refunded"
    return "Enrollment cancelled"


def _compact_waitlist(course_id):
    waiting = (Enrollment.query.filter_by(course_id=course_id, status="waitlist")
               .order_by(Enrollment.waitlist_position.asc()).all())
    for i, e in enumerate(waiting, start=1):
        e.waitlist_position = i


def get_user_enrollment_status(course_id, user_id):
    rows = Enrollment.query.filter(
        Enrollment.course_id == course_id,
        Enrollment.user_id == user_id,
        Enrollment.status != "cancelled",
    ).all()
    full = next((e for e in rows if e.type == "full"), None)
    return {
        "is_enrolled": bool(full and full.status == "enrolled"),
        "is_waitlisted": bool(full and full.status == "waitlist"),
        "waitlist_position": full.waitlist_position if full else None,
        "enrollment": full,
        "single_session_ids": {e.session_id for e in rows if e.type == "single" and e.status == "enrolled"},
    }


def get_course_roster(course_id):
    return (Enrollment.query.options(selectinload(Enrollment.user))
            .filter_by(course_id=course_id, status="enrolled")
            .order_by(Enrollment.enrolled_at.asc()).all())


def get_course_waitlist(course_id):
    return (Enrollment.query.options(selectinload(Enrollment.user))
            .filter_by(course_id=course_id, status="waitlist")
            .order_by(Enrollment.waitlist_position.asc()).all())


def get_user_enrollments(user_id):
    return (Enrollment.query.options(
                selectinload(Enrollment.course).selectinload(Course.group),
                selectinload(Enrollment.course).selectinload(Course.leaders),
                selectinload(Enrollment.session))
            .filter(Enrollment.user_id == user_id,
                    Enrollment.status.in_(("enrolled", "waitlist")))
            .order_by(Enrollment.enrolled_at.desc()).all())


def get_transfer_candidates(actor, course_id):
    waitlist = [
        {"id": e.user.id, "name": e.user.name, "role": e.user.role, "position": e.waitlist_position or 0}
        for e in get_course_waitlist(course_id) if e.user_id != actor.id
    ]
    members = [
        {"id": p.id, "name": p.name, "role": p.role}
        for p in Profile.query.filter(Profile.id != actor.id).order_by(Profile.name).all()
    ]
    return {"waitlist": waitlist, "all_members": members}
