"""
Leave, makeup and transfer requests.

A student's slot in a session can carry only one of these intents at a time.
Submitting one auto-approves it, writes the matching attendance status and
removes the competing intents for the same slot. Leaders and admins can later
reject (or re-approve) a request, which rolls the attendance back.
"""
import logging
import math
from datetime import datetime, timedelta

from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..constants import (ATTENDANCE_LABELS, FREE_ATTENDANCE, OCCUPYING_ATTENDANCE,
                         REVIEW_DECISIONS, REVIEW_WINDOW_DAYS)
from ..models import (AttendanceRecord, Course, CourseLeader, CourseSession, Enrollment,
                      LeaveRequest, MakeupRequest, Profile, TransferRequest)
from . import (ServiceError, commit_or_raise, compute_makeup_quota, config_int, get_or_fail,
               get_system_config, is_before_class, require_course_manager)
from .attendance import get_attendance_status, upsert_attendance

logger = logging.getLogger(__name__)


# ---------- Quota ----------
def get_makeup_quota_used(user_id, course_id):
    used = (db.session.query(func.coalesce(func.sum(MakeupRequest.quota_used), 0.0))
            .filter(MakeupRequest.user_id == user_id,
                    MakeupRequest.original_course_id == course_id,
                    MakeupRequest.status == "approved")
            .scalar())
    return float(used)


def get_transfer_count(user_id, course_id):
    return TransferRequest.query.filter_by(
        from_user_id=user_id, course_id=course_id, status="approved").count()


def get_quota_summary(user_id, course):
    total = compute_makeup_quota(CourseSession.query.filter_by(course_id=course.id).count())
    used = get_makeup_quota_used(user_id, course.id) + get_transfer_count(user_id, course.id)
    return {"applies": course.type == "normal", "used": used, "total": total,
            "remaining": max(total - used, 0)}


def _check_quota(user_id, course):
    if course.type != "normal":
        return
    q = get_quota_summary(user_id, course)
    if q["used"] >= q["total"]:
        raise ServiceError(f"Makeup/transfer quota used up ({q['used']:g}/{q['total']})")


# ---------- Shared guards ----------
def _active_enrollment(user_id, course_id):
    # full-term rows sort before single-session ones
    return (Enrollment.query.filter_by(course_id=course_id, user_id=user_id, status="enrolled")
            .order_by(Enrollment.type.asc()).first())


def _session_of(course_id, session_id):
    session = db.session.get(CourseSession, session_id) if session_id else None
    if session is None or session.course_id != course_id:
        raise ServiceError("Session does not exist")
    return session


def _require_free_slot(session_id, user_id, allowed=FREE_ATTENDANCE, message=None):
    status = get_attendance_status(session_id, user_id)
    if status and status not in allowed:
        label = ATTENDANCE_LABELS.get(status, status)
        raise ServiceError(message or f"This session already has another active record ({label})")


def _drop_transfer_intents(session_id, user_id):
    for t in TransferRequest.query.filter_by(session_id=session_id, from_user_id=user_id).all():
        if t.to_user_id:
            AttendanceRecord.query.filter_by(session_id=session_id, user_id=t.to_user_id,
                                             status="transfer_in").delete()
        db.session.delete(t)


def _drop_makeup_intents(original_session_id, user_id):
    for m in MakeupRequest.query.filter_by(original_session_id=original_session_id,
                                           user_id=user_id).all():
        AttendanceRecord.query.filter_by(session_id=m.target_session_id, user_id=user_id,
                                         status="makeup").delete()
        db.session.delete(m)


def _drop_leave_intents(session_id, user_id):
    LeaveRequest.query.filter_by(session_id=session_id, user_id=user_id).delete()


def _check_decision(decision):
    if decision not in REVIEW_DECISIONS:
        raise ServiceError("Unknown review decision")


def _mark_reviewed(req, actor, decision, note, now):
    req.status = decision
    req.reviewed_by_id = actor.id
    req.reviewed_at = now
    req.review_note = note or None


# ---------- Leave ----------
def submit_leave_request(actor, course_id, session_id, reason=None, now=None):
    now = now or datetime.now()
    enrollment = _active_enrollment(actor.id, course_id)
    if enrollment is None:
        raise ServiceError("You are not enrolled in this course")
    if enrollment.type != "full":
        raise ServiceError("Single-session enrollments cannot request leave")
    _session_of(course_id, session_id)

    existing = LeaveRequest.query.filter_by(session_id=session_id, user_id=actor.id).first()
    if existing and existing.status == "pending":
        raise ServiceError("A leave request for this session is already under review")
    if TransferRequest.query.filter(TransferRequest.session_id == session_id,
                                    TransferRequest.from_user_id == actor.id,
                                    TransferRequest.status != "rejected").first():
        raise ServiceError("This session already has a transfer request")
    _require_free_slot(session_id, actor.id,
                       message="This session already has a special attendance status "
                               "(such as transfer or makeup)")

    if existing is None:
        existing = LeaveRequest(course_id=course_id, session_id=session_id, user_id=actor.id)
        db.session.add(existing)
    existing.course_id = course_id
    existing.reason = reason or None
    existing.status = "approved"
    existing.reviewed_by_id = None
    existing.reviewed_at = now
    existing.review_note = None
    existing.created_at = now

    _drop_transfer_intents(session_id, actor.id)
    _drop_makeup_intents(session_id, actor.id)
    upsert_attendance(session_id, actor.id, "leave", actor.id, now=now)
    commit_or_raise("Leave request")
    logger.info("user %s on leave for session %s", actor.id, session_id)
    return "Leave recorded and rollcall updated"


def review_leave_request(actor, request_id, decision, note=None, now=None):
    now = now or datetime.now()
    _check_decision(decision)
    req = get_or_fail(LeaveRequest, request_id, "Request not found")
    require_course_manager(actor, req.course_id)

    if decision == "approved":
        _require_free_slot(req.session_id, req.user_id, FREE_ATTENDANCE + ("leave",),
                           _reapprove_message(req.session_id, req.user_id))
    _mark_reviewed(req, actor, decision, note, now)

    if decision == "approved":
        upsert_attendance(req.session_id, req.user_id, "leave", actor.id, now=now)
        _drop_transfer_intents(req.session_id, req.user_id)
        _drop_makeup_intents(req.session_id, req.user_id)
    else:
        AttendanceRecord.query.filter_by(session_id=req.session_id, user_id=req.user_id,
                                         status="leave").delete()
    commit_or_raise("Review")
    logger.info("leave request %s %s by %s", req.id, decision, actor.id)
    return "Leave approved" if decision == "approved" else "Leave rejected"


def _reapprove_message(session_id, user_id):
    status = get_attendance_status(session_id, user_id)
    label = ATTENDANCE_LABELS.get(status, status)
    return (f"This session already has another active record ({label}); "
            f"resolve it before approving again")


# ---------- Makeup ----------
def submit_makeup_request(actor, original_course_id, original_session_id,
                          target_course_id, target_session_id, now=None):
    now = now or datetime.now()
    target = db.session.get(CourseSession, target_session_id) if target_session_id else None
    if target is None or target.course_id != target_course_id:
        raise ServiceError("Target session does not exist")
    original = db.session.get(Course, original_course_id) if original_course_id else None
    if original is None:
        raise ServiceError("Original course does not exist")
    _session_of(original_course_id, original_session_id)
    enrollment = _active_enrollment(actor.id, original_course_id)
    if enrollment is None:
        raise ServiceError("You are not enrolled in the original course")

    if Enrollment.query.filter_by(course_id=target_course_id, user_id=actor.id,
                                  status="enrolled").first():
        raise ServiceError("You are already enrolled in the target course, no makeup needed")
    if original.group_id != target.course.group_id:
        raise ServiceError("Makeups across periods are not supported, "
                           "please choose a course in the same period")
    if enrollment.type != "full":
        raise ServiceError("Single-session enrollments cannot request makeups")

    _check_quota(actor.id, original)
    _check_target_capacity(target)

    existing = MakeupRequest.query.filter_by(target_session_id=target_session_id,
                                             user_id=actor.id).first()
    if existing and existing.status == "pending":
        raise ServiceError("You already have a makeup request under review for this session")
    if TransferRequest.query.filter(TransferRequest.session_id == original_session_id,
                                    TransferRequest.from_user_id == actor.id,
                                    TransferRequest.status != "rejected").first():
        raise ServiceError("This session already has a transfer request")

    quota_used = 1
    if existing is None:
        existing = MakeupRequest(user_id=actor.id, target_session_id=target_session_id)
        db.session.add(existing)
    existing.original_course_id = original_course_id
    existing.original_session_id = original_session_id
    existing.target_course_id = target_course_id
    existing.status = "approved"
    existing.quota_used = quota_used
    existing.reviewed_by_id = None
    existing.reviewed_at = now
    existing.review_note = None
    existing.created_at = now

    _drop_leave_intents(original_session_id, actor.id)
    _drop_transfer_intents(original_session_id, actor.id)
    upsert_attendance(target_session_id, actor.id, "makeup", actor.id, now=now)
    commit_or_raise("Makeup request")
    logger.info("user %s makeup from session %s into session %s",
                actor.id, original_session_id, target_session_id)
    return f"Makeup booked! {quota_used} quota used and the target session roster updated."


def _check_target_capacity(target):
    capacity = target.course.capacity
    official = Enrollment.query.filter_by(course_id=target.course_id, status="enrolled").count()
    if official < capacity:
        return
    on_leave = AttendanceRecord.query.filter_by(session_id=target.id, status="leave").count()
    occupying = AttendanceRecord.query.filter(
        AttendanceRecord.session_id == target.id,
        AttendanceRecord.status.in_(OCCUPYING_ATTENDANCE)).count()
    if official - on_leave + occupying >= capacity:
        raise ServiceError("The target session is full")


def review_makeup_request(actor, request_id, decision, note=None, now=None):
    now = now or datetime.now()
    _check_decision(decision)
    req = get_or_fail(MakeupRequest, request_id, "Request not found")
    _require_manager_of_any(actor, req.original_course_id, req.target_course_id)

    if decision == "approved":
        status = get_attendance_status(req.target_session_id, req.user_id)
        if status and status not in FREE_ATTENDANCE + ("makeup",):
            label = ATTENDANCE_LABELS.get(status, status)
            raise ServiceError(f"The target session already has another active record ({label}); "
                               f"the makeup cannot be approved")
    _mark_reviewed(req, actor, decision, note, now)

    if decision == "approved":
        upsert_attendance(req.target_session_id, req.user_id, "makeup", actor.id, now=now)
    else:
        AttendanceRecord.query.filter_by(session_id=req.target_session_id,
                                         user_id=req.user_id).delete()
    commit_or_raise("Review")
    logger.info("makeup request %s %s by %s", req.id, decision, actor.id)
    return "Makeup approved" if decision == "approved" else "Makeup rejected"


def _require_manager_of_any(actor, *course_ids):
    last = None
    for cid in course_ids:
        try:
            require_course_manager(actor, cid)
            return
        except ServiceError as exc:
            last = exc
    raise last


# ---------- Transfer ----------
def extra_cards_for_transfer(sender, receiver, config=None, today=None):
    """Cards a non-member receiver owes for taking over a member-priced seat."""
    if receiver is None or sender.role == "guest" or receiver.is_active_member(today):
        return 0
    config = config or get_system_config()
    non_member = config_int(config, "card_price_non_member")
    member = config_int(config, "card_price_member")
    if non_member <= 0:
        return 0
    return max(math.ceil((non_member - member) / non_member), 0)


def submit_transfer_request(actor, course_id, session_id, to_user_id=None,
                            to_user_name=None, now=None):
    now = now or datetime.now()
    enrollment = _active_enrollment(actor.id, course_id)
    if enrollment is None:
        raise ServiceError("You are not enrolled in this course")
    if enrollment.type != "full":
        raise ServiceError("Single-session enrollments cannot transfer")

    session = _session_of(course_id, session_id)
    course = session.course
    if not is_before_class(session.session_date, course.start_time, now):
        raise ServiceError("The class has already started, it can no longer be transferred")

    receiver = None
    if to_user_id:
        receiver = get_or_fail(Profile, to_user_id, "Receiving member does not exist")
        if receiver.id == actor.id:
            raise ServiceError("You cannot transfer a session to yourself")
    elif not (to_user_name or "").strip():
        raise ServiceError("Please choose who receives the session")

    _check_quota(actor.id, course)

    existing = TransferRequest.query.filter_by(session_id=session_id, from_user_id=actor.id).first()
    if existing and existing.status == "pending":
        raise ServiceError("A transfer for this session is already under review")
    if LeaveRequest.query.filter(LeaveRequest.session_id == session_id,
                                 LeaveRequest.user_id == actor.id,
                                 LeaveRequest.status != "rejected").first():
        raise ServiceError("This session already has a leave request")
    _require_free_slot(session_id, actor.id,
                       message="This session already has a special attendance status "
                               "(such as transfer or makeup)")
    if MakeupRequest.query.filter(MakeupRequest.original_session_id == session_id,
                                  MakeupRequest.user_id == actor.id,
                                  MakeupRequest.status != "rejected").first():
        raise ServiceError("This session already has a makeup request")

    if existing is None:
        existing = TransferRequest(session_id=session_id, from_user_id=actor.id)
        db.session.add(existing)
    elif existing.to_user_id and existing.to_user_id != to_user_id:
        AttendanceRecord.query.filter_by(session_id=session_id, user_id=existing.to_user_id,
                                         status="transfer_in").delete()
    existing.course_id = course_id
    existing.to_user_id = receiver.id if receiver else None
    existing.to_user_name = (to_user_name or "").strip() or (receiver.name if receiver else None)
    existing.extra_cards_required = extra_cards_for_transfer(actor, receiver, today=now.date())
    existing.status = "approved"
    existing.reviewed_by_id = None
    existing.reviewed_at = now
    existing.review_note = None
    existing.created_at = now

    _drop_leave_intents(session_id, actor.id)
    _drop_makeup_intents(session_id, actor.id)
    upsert_attendance(session_id, actor.id, "transfer_out", actor.id, now=now)
    if receiver:
        upsert_attendance(session_id, receiver.id, "transfer_in", actor.id, now=now)
    commit_or_raise("Transfer request")
    logger.info("user %s transferred session %s to %s", actor.id, session_id,
                receiver.id if receiver else existing.to_user_name)
    return "Transfer recorded and rollcall updated"


def review_transfer_request(actor, request_id, decision, note=None, now=None):
    now = now or datetime.now()
    _check_decision(decision)
    req = get_or_fail(TransferRequest, request_id, "Request not found")
    require_course_manager(actor, req.course_id)

    if decision == "approved":
        status = get_attendance_status(req.session_id, req.from_user_id)
        if status and status not in FREE_ATTENDANCE + ("transfer_out",):
            raise ServiceError(f"The sender already has another record for this session "
                               f"({ATTENDANCE_LABELS.get(status, status)}); "
                               f"the transfer cannot be approved again")
        if req.to_user_id:
            status = get_attendance_status(req.session_id, req.to_user_id)
            if status and status not in FREE_ATTENDANCE + ("transfer_in",):
                raise ServiceError(f"The receiver already has another record for this session "
                                   f"({ATTENDANCE_LABELS.get(status, status)}); "
                                   f"the transfer cannot be approved again")
    _mark_reviewed(req, actor, decision, note, now)

    if decision == "approved":
        upsert_attendance(req.session_id, req.from_user_id, "transfer_out", actor.id, now=now)
        if req.to_user_id:
            upsert_attendance(req.session_id, req.to_user_id, "transfer_in", actor.id, now=now)
        _drop_leave_intents(req.session_id, req.from_user_id)
        _drop_makeup_intents(req.session_id, req.from_user_id)
    else:
        AttendanceRecord.query.filter_by(session_id=req.session_id, user_id=req.from_user_id,
                                         status="transfer_out").delete()
        if req.to_user_id:
            AttendanceRecord.query.filter_by(session_id=req.session_id, user_id=req.to_user_id,
                                             status="transfer_in").delete()
    commit_or_raise("Review")
    logger.info("transfer request %s %s by %s", req.id, decision, actor.id)
    return "Transfer approved" if decision == "approved" else "Transfer rejected"


# ---------- Listings ----------
def get_user_pending_requests(user_id):
    return {
        "leave": LeaveRequest.query.filter_by(user_id=user_id, status="pending").all(),
        "makeup": MakeupRequest.query.filter_by(user_id=user_id, status="pending").all(),
        "transfer": TransferRequest.query.filter_by(from_user_id=user_id, status="pending").all(),
    }


def get_reviewable_requests(actor, now=None, days=REVIEW_WINDOW_DAYS):
    """Requests from the last ``days`` days on courses the actor manages."""
    since = (now or datetime.now()) - timedelta(days=days)
    led = None
    if actor.role != "admin":
        led = [cid for (cid,) in db.session.query(CourseLeader.course_id)
               .filter(CourseLeader.user_id == actor.id).all()]

    leave_q = (LeaveRequest.query.options(selectinload(LeaveRequest.user),
                                          selectinload(LeaveRequest.session))
               .filter(LeaveRequest.created_at >= since))
    makeup_q = (MakeupRequest.query.options(selectinload(MakeupRequest.user),
                                            selectinload(MakeupRequest.original_session),
                                            selectinload(MakeupRequest.target_session))
                .filter(MakeupRequest.created_at >= since))
    transfer_q = (TransferRequest.query.options(selectinload(TransferRequest.from_user),
                                                selectinload(TransferRequest.to_user),
                                                selectinload(TransferRequest.session))
                  .filter(TransferRequest.created_at >= since))
    if led is not None:
        leave_q = leave_q.filter(LeaveRequest.course_id.in_(led))
        makeup_q = makeup_q.filter(or_(MakeupRequest.original_course_id.in_(led),
                                       MakeupRequest.target_course_id.in_(led)))
        transfer_q = transfer_q.filter(TransferRequest.course_id.in_(led))
    return {
        "leave": leave_q.order_by(LeaveRequest.created_at.desc()).all(),
        "makeup": makeup_q.order_by(MakeupRequest.created_at.desc()).all(),
        "transfer": transfer_q.order_by(TransferRequest.created_at.desc()).all(),
    }


def get_makeup_targets(course, today=None):
    """Upcoming sessions of the other published courses in the same period."""
    q = (CourseSession.query.options(selectinload(CourseSession.course))
         .join(Course)
         .filter(Course.group_id == course.group_id,
                 Course.id != course.id,
                 Course.status == "published",
                 CourseSession.is_cancelled.is_(False)))
    if today is not None:
        q = q.filter(CourseSession.session_date >= today)
    return q.order_by(CourseSession.session_date, Course.start_time).all()


def get_user_slot_statuses(user_id, session_ids):
    if not session_ids:
        return {}
    rows = AttendanceRecord.query.filter(AttendanceRecord.user_id == user_id,
                                         AttendanceRecord.session_id.in_(session_ids)).all()
    return {r.session_id: r.status for r in rows}
