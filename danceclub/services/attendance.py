import logging
from datetime import date, datetime

from sqlalchemy.orm import selectinload

from ..extensions import db
from ..constants import ATTENDANCE_STATUSES
from ..models import AttendanceRecord, Course, CourseLeader, CourseSession, Enrollment, Profile
from . import ServiceError, commit_or_raise, get_or_fail, require_course_manager

logger = logging.getLogger(__name__)


def upsert_attendance(session_id, user_id, status, marked_by_id, note=None, now=None):
    rec = AttendanceRecord.query.filter_by(session_id=session_id, user_id=user_id).first()
    if rec is None:
        rec = AttendanceRecord(session_id=session_id, user_id=user_id)
        db.session.add(rec)
    rec.status = status
    rec.note = note
    rec.marked_by_id = marked_by_id
    rec.marked_at = now or datetime.now()
    return rec


def get_attendance_status(session_id, user_id):
    rec = AttendanceRecord.query.filter_by(session_id=session_id, user_id=user_id).first()
    return rec.status if rec else None


def save_attendance(actor, session_id, records):
    session = get_or_fail(CourseSession, session_id, "Session does not exist")
    require_course_manager(actor, session.course_id)

    now = datetime.now()
    n = 0
    for r in records:
        status = r.get("status")
        if status not in ATTENDANCE_STATUSES:
            db.session.rollback()
            raise ServiceError(f"Unknown attendance status: {status}")
        upsert_attendance(session.id, r["user_id"], status, actor.id, r.get("note") or None, now)
        n += 1
    commit_or_raise("Saving the rollcall")
    logger.info("rollcall for session %s saved by %s (%s records)", session.id, actor.id, n)
    return "Rollcall saved"


def get_today_sessions(actor, today=None):
    today = today or date.today()
    q = (CourseSession.query.options(
            selectinload(CourseSession.course).selectinload(Course.group))
         .join(Course)
         .filter(CourseSession.session_date == today))
    if actor.role != "admin":
        q = q.join(CourseLeader, CourseLeader.course_id == Course.id).filter(
            CourseLeader.user_id == actor.id)
    return q.order_by(Course.start_time).all()


def get_session_rollcall(session_id):
    """
    Everyone expected at a session with their current status: full-term
    enrollees, single-session enrollees of this session, and anyone holding a
    record for it (makeup and transfer_in students).
    """
    session = get_or_fail(CourseSession, session_id, "Session does not exist")
    records = {r.user_id: r for r in AttendanceRecord.query.filter_by(session_id=session.id).all()}

    enrolled = (Enrollment.query.options(selectinload(Enrollment.user))
                .filter(Enrollment.course_id == session.course_id,
                        Enrollment.status == "enrolled")
                .all())
    rows, seen = [], set()
    for e in enrolled:
        if e.type == "single" and e.session_id != session.id:
            continue
        if e.user_id in seen:
            continue
        seen.add(e.user_id)
        rec = records.get(e.user_id)
        rows.append({"user": e.user, "type": e.type,
                     "status": rec.status if rec else "unmarked",
                     "note": rec.note if rec else None})

    extra_ids = [uid for uid in records if uid not in seen]
    if extra_ids:
        for p in Profile.query.filter(Profile.id.in_(extra_ids)).all():
            rec = records[p.id]
            rows.append({"user": p, "type": "visitor", "status": rec.status, "note": rec.note})
    rows.sort(key=lambda r: (r["type"] != "full", r["user"].name))
    return session, rows
