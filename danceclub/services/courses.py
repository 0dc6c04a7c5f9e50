import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload

from ..extensions import db
from ..constants import COURSE_STATUSES, COURSE_TYPES
from ..models import (AttendanceRecord, Course, CourseGroup, CourseLeader, CourseSession,
                      Enrollment, LeaveRequest, MakeupRequest, Profile, TransferRequest)
from . import ServiceError, commit_or_raise, get_or_fail, require_admin

logger = logging.getLogger(__name__)

COURSE_FIELDS = (
    "name", "description", "type", "teacher", "room", "start_time", "end_time",
    "capacity", "cards_per_session", "status", "enrollment_start_at",
    "enrollment_end_at", "wiki_url",
)


# ---------- Groups ----------
def create_course_group(actor, title, **fields):
    require_admin(actor, "create course periods")
    title = (title or "").strip()
    if not title:
        raise ServiceError("Title is required")
    group = CourseGroup(title=title, created_by_id=actor.id, **fields)
    db.session.add(group)
    commit_or_raise("Creating the course period")
    logger.info("course group %s created by %s", group.id, actor.id)
    return group, "Course period created"


def update_course_group(actor, group_id, title, **fields):
    require_admin(actor, "edit course periods")
    group = get_or_fail(CourseGroup, group_id, "Course period does not exist")
    title = (title or "").strip()
    if not title:
        raise ServiceError("Title is required")
    group.title = title
    for key, value in fields.items():
        setattr(group, key, value)
    commit_or_raise("Updating the course period")
    logger.info("course group %s updated by %s", group.id, actor.id)
    return "Course period updated"


# ---------- Courses ----------
def _validate_course(data):
    if not (data.get("name") or "").strip():
        raise ServiceError("Course name is required")
    if data.get("type") not in COURSE_TYPES:
        raise ServiceError("Unknown course type")
    if data.get("status") not in COURSE_STATUSES:
        raise ServiceError("Unknown course status")
    if data.get("start_time") is None or data.get("end_time") is None:
        raise ServiceError("Start and end time are required")
    if not data["start_time"] < data["end_time"]:
        raise ServiceError("End time must be later than start time")
    if not data.get("capacity") or data["capacity"] <= 0:
        raise ServiceError("Capacity must be a positive integer")
    if data.get("cards_per_session") is not None and data["cards_per_session"] < 0:
        raise ServiceError("Cards per session cannot be negative")


def create_course(actor, data):
    """
    Create a course and its sessions.

    ``data`` carries the course columns plus ``group_id``, ``sessions`` (a list
    of ``{"date": date}``, numbered in the given order) and an optional
    ``leader_id``.
    """
    require_admin(actor, "create courses")
    _validate_course(data)
    get_or_fail(CourseGroup, data.get("group_id"), "Course period does not exist")

    course = Course(group_id=data["group_id"], created_by_id=actor.id,
                    **{k: data[k] for k in COURSE_FIELDS if k in data})
    db.session.add(course)
    db.session.flush()
    for number, s in enumerate(data.get("sessions") or [], start=1):
        db.session.add(CourseSession(course_id=course.id, session_date=s["date"],
                                     session_number=number))
    if data.get("leader_id"):
        _assign_leader(actor, course, data["leader_id"])
    commit_or_raise("Creating the course")
    logger.info("course %s created by %s with %s sessions",
                course.id, actor.id, len(data.get("sessions") or []))
    return course, "Course created"


def _sessions_in_use(session_ids):
    if not session_ids:
        return False
    if Enrollment.query.filter(Enrollment.session_id.in_(session_ids),
                               Enrollment.status != "cancelled").count():
        return True
    if AttendanceRecord.query.filter(AttendanceRecord.session_id.in_(session_ids)).count():
        return True
    if LeaveRequest.query.filter(LeaveRequest.session_id.in_(session_ids)).count():
        return True
    if MakeupRequest.query.filter(or_(
            MakeupRequest.original_session_id.in_(session_ids),
            MakeupRequest.target_session_id.in_(session_ids))).count():
        return True
    return bool(TransferRequest.query.filter(TransferRequest.session_id.in_(session_ids)).count())


def update_course(actor, course_id, data):
    require_admin(actor, "edit courses")
    course = get_or_fail(Course, course_id, "Course does not exist")
    _validate_course(data)
    if data.get("group_id"):
        get_or_fail(CourseGroup, data["group_id"], "Course period does not exist")
        course.group_id = data["group_id"]
    for key in COURSE_FIELDS:
        if key in data:
            setattr(course, key, data[key])

    wanted = data.get("sessions") or []
    keep_ids = {s["id"] for s in wanted if s.get("id")}
    existing = {s.id: s for s in CourseSession.query.filter_by(course_id=course.id).all()}
    unknown = keep_ids - set(existing)
    if unknown:
        db.session.rollback()
        raise ServiceError("Session does not belong to this course")
    to_remove = [sid for sid in existing if sid not in keep_ids]
    if _sessions_in_use(to_remove):
        db.session.rollback()
        raise ServiceError("Sessions that already have enrollments, attendance, leave, makeup or "
                           "transfer records cannot be removed")

    for sid in to_remove:
        db.session.delete(existing[sid])
    for number, s in enumerate(wanted, start=1):
        if s.get("id"):
            row = existing[s["id"]]
            row.session_date = s["date"]
            row.session_number = number
        else:
            db.session.add(CourseSession(course_id=course.id, session_date=s["date"],
                                         session_number=number))

    if "leader_id" in data:
        current = CourseLeader.query.filter_by(course_id=course.id).first()
        leader_id = data["leader_id"]
        if current and current.user_id != leader_id:
            db.session.delete(current)
            db.session.flush()
        if leader_id and (current is None or current.user_id != leader_id):
            _assign_leader(actor, course, leader_id)

    commit_or_raise("Updating the course")
    logger.info("course %s updated by %s (%s sessions, %s removed)",
                course.id, actor.id, len(wanted), len(to_remove))
    return "Course updated"


# ---------- Leaders ----------
def _assign_leader(actor, course, user_id):
    target = get_or_fail(Profile, user_id, "Member does not exist")
    other = (CourseLeader.query.filter(CourseLeader.course_id == course.id,
                                       CourseLeader.user_id != target.id).first())
    if other is not None:
        raise ServiceError(f"A course can only have one leader. Remove {other.user.name} first.")
    link = CourseLeader.query.filter_by(course_id=course.id, user_id=target.id).first()
    if link is None:
        db.session.add(CourseLeader(course_id=course.id, user_id=target.id, assigned_by_id=actor.id))
    else:
        link.assigned_by_id = actor.id
    if target.role == "member":
        target.role = "leader"
    return target


def assign_course_leader(actor, course_id, user_id):
    require_admin(actor, "assign course leaders")
    course = get_or_fail(Course, course_id, "Course does not exist")
    try:
        target = _assign_leader(actor, course, user_id)
    except ServiceError:
        db.session.rollback()
        raise
    commit_or_raise("Assigning the leader")
    logger.info("user %s assigned as leader of course %s by %s", target.id, course.id, actor.id)
    return "Leader assigned"


def remove_course_leader(actor, course_id, user_id):
    require_admin(actor, "remove course leaders")
    link = CourseLeader.query.filter_by(course_id=course_id, user_id=user_id).first()
    if link is None:
        raise ServiceError("This member is not the course leader")
    db.session.delete(link)
    commit_or_raise("Removing the leader")
    logger.info("user %s removed as leader of course %s by %s", user_id, course_id, actor.id)
    return "Leader removed"


# ---------- Queries ----------
def get_course_groups():
    return (CourseGroup.query
            .order_by(CourseGroup.period_start.desc().nullslast(), CourseGroup.id.desc()).all())


def get_courses_by_group(group_id, include_drafts=False):
    q = (Course.query.options(selectinload(Course.leaders).selectinload(CourseLeader.user))
         .filter_by(group_id=group_id))
    if not include_drafts:
        q = q.filter(Course.status != "draft")
    courses = q.order_by(Course.start_time).all()
    counts = enrolled_counts([c.id for c in courses])
    return courses, counts


def enrolled_counts(course_ids):
    if not course_ids:
        return {}
    rows = (db.session.query(Enrollment.course_id, func.count(Enrollment.id))
            .filter(Enrollment.course_id.in_(course_ids), Enrollment.status == "enrolled")
            .group_by(Enrollment.course_id).all())
    return {cid: n for cid, n in rows}


def get_course_detail(course_id):
    return (Course.query.options(
                selectinload(Course.group),
                selectinload(Course.sessions),
                selectinload(Course.leaders).selectinload(CourseLeader.user))
            .filter_by(id=course_id).first())
