from flask import abort, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required
from ...extensions import db
from ...models import CourseGroup
from ...services import ServiceError
from ...services.courses import enrolled_counts, get_course_detail, get_course_groups, get_courses_by_group
from ...services.enrollment import (batch_enroll_in_courses, batch_enroll_in_sessions, cancel_enrollment,
                                    enroll_in_course, get_course_roster, get_course_waitlist,
                                    get_user_enrollment_status)
from ...services.requests import get_quota_summary
from . import bp

@bp.get("/")
@login_required
def groups():
    return render_template("course_groups.html", groups=get_course_groups())

@bp.get("/groups/<int:group_id>")
@login_required
def group_detail(group_id):
    group = db.session.get(CourseGroup, group_id) or abort(404)
    courses, counts = get_courses_by_group(group_id, include_drafts=current_user.is_admin)
    status = {c.id: get_user_enrollment_status(c.id, current_user.id) for c in courses}
    return render_template("course_group.html", group=group, courses=courses,
                           counts=counts, status=status)

@bp.get("/<int:course_id>")
@login_required
def course_detail(course_id):
    course = get_course_detail(course_id) or abort(404)
    if course.status == "draft" and not current_user.is_admin:
        abort(404)
    manages = current_user.is_admin or current_user.leads(course.id)
    status = get_user_enrollment_status(course.id, current_user.id)
    return render_template(
        "course_detail.html",
        course=course,
        enrolled=enrolled_counts([course.id]).get(course.id, 0),
        status=status,
        quota=get_quota_summary(current_user.id, course) if status["is_enrolled"] else None,
        roster=get_course_roster(course.id) if manages else [],
        waitlist=get_course_waitlist(course.id) if manages else [],
        manages=manages,
    )

@bp.post("/<int:course_id>/enroll")
@login_required
def enroll(course_id):
    type_ = request.form.get("type", "full")
    session_id = request.form.get("session_id", type=int)
    try:
        _, msg = enroll_in_course(current_user, course_id, type_, session_id)
        flash(msg, "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("courses.course_detail", course_id=course_id))

@bp.post("/<int:course_id>/sessions/enroll")
@login_required
def enroll_sessions(course_id):
    session_ids = [int(v) for v in request.form.getlist("session_ids") if v.isdigit()]
    try:
        flash(batch_enroll_in_sessions(current_user, course_id, session_ids), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("courses.course_detail", course_id=course_id))

@bp.post("/groups/<int:group_id>/enroll")
@login_required
def enroll_group(group_id):
    course_ids = [int(v) for v in request.form.getlist("course_ids") if v.isdigit()]
    try:
        flash(batch_enroll_in_courses(current_user, course_ids), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("courses.group_detail", group_id=group_id))

@bp.post("/<int:course_id>/cancel")
@login_required
def cancel(course_id):
    session_id = request.form.get("session_id", type=int)
    try:
        flash(cancel_enrollment(current_user, course_id, session_id), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("courses.course_detail", course_id=course_id))
