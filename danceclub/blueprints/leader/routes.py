from datetime import date
from flask import abort, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required
from danceclub.blueprints.auth.routes import role_required
from ...constants import ATTENDANCE_STATUSES
from ...extensions import db
from ...services import ServiceError
from ...services.attendance import get_session_rollcall, get_today_sessions, save_attendance
from ...services.requests import (get_reviewable_requests, review_leave_request, review_makeup_request,
                                  review_transfer_request)
from . import bp

REVIEWERS = {
    "leave": review_leave_request,
    "makeup": review_makeup_request,
    "transfer": review_transfer_request,
}

@bp.get("/rollcall")
@login_required
@role_required("leader", "admin")
def rollcall():
    today = date.today()
    return render_template("rollcall_today.html", sessions=get_today_sessions(current_user, today), today=today)

@bp.route("/sessions/<int:session_id>/rollcall", methods=["GET", "POST"])
@login_required
@role_required("leader", "admin")
def session_rollcall(session_id):
    try:
        session, rows = get_session_rollcall(session_id)
    except ServiceError:
        abort(404)
    if not (current_user.is_admin or current_user.leads(session.course_id)):
        abort(403)

    if request.method == "POST":
        records = []
        for row in rows:
            uid = row["user"].id
            status = request.form.get(f"status-{uid}")
            if not status:
                continue
            records.append({"user_id": uid, "status": status,
                            "note": (request.form.get(f"note-{uid}") or "").strip()})
        try:
            flash(save_attendance(current_user, session_id, records), "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "error")
        return redirect(url_for("leader.session_rollcall", session_id=session_id))

    return render_template("rollcall_session.html", session=session, rows=rows,
                           statuses=ATTENDANCE_STATUSES)

@bp.get("/approvals")
@login_required
@role_required("leader", "admin")
def approvals():
    return render_template("approvals.html", requests=get_reviewable_requests(current_user))

@bp.post("/approvals/<kind>/<int:request_id>")
@login_required
@role_required("leader", "admin")
def review(kind, request_id):
    reviewer = REVIEWERS.get(kind) or abort(404)
    decision = request.form.get("decision", "")
    note = (request.form.get("review_note") or "").strip()
    try:
        flash(reviewer(current_user, request_id, decision, note), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("leader.approvals"))
