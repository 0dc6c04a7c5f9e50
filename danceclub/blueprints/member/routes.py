from datetime import date, datetime
from flask import flash, jsonify, redirect, render_template, request, url_for
from flask_login import current_user, login_required
from ...extensions import db
from ...models import Course, CourseSession
from ...services import ServiceError, get_system_config
from ...services.cards import (cancel_card_order, create_card_order, get_card_price_for_user,
                               get_user_card_orders, get_user_card_transactions, submit_remittance_info)
from ...services.enrollment import get_transfer_candidates, get_user_enrollments
from ...services.members import change_password
from ...services.requests import (get_makeup_targets, get_quota_summary, get_user_pending_requests,
                                  get_user_slot_statuses, submit_leave_request, submit_makeup_request,
                                  submit_transfer_request)
from . import bp

def _parse_date(raw):
    try:
        return datetime.strptime(raw or "", "%Y-%m-%d").date()
    except ValueError:
        return None

@bp.get("/")
@login_required
def dashboard():
    enrollments = get_user_enrollments(current_user.id)
    pending = get_user_pending_requests(current_user.id)
    return render_template("dashboard.html",
                           enrollments=enrollments,
                           pending_count=sum(len(v) for v in pending.values()))

@bp.get("/courses")
@login_required
def my_courses():
    enrollments = get_user_enrollments(current_user.id)
    today = date.today()
    details = {}
    for en in enrollments:
        if en.status != "enrolled" or en.type != "full":
            continue
        sessions = en.course.sessions
        details[en.id] = {
            "sessions": sessions,
            "slots": get_user_slot_statuses(current_user.id, [s.id for s in sessions]),
            "quota": get_quota_summary(current_user.id, en.course),
            "targets": get_makeup_targets(en.course, today),
        }
    return render_template("my_courses.html", enrollments=enrollments, details=details, today=today)

# ---------- Requests ----------
@bp.post("/courses/<int:course_id>/leave")
@login_required
def request_leave(course_id):
    session_id = request.form.get("session_id", type=int)
    reason = (request.form.get("reason") or "").strip()
    try:
        flash(submit_leave_request(current_user, course_id, session_id, reason), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("member.my_courses"))

@bp.post("/courses/<int:course_id>/makeup")
@login_required
def request_makeup(course_id):
    original_session_id = request.form.get("original_session_id", type=int)
    target_session_id = request.form.get("target_session_id", type=int)
    target_course_id = request.form.get("target_course_id", type=int)
    if target_course_id is None and target_session_id:
        target = db.session.get(CourseSession, target_session_id)
        target_course_id = target.course_id if target else None
    try:
        flash(submit_makeup_request(current_user, course_id, original_session_id,
                                    target_course_id, target_session_id), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("member.my_courses"))

@bp.post("/courses/<int:course_id>/transfer")
@login_required
def request_transfer(course_id):
    session_id = request.form.get("session_id", type=int)
    to_user_id = request.form.get("to_user_id", type=int)
    to_user_name = (request.form.get("to_user_name") or "").strip()
    try:
        flash(submit_transfer_request(current_user, course_id, session_id,
                                      to_user_id, to_user_name), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("member.my_courses"))

@bp.get("/courses/<int:course_id>/transfer-candidates")
@login_required
def transfer_candidates(course_id):
    db.get_or_404(Course, course_id)
    return jsonify(get_transfer_candidates(current_user, course_id))

# ---------- Cards ----------
@bp.get("/cards")
@login_required
def my_cards():
    config = get_system_config()
    return render_template("my_cards.html",
                           orders=get_user_card_orders(current_user.id),
                           transactions=get_user_card_transactions(current_user.id),
                           unit_price=get_card_price_for_user(current_user, config),
                           config=config)

@bp.post("/cards/orders")
@login_required
def create_order():
    quantity = request.form.get("quantity", type=int)
    try:
        _, msg = create_card_order(current_user, quantity)
        flash(msg, "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("member.my_cards"))

@bp.post("/cards/orders/<int:order_id>/remit")
@login_required
def remit(order_id):
    try:
        flash(submit_remittance_info(current_user, order_id,
                                     request.form.get("last5"),
                                     _parse_date(request.form.get("remittance_date")),
                                     (request.form.get("note") or "").strip()), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("member.my_cards"))

@bp.post("/cards/orders/<int:order_id>/cancel")
@login_required
def cancel_order(order_id):
    try:
        flash(cancel_card_order(current_user, order_id), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("member.my_cards"))

# ---------- Account ----------
@bp.route("/account", methods=["GET", "POST"])
@login_required
def account():
    if request.method == "POST":
        try:
            flash(change_password(current_user,
                                  request.form.get("old_password", ""),
                                  request.form.get("new_password", ""),
                                  request.form.get("confirm_password", "")), "success")
            return redirect(url_for("member.account"))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "error")
    return render_template("account.html", user=current_user)
