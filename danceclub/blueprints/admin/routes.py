from datetime import datetime
from flask import flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required
from danceclub.blueprints.auth.routes import role_required
from ...constants import COURSE_STATUSES, COURSE_TYPES, DEFAULT_SYSTEM_CONFIG, ROLES
from ...extensions import db
from ...models import Course, CourseGroup, Profile
from ...services import ServiceError, get_system_config
from ...services.cards import adjust_card_balance, cancel_card_order, confirm_card_order, get_pending_card_orders
from ...services.courses import (assign_course_leader, create_course, create_course_group, enrolled_counts,
                                 get_course_groups, get_courses_by_group, remove_course_leader, update_course,
                                 update_course_group)
from ...services.members import list_members, role_counts, update_member_profile, update_system_config
from . import bp

def _parse_time(raw, label):
    try:
        return datetime.strptime((raw or "").strip(), "%H:%M").time()
    except ValueError:
        raise ServiceError(f"{label} must be HH:MM")

def _parse_day(raw, label):
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        raise ServiceError(f"{label} must be YYYY-MM-DD")

def _parse_datetime(raw, label):
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%dT%H:%M")
    except ValueError:
        raise ServiceError(f"{label} must be YYYY-MM-DDTHH:MM")

def _group_form_fields():
    return {
        "description": (request.form.get("description") or "").strip() or None,
        "region": (request.form.get("region") or "HQ").strip() or "HQ",
        "period_start": _parse_day(request.form.get("period_start"), "Period start"),
        "period_end": _parse_day(request.form.get("period_end"), "Period end"),
    }

def _course_form_data():
    f = request.form
    cards = f.get("cards_per_session", type=int)
    ids = f.getlist("session_id")
    dates = f.getlist("session_date")
    sessions = []
    for i, raw in enumerate(dates):
        d = _parse_day(raw, "Session date")
        if d is None:
            continue
        sid = ids[i] if i < len(ids) else ""
        sessions.append({"id": int(sid) if sid.isdigit() else None, "date": d})
    return {
        "group_id": f.get("group_id", type=int),
        "name": (f.get("name") or "").strip(),
        "description": (f.get("description") or "").strip() or None,
        "type": f.get("type", "normal"),
        "teacher": (f.get("teacher") or "").strip(),
        "room": (f.get("room") or "").strip(),
        "start_time": _parse_time(f.get("start_time"), "Start time"),
        "end_time": _parse_time(f.get("end_time"), "End time"),
        "capacity": f.get("capacity", type=int),
        "cards_per_session": 1 if cards is None else cards,
        "status": f.get("status", "draft"),
        "enrollment_start_at": _parse_datetime(f.get("enrollment_start_at"), "Enrollment start"),
        "enrollment_end_at": _parse_datetime(f.get("enrollment_end_at"), "Enrollment end"),
        "wiki_url": (f.get("wiki_url") or "").strip() or None,
        "leader_id": f.get("leader_id", type=int),
        "sessions": sessions,
    }

def _course_form(course=None):
    return render_template("course_form.html", course=course,
                           groups=CourseGroup.query.order_by(CourseGroup.id.desc()).all(),
                           leaders=Profile.query.filter(Profile.role != "guest").order_by(Profile.name).all(),
                           types=COURSE_TYPES, statuses=COURSE_STATUSES)

# ---------- Courses ----------
@bp.get("/courses")
@login_required
@role_required("admin")
def courses():
    groups = get_course_groups()
    by_group = {g.id: get_courses_by_group(g.id, include_drafts=True)[0] for g in groups}
    counts = enrolled_counts([c.id for cs in by_group.values() for c in cs])
    return render_template("admin_courses.html", groups=groups, by_group=by_group, counts=counts)

@bp.post("/groups")
@login_required
@role_required("admin")
def create_group():
    try:
        _, msg = create_course_group(current_user, request.form.get("title"), **_group_form_fields())
        flash(msg, "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("admin.courses"))

@bp.post("/groups/<int:gid>/update")
@login_required
@role_required("admin")
def update_group(gid):
    try:
        flash(update_course_group(current_user, gid, request.form.get("title"), **_group_form_fields()), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("admin.courses"))

@bp.route("/courses/new", methods=["GET", "POST"])
@login_required
@role_required("admin")
def new_course():
    if request.method == "POST":
        try:
            course, msg = create_course(current_user, _course_form_data())
            flash(msg, "success")
            return redirect(url_for("courses.course_detail", course_id=course.id))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "error")
    return _course_form()

@bp.route("/courses/<int:cid>/edit", methods=["GET", "POST"])
@login_required
@role_required("admin")
def edit_course(cid):
    course = db.get_or_404(Course, cid)
    if request.method == "POST":
        try:
            flash(update_course(current_user, cid, _course_form_data()), "success")
            return redirect(url_for("courses.course_detail", course_id=cid))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "error")
    return _course_form(course)

@bp.post("/courses/<int:cid>/leaders")
@login_required
@role_required("admin")
def assign_leader(cid):
    try:
        flash(assign_course_leader(current_user, cid, request.form.get("user_id", type=int)), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("courses.course_detail", course_id=cid))

@bp.post("/courses/<int:cid>/leaders/<int:uid>/delete")
@login_required
@role_required("admin")
def remove_leader(cid, uid):
    try:
        flash(remove_course_leader(current_user, cid, uid), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("courses.course_detail", course_id=cid))

# ---------- Members ----------
@bp.get("/members")
@login_required
@role_required("admin")
def members():
    q     = (request.args.get("q") or "").strip()      # name/email/employee id
    role  = request.args.get("role", "")
    sort  = request.args.get("sort", "name")           # name|email|role|valid|balance|joined
    order = request.args.get("order", "asc")
    page  = max(request.args.get("page", type=int) or 1, 1)
    per   = min(max(request.args.get("per_page", type=int) or 20, 1), 100)

    items, total, pages = list_members(q, role, sort, order, page, per)
    return render_template("members.html",
        items=items, q=q, role=role, sort=sort, order=order,
        page=page, per_page=per, total=total, pages=pages,
        roles=ROLES, counts=role_counts()
    )

@bp.post("/members/<int:uid>/update")
@login_required
@role_required("admin")
def update_member(uid):
    try:
        fields = {}
        if "role" in request.form:
            fields["role"] = request.form["role"]
        if "member_valid_until" in request.form:
            fields["member_valid_until"] = _parse_day(request.form["member_valid_until"], "Valid until")
        flash(update_member_profile(current_user, uid, **fields), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("admin.members"))

@bp.post("/members/<int:uid>/cards")
@login_required
@role_required("admin")
def adjust_cards(uid):
    try:
        flash(adjust_card_balance(current_user, uid, request.form.get("amount", type=int),
                                  (request.form.get("note") or "").strip()), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("admin.members"))

# ---------- Settings ----------
@bp.route("/settings", methods=["GET", "POST"])
@login_required
@role_required("admin")
def settings():
    if request.method == "POST":
        entries = [(k[len("cfg-"):], v) for k, v in request.form.items() if k.startswith("cfg-")]
        try:
            flash(update_system_config(current_user, entries), "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "error")
        return redirect(url_for("admin.settings"))
    return render_template("settings.html", config=get_system_config(), known=DEFAULT_SYSTEM_CONFIG)

# ---------- Card orders ----------
@bp.get("/cards")
@login_required
@role_required("admin")
def card_orders():
    return render_template("card_orders.html", orders=get_pending_card_orders())

@bp.post("/cards/<int:oid>/confirm")
@login_required
@role_required("admin")
def confirm_order(oid):
    try:
        flash(confirm_card_order(current_user, oid), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("admin.card_orders"))

@bp.post("/cards/<int:oid>/cancel")
@login_required
@role_required("admin")
def cancel_order(oid):
    try:
        flash(cancel_card_order(current_user, oid), "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "error")
    return redirect(url_for("admin.card_orders"))
