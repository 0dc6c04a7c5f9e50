from functools import wraps
from flask import abort, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required, login_user, logout_user
from ...extensions import db
from ...models import Profile
from ...services import ServiceError
from ...services.members import register_profile
from . import bp

def role_required(*roles):
    def deco(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated or current_user.role not in roles:
                abort(403)
            return f(*args, **kwargs)
        return wrapper
    return deco

@bp.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "")
        u = Profile.query.filter_by(email=email).one_or_none()
        if u and u.check_password(password):
            login_user(u)
            if u.role in ("leader", "admin"):
                return redirect(url_for("leader.rollcall"))
            return redirect(url_for("member.dashboard"))
        flash("Incorrect email or password", "error")
    return render_template("login.html")

@bp.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "POST":
        try:
            u = register_profile(
                request.form.get("email"),
                request.form.get("name"),
                request.form.get("password", ""),
                request.form.get("employee_id"),
            )
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "error")
            return render_template("register.html"), 400
        login_user(u)
        flash("Welcome! Your account has been created", "success")
        return redirect(url_for("member.dashboard"))
    return render_template("register.html")

@bp.get("/logout")
@login_required
def logout():
    logout_user()
    return redirect(url_for("auth.login"))
