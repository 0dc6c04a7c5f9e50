import logging

import click
from flask import Flask, redirect, url_for
from flask_login import current_user

from .extensions import db, migrate, login_manager
from .constants import ATTENDANCE_LABELS, COURSE_TYPE_LABELS, ROLE_LABELS

WEEKDAY_NAMES = {0: "Mon", 1: "Tue", 2: "Wed", 3: "Thu", 4: "Fri", 5: "Sat", 6: "Sun"}

def register_filters(app):
    @app.template_filter("weekday_name")
    def weekday_name(d):
        return WEEKDAY_NAMES[d.weekday()] if d else ""

    @app.template_filter("hhmm")
    def hhmm(t):
        return t.strftime("%H:%M") if t else ""

    @app.template_filter("course_type_label")
    def course_type_label(v):
        return COURSE_TYPE_LABELS.get(v, v)

    @app.template_filter("attendance_label")
    def attendance_label(v):
        return ATTENDANCE_LABELS.get(v, v)

    @app.template_filter("role_label")
    def role_label(v):
        return ROLE_LABELS.get(v, v)

def register_commands(app):
    @app.cli.command("init-db")
    def init_db():
        """Create tables and seed default settings."""
        from .services.members import seed_system_config
        db.create_all()
        added = seed_system_config()
        click.echo(f"Database ready ({added} settings seeded)")

    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("name")
    @click.argument("password")
    def create_admin(email, name, password):
        """Register an account and grant it the admin role."""
        from .services.members import register_profile
        p = register_profile(email, name, password)
        p.role = "admin"
        db.session.commit()
        click.echo(f"Admin {p.email} created")

def create_app(config_object="config.Config"):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s [%(levelname)s] %(name)s :: %(message)s",
    )

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    login_manager.login_view = "auth.login"

    from . import models
    from .models import Profile

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(Profile, int(user_id))

    from .blueprints.auth import bp as auth_bp
    from .blueprints.courses import bp as courses_bp
    from .blueprints.member import bp as member_bp
    from .blueprints.leader import bp as leader_bp
    from .blueprints.admin import bp as admin_bp
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(courses_bp, url_prefix="/courses")
    app.register_blueprint(member_bp, url_prefix="/me")
    app.register_blueprint(leader_bp, url_prefix="/leader")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    register_filters(app)
    register_commands(app)

    @app.get("/")
    def index():
        if current_user.is_authenticated:
            return redirect(url_for("member.dashboard"))
        return redirect(url_for("courses.groups"))

    return app
