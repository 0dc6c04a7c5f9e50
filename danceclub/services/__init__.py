"""
Business rules behind every mutation route.

Each operation takes the acting profile first, raises ``ServiceError`` for any
rule it refuses, commits once, and returns the message shown to the user.
"""
import logging
import math
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..constants import DEFAULT_SYSTEM_CONFIG

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """A refused action; the message is safe to show to the user."""


def commit_or_raise(action):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("%s failed", action)
        raise ServiceError(f"{action} failed: {getattr(exc, 'orig', None) or exc}") from exc


def get_or_fail(model, ident, message):
    obj = db.session.get(model, ident) if ident is not None else None
    if obj is None:
        raise ServiceError(message)
    return obj


def require_admin(actor, action="do this"):
    if actor is None or actor.role != "admin":
        raise ServiceError(f"Only administrators can {action}")


def require_course_manager(actor, course_id):
    """Leaders manage the courses they lead; admins manage all."""
    if actor is None:
        raise ServiceError("Not authenticated")
    if actor.role == "admin":
        return
    if actor.role == "leader" and actor.leads(course_id):
        return
    raise ServiceError("Only the course leader or an administrator can do this")


def compute_makeup_quota(sessions_count):
    return math.ceil(sessions_count / 4)


def is_before_class(session_date, start_time, now=None):
    return (now or datetime.now()) < datetime.combine(session_date, start_time)


def get_system_config():
    from ..models import SystemConfig

    values = {key: default for key, (default, _) in DEFAULT_SYSTEM_CONFIG.items()}
    for row in SystemConfig.query.all():
        values[row.key] = row.value
    return values


def config_int(config, key):
    raw = (config.get(key) or "").strip()
    try:
        return int(raw)
    except ValueError:
        return int(DEFAULT_SYSTEM_CONFIG[key][0])
