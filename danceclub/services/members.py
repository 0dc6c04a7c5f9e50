import logging

from sqlalchemy import or_

from ..extensions import db
from ..constants import DEFAULT_SYSTEM_CONFIG, ROLES
from ..models import Profile, SystemConfig
from . import ServiceError, commit_or_raise, get_or_fail, require_admin

logger = logging.getLogger(__name__)

_UNSET = object()


def register_profile(email, name, password, employee_id=None):
    email = (email or "").strip().lower()
    name = (name or "").strip()
    if not email or not name:
        raise ServiceError("Email and name are required")
    if len(password or "") < 6:
        raise ServiceError("Password must be at least 6 characters")
    if Profile.query.filter_by(email=email).first():
        raise ServiceError("This email is already registered")
    p = Profile(email=email, name=name, employee_id=(employee_id or "").strip() or None, role="guest")
    p.set_password(password)
    db.session.add(p)
    commit_or_raise("Registration")
    logger.info("profile %s registered", p.id)
    return p


def change_password(actor, old, new, confirm):
    if not actor.check_password(old):
        raise ServiceError("Current password is incorrect")
    if len(new) < 6:
        raise ServiceError("New password must be at least 6 characters")
    if new != confirm:
        raise ServiceError("Passwords do not match")
    actor.set_password(new)
    commit_or_raise("Changing the password")
    return "Password updated"


def update_member_profile(actor, user_id, role=_UNSET, member_valid_until=_UNSET):
    require_admin(actor, "edit member profiles")
    member = get_or_fail(Profile, user_id, "Member does not exist")
    changed = False
    if role is not _UNSET:
        if role not in ROLES:
            raise ServiceError("Unknown role")
        member.role = role
        changed = True
    if member_valid_until is not _UNSET:
        member.member_valid_until = member_valid_until
        changed = True
    if not changed:
        raise ServiceError("Nothing to update")
    commit_or_raise("Updating the member profile")
    logger.info("profile %s updated by %s (role=%s, valid_until=%s)",
                member.id, actor.id, member.role, member.member_valid_until)
    return "Member profile updated"


def update_system_config(actor, entries):
    require_admin(actor, "change system settings")
    n = 0
    for key, value in entries:
        key = (key or "").strip()
        if not key:
            continue
        row = db.session.get(SystemConfig, key)
        if row is None:
            row = SystemConfig(key=key, description=DEFAULT_SYSTEM_CONFIG.get(key, (None, None))[1])
            db.session.add(row)
        row.value = (value or "").strip()
        row.updated_by_id = actor.id
        n += 1
    commit_or_raise("Updating settings")
    logger.info("%s settings updated by %s", n, actor.id)
    return f"Updated {n} settings"


def seed_system_config():
    added = 0
    for key, (value, description) in DEFAULT_SYSTEM_CONFIG.items():
        if db.session.get(SystemConfig, key) is None:
            db.session.add(SystemConfig(key=key, value=value, description=description))
            added += 1
    commit_or_raise("Seeding settings")
    return added


def list_members(q="", role="", sort="name", order="asc", page=1, per=20):
    query = Profile.query
    if q:
        like = f"%{q}%"
        query = query.filter(or_(
            Profile.name.ilike(like),
            Profile.email.ilike(like),
            Profile.employee_id.ilike(like),
        ))
    if role in ROLES:
        query = query.filter(Profile.role == role)

    sort_map = {
        "name":    Profile.name,
        "email":   Profile.email,
        "role":    Profile.role,
        "valid":   Profile.member_valid_until,
        "balance": Profile.card_balance,
        "joined":  Profile.created_at,
    }
    col = sort_map.get(sort, Profile.name)
    query = query.order_by(col.desc() if order == "desc" else col.asc())

    total = query.count()
    items = query.offset((page - 1) * per).limit(per).all()
    pages = max(1, (total + per - 1) // per)
    return items, total, pages


def role_counts():
    counts = {r: 0 for r in ROLES}
    for (r,) in db.session.query(Profile.role).all():
        counts[r] = counts.get(r, 0) + 1
    counts["all"] = sum(counts.values())
    return counts
