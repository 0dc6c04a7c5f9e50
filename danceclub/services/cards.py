import calendar
import logging
import re
from datetime import date, datetime

from ..extensions import db
from ..models import CardOrder, CardTransaction, Profile
from . import ServiceError, commit_or_raise, config_int, get_or_fail, get_system_config, require_admin

logger = logging.getLogger(__name__)

LAST5_RE = re.compile(r"^\d{5}$")


def record_card_movement(user, type_, amount, note, enrollment=None, order=None, created_by=None):
    """Apply a signed change to the user's balance and append it to the ledger."""
    user.card_balance = (user.card_balance or 0) + amount
    tx = CardTransaction(
        user_id=user.id,
        type=type_,
        amount=amount,
        balance_after=user.card_balance,
        enrollment_id=enrollment.id if enrollment is not None else None,
        order_id=order.id if order is not None else None,
        note=note,
        created_by_id=created_by.id if created_by is not None else None,
    )
    db.session.add(tx)
    return tx


def get_card_price_for_user(profile, config=None, today=None):
    config = config or get_system_config()
    if profile.is_active_member(today):
        return config_int(config, "card_price_member")
    return config_int(config, "card_price_non_member")


def _expiry_date(config, today):
    month = min(max(config_int(config, "card_expire_month"), 1), 12)
    return date(today.year, month, calendar.monthrange(today.year, month)[1])


def _parse_day(raw):
    raw = (raw or "").strip()
    if not raw:
        return None
    return datetime.strptime(raw, "%Y-%m-%d").date()


def create_card_order(actor, quantity, today=None):
    today = today or date.today()
    config = get_system_config()

    if config.get("card_purchase_open") != "true":
        raise ServiceError("Card purchasing is not open")
    start = _parse_day(config.get("card_purchase_start"))
    if start and today < start:
        raise ServiceError(f"Card purchasing has not started yet (opens {start.isoformat()})")
    end = _parse_day(config.get("card_purchase_end"))
    if end and today > end:
        raise ServiceError(f"Card purchasing has ended (closed {end.isoformat()})")

    min_purchase = config_int(config, "card_min_purchase")
    if quantity is None or quantity < min_purchase:
        raise ServiceError(f"The minimum order is {min_purchase} cards")

    unit_price = get_card_price_for_user(actor, config, today)
    order = CardOrder(
        user_id=actor.id,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=quantity * unit_price,
        status="pending",
        expires_at=_expiry_date(config, today),
    )
    db.session.add(order)
    commit_or_raise("Creating the order")
    logger.info("card order %s created by user %s (%s x %s)", order.id, actor.id, quantity, unit_price)
    return order, "Order created, please transfer the payment and submit the remittance details"


def submit_remittance_info(actor, order_id, last5, remittance_date, note=None):
    order = db.session.get(CardOrder, order_id)
    if order is None or order.user_id != actor.id:
        raise ServiceError("Order does not exist")
    if order.status != "pending":
        raise ServiceError("Remittance details can only be submitted for pending orders")
    last5 = (last5 or "").strip()
    if not LAST5_RE.match(last5):
        raise ServiceError("Please enter the last five digits of the paying account")
    if remittance_date is None:
        raise ServiceError("Remittance date is required")

    order.status = "remitted"
    order.remittance_account_last5 = last5
    order.remittance_date = remittance_date
    order.remittance_note = note or None
    commit_or_raise("Submitting remittance details")
    logger.info("card order %s marked remitted", order.id)
    return "Remittance details submitted, awaiting confirmation"


def confirm_card_order(actor, order_id):
    require_admin(actor, "confirm card orders")
    order = get_or_fail(CardOrder, order_id, "Order does not exist")
    if order.status == "confirmed":
        raise ServiceError("Order is already confirmed")
    if order.status == "cancelled":
        raise ServiceError("Order has been cancelled")

    order.status = "confirmed"
    order.confirmed_by_id = actor.id
    order.confirmed_at = datetime.now()
    record_card_movement(
        order.user, "purchase", order.quantity,
        f"Purchased {order.quantity} cards (order #{order.id})",
        order=order, created_by=actor,
    )
    commit_or_raise("Confirming the order")
    logger.info("card order %s confirmed by %s, user %s balance %s",
                order.id, actor.id, order.user_id, order.user.card_balance)
    return f"Issued {order.quantity} cards to {order.user.name}"


def cancel_card_order(actor, order_id):
    order = get_or_fail(CardOrder, order_id, "Order does not exist")
    if actor.role == "admin":
        allowed = ("pending", "remitted")
    elif order.user_id == actor.id:
        allowed = ("pending",)
    else:
        raise ServiceError("Order does not exist")
    if order.status not in allowed:
        raise ServiceError("This order can no longer be cancelled")
    order.status = "cancelled"
    commit_or_raise("Cancelling the order")
    logger.info("card order %s cancelled by %s", order.id, actor.id)
    return "Order cancelled"


def adjust_card_balance(actor, user_id, amount, note=None):
    require_admin(actor, "adjust card balances")
    user = get_or_fail(Profile, user_id, "Member does not exist")
    if not amount:
        raise ServiceError("Adjustment amount must not be zero")
    if (user.card_balance or 0) + amount < 0:
        raise ServiceError(f"Balance cannot go below zero (current balance: {user.card_balance})")
    record_card_movement(user, "admin_adjust", amount, note or "Manual adjustment", created_by=actor)
    commit_or_raise("Adjusting the balance")
    logger.info("admin %s adjusted user %s balance by %s", actor.id, user.id, amount)
    return f"{user.name}'s balance is now {user.card_balance}"


def get_user_card_orders(user_id):
    return (CardOrder.query.filter_by(user_id=user_id)
            .order_by(CardOrder.created_at.desc(), CardOrder.id.desc()).all())


def get_user_card_transactions(user_id):
    return (CardTransaction.query.filter_by(user_id=user_id)
            .order_by(CardTransaction.created_at.desc(), CardTransaction.id.desc()).all())


def get_pending_card_orders():
    return (CardOrder.query.filter(CardOrder.status.in_(("pending", "remitted")))
            .order_by(CardOrder.created_at.asc(), CardOrder.id.asc()).all())
