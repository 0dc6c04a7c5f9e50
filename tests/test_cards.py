from datetime import date, timedelta

import pytest

from danceclub.models import CardOrder, CardTransaction
from danceclub.services import ServiceError
from danceclub.services.cards import (adjust_card_balance, cancel_card_order, confirm_card_order,
                                      create_card_order, get_card_price_for_user,
                                      get_pending_card_orders, submit_remittance_info)
from danceclub.services.members import update_system_config


@pytest.fixture
def purchase_open(admin):
    update_system_config(admin, [("card_purchase_open", "true")])


def test_orders_refused_while_closed(make_profile):
    with pytest.raises(ServiceError, match="not open"):
        create_card_order(make_profile(), 5)


def test_order_uses_member_price_and_year_end_expiry(make_profile, purchase_open):
    member = make_profile(role="member")
    today = date(2026, 3, 10)

    order, _ = create_card_order(member, 6, today=today)

    assert (order.unit_price, order.total_amount, order.status) == (270, 1620, "pending")
    assert order.expires_at == date(2026, 12, 31)


def test_non_members_and_lapsed_members_pay_more(make_profile, purchase_open):
    today = date(2026, 3, 10)
    lapsed = make_profile(role="member", valid_until=today - timedelta(days=1))

    assert get_card_price_for_user(make_profile(role="guest"), today=today) == 370
    assert get_card_price_for_user(lapsed, today=today) == 370
    order, _ = create_card_order(lapsed, 5, today=today)
    assert order.total_amount == 1850


def test_minimum_quantity_and_window(make_profile, admin, purchase_open):
    member = make_profile()
    with pytest.raises(ServiceError, match="minimum order is 5"):
        create_card_order(member, 4)

    update_system_config(admin, [("card_purchase_start", "2026-04-01"),
                                 ("card_purchase_end", "2026-04-30")])
    with pytest.raises(ServiceError, match="not started"):
        create_card_order(member, 5, today=date(2026, 3, 31))
    with pytest.raises(ServiceError, match="ended"):
        create_card_order(member, 5, today=date(2026, 5, 1))
    order, _ = create_card_order(member, 5, today=date(2026, 4, 15))
    assert order.id


def test_remittance_details(make_profile, purchase_open):
    member = make_profile()
    order, _ = create_card_order(member, 5)

    with pytest.raises(ServiceError, match="last five digits"):
        submit_remittance_info(member, order.id, "12a45", date.today())
    with pytest.raises(ServiceError, match="does not exist"):
        submit_remittance_info(make_profile(), order.id, "12345", date.today())

    submit_remittance_info(member, order.id, "12345", date.today(), "ATM")
    assert order.status == "remitted"
    assert order.remittance_account_last5 == "12345"
    with pytest.raises(ServiceError, match="pending orders"):
        submit_remittance_info(member, order.id, "12345", date.today())


def test_confirming_issues_cards_once(make_profile, admin, purchase_open):
    member = make_profile(balance=2)
    order, _ = create_card_order(member, 5)

    with pytest.raises(ServiceError, match="Only administrators"):
        confirm_card_order(member, order.id)

    msg = confirm_card_order(admin, order.id)

    assert msg == f"Issued 5 cards to {member.name}"
    assert member.card_balance == 7
    tx = CardTransaction.query.filter_by(order_id=order.id).one()
    assert (tx.type, tx.amount, tx.balance_after, tx.created_by_id) == ("purchase", 5, 7, admin.id)
    with pytest.raises(ServiceError, match="already confirmed"):
        confirm_card_order(admin, order.id)


def test_cancellation_rules(make_profile, admin, purchase_open):
    member = make_profile()
    pending, _ = create_card_order(member, 5)
    remitted, _ = create_card_order(member, 5)
    submit_remittance_info(member, remitted.id, "54321", date.today())

    with pytest.raises(ServiceError, match="does not exist"):
        cancel_card_order(make_profile(), pending.id)
    with pytest.raises(ServiceError, match="no longer be cancelled"):
        cancel_card_order(member, remitted.id)

    cancel_card_order(member, pending.id)
    cancel_card_order(admin, remitted.id)
    assert {o.status for o in CardOrder.query.all()} == {"cancelled"}
    assert get_pending_card_orders() == []
    with pytest.raises(ServiceError, match="cancelled"):
        confirm_card_order(admin, pending.id)


def test_admin_adjustment(make_profile, admin):
    member = make_profile(balance=3)

    with pytest.raises(ServiceError, match="below zero"):
        adjust_card_balance(admin, member.id, -4)
    with pytest.raises(ServiceError, match="must not be zero"):
        adjust_card_balance(admin, member.id, 0)
    with pytest.raises(ServiceError, match="Only administrators"):
        adjust_card_balance(member, member.id, 5)

    adjust_card_balance(admin, member.id, -3, "correction")
    assert member.card_balance == 0
    tx = CardTransaction.query.one()
    assert (tx.type, tx.amount, tx.note) == ("admin_adjust", -3, "correction")
