"""Administrative order updates and the cashback credit on payment."""
from datetime import datetime

import pytest

from coffeeon.db.models import Order, OrderStatus
from coffeeon.errors import Conflict, Forbidden, InvalidStatus, NotFound, NothingToUpdate
from coffeeon.services import orders as order_service

from conftest import audit_actions, cashback_of


@pytest.fixture
def placed(db, customer, make_product):
    coffee = make_product(price_cents=5000)
    return order_service.place_order(db, customer.id, [{"produtoId": coffee.id, "quantidade": 1, "preco": 50}])


def set_status(db, order_id, status, actor):
    return order_service.update_order(db, order_id, {"status": status}, actor)


def test_customer_cannot_update_orders(db, customer, placed):
    with pytest.raises(Forbidden):
        set_status(db, placed.order_id, OrderStatus.PAID.value, customer)
    assert "UPDATE_ORDER_FORBIDDEN" in audit_actions(db)


def test_unknown_status_is_rejected(db, admin, placed):
    with pytest.raises(InvalidStatus):
        set_status(db, placed.order_id, "SHIPPED_TWICE", admin)
    assert "UPDATE_ORDER_INVALID_STATUS" in audit_actions(db)
    assert db.get(Order, placed.order_id).status == OrderStatus.CREATED.value


def test_missing_order(db, admin):
    with pytest.raises(NotFound):
        set_status(db, 999, OrderStatus.PAID.value, admin)
    assert "UPDATE_ORDER_NOT_FOUND" in audit_actions(db)


def test_empty_update(db, admin, placed):
    with pytest.raises(NothingToUpdate):
        order_service.update_order(db, placed.order_id, {"status": "", "unknown": 1}, admin)


def test_first_payment_credits_ten_percent(db, admin, customer, placed):
    order = set_status(db, placed.order_id, OrderStatus.PAID.value, admin)

    assert order.status == OrderStatus.PAID.value
    assert order.cashback_credited is True
    assert cashback_of(db, customer.id) == 500
    assert "UPDATE_ORDER_SUCCESS" in audit_actions(db)


def test_repeated_payment_credits_once(db, admin, customer, placed):
    set_status(db, placed.order_id, OrderStatus.PAID.value, admin)
    set_status(db, placed.order_id, OrderStatus.SHIPPED.value, admin)
    set_status(db, placed.order_id, OrderStatus.PAID.value, admin)
    set_status(db, placed.order_id, OrderStatus.PAID.value, admin)

    assert cashback_of(db, customer.id) == 500


def test_other_statuses_do_not_credit(db, admin, customer, placed):
    set_status(db, placed.order_id, OrderStatus.SHIPPED.value, admin)
    assert cashback_of(db, customer.id) == 0


def test_credit_is_based_on_net_total(db, admin, make_user, make_product):
    buyer = make_user(email="bia@example.com", cashback_cents=1000)
    coffee = make_product(price_cents=5000)
    placed = order_service.place_order(db, buyer.id, [{"produtoId": coffee.id, "quantidade": 1, "preco": 50}])
    assert cashback_of(db, buyer.id) == 0

    set_status(db, placed.order_id, OrderStatus.PAID.value, admin)

    # 10% of 40.00
    assert cashback_of(db, buyer.id) == 400


def test_terminal_status_is_frozen(db, admin, placed):
    set_status(db, placed.order_id, OrderStatus.COMPLETED.value, admin)

    with pytest.raises(Conflict):
        set_status(db, placed.order_id, OrderStatus.CREATED.value, admin)

    assert db.get(Order, placed.order_id).status == OrderStatus.COMPLETED.value
    assert "UPDATE_ORDER_TERMINAL_STATUS" in audit_actions(db)


def test_canceled_order_cannot_be_paid(db, admin, customer, placed):
    set_status(db, placed.order_id, OrderStatus.CANCELED.value, admin)

    with pytest.raises(Conflict):
        set_status(db, placed.order_id, OrderStatus.PAID.value, admin)
    assert cashback_of(db, customer.id) == 0


def test_terminal_order_still_accepts_feedback(db, admin, placed):
    set_status(db, placed.order_id, OrderStatus.COMPLETED.value, admin)

    order = order_service.update_order(
        db, placed.order_id, {"status": OrderStatus.COMPLETED.value, "feedback": "great beans"}, admin
    )

    assert order.feedback == "great beans"
    assert order.status == OrderStatus.COMPLETED.value


def test_null_obs_clears_the_note(db, admin, placed):
    order = order_service.update_order(db, placed.order_id, {"obs": None}, admin)
    assert order.obs == ""


def test_update_refreshes_updated_at(db, admin, placed):
    stale = datetime(2020, 1, 1)
    db.get(Order, placed.order_id).updated_at = stale
    db.commit()

    order = order_service.update_order(db, placed.order_id, {"feedback": "smooth"}, admin)

    assert order.updated_at > stale
