"""Tests for the order placement transaction."""
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from coffeeon.core.config import settings
from coffeeon.db.models import Order, OrderItem, OrderStatus
from coffeeon.errors import EmptyOrder, InvalidLineItem, OrderCreationFailed, Unauthenticated
from coffeeon.security.utils import now_utc
from coffeeon.services import audit
from coffeeon.services import orders as order_service

from conftest import audit_actions, cashback_of


def order_count(db) -> int:
    return db.execute(select(func.count(Order.id))).scalar_one()


def paid_subscription_order(db, user, product, age):
    order = Order(
        user_id=user.id,
        status=OrderStatus.PAID.value,
        gross_cents=product.price_cents,
        net_cents=product.price_cents,
        created_at=now_utc() - age,
    )
    order.items = [OrderItem(product_id=product.id, quantity=1, unit_price_cents=product.price_cents)]
    db.add(order); db.commit()
    return order


def test_place_order_persists_order_items_and_balance(db, make_user, make_product):
    user = make_user(cashback_cents=500)
    coffee = make_product(price_cents=5000)

    placed = order_service.place_order(
        db, user.id, [{"produtoId": coffee.id, "quantidade": 2, "preco": 50}], obs="no sugar", address="Rua A, 10"
    )

    assert str(placed.gross) == "100.00"
    assert str(placed.cashback_discount) == "5.00"
    assert str(placed.net) == "95.00"

    db.expire_all()
    order = db.get(Order, placed.order_id)
    assert order.status == OrderStatus.CREATED.value
    assert order.gross_cents == 10000
    assert order.discount_cents == 500
    assert order.net_cents == 9500
    assert order.subscription_discount_cents == 0
    assert order.cashback_discount_cents == 500
    assert order.address == "Rua A, 10"
    assert order.obs == "no sugar | Subscription discount: 0.00, Cashback: 5.00"
    assert [(it.product_id, it.quantity, it.unit_price_cents, it.discount_cents) for it in order.items] == [
        (coffee.id, 2, 5000, 0)
    ]
    assert cashback_of(db, user.id) == 0
    assert "CREATE_ORDER_SUCCESS" in audit_actions(db)


def test_subscription_discount_and_cashback(db, make_user, make_product):
    user = make_user(cashback_cents=500)
    plan = make_product(name="Monthly Subscription", price_cents=3000, subscription=True)
    beans = make_product(name="Beans", price_cents=10000)
    paid_subscription_order(db, user, plan, age=timedelta(days=3))

    placed = order_service.place_order(db, user.id, [{"produtoId": beans.id, "quantidade": 1, "preco": 100}])

    assert str(placed.subscription_discount) == "10.00"
    assert str(placed.cashback_discount) == "5.00"
    assert str(placed.net) == "85.00"
    assert cashback_of(db, user.id) == 0


def test_cashback_larger_than_order(db, make_user, make_product):
    user = make_user(cashback_cents=6000)
    beans = make_product(price_cents=2500)

    placed = order_service.place_order(db, user.id, [{"produtoId": beans.id, "quantidade": 2, "preco": 25}])

    assert str(placed.cashback_discount) == "50.00"
    assert str(placed.net) == "0.00"
    assert cashback_of(db, user.id) == 1000


class TestSubscriptionEligibility:
    def test_recent_paid_subscription(self, db, customer, make_product):
        plan = make_product(name="Plan", subscription=True)
        paid_subscription_order(db, customer, plan, age=timedelta(days=29, hours=23))
        assert order_service.is_subscription_eligible(db, customer.id) is True

    def test_window_is_strict(self, db, customer, make_product):
        plan = make_product(name="Plan", subscription=True)
        order = paid_subscription_order(db, customer, plan, age=timedelta(days=1))
        exactly_30_days_later = order.created_at + timedelta(days=settings.SUBSCRIPTION_WINDOW_DAYS)
        assert order_service.is_subscription_eligible(db, customer.id, now=exactly_30_days_later) is False
        assert order_service.is_subscription_eligible(
            db, customer.id, now=exactly_30_days_later - timedelta(seconds=1)
        ) is True

    def test_regular_product_does_not_count(self, db, customer, make_product):
        beans = make_product(name="Beans")
        paid_subscription_order(db, customer, beans, age=timedelta(days=1))
        assert order_service.is_subscription_eligible(db, customer.id) is False

    def test_unpaid_subscription_does_not_count(self, db, customer, make_product):
        plan = make_product(name="Plan", subscription=True)
        order = paid_subscription_order(db, customer, plan, age=timedelta(days=1))
        order.status = OrderStatus.CREATED.value
        db.commit()
        assert order_service.is_subscription_eligible(db, customer.id) is False

    def test_other_accounts_do_not_count(self, db, customer, make_user, make_product):
        other = make_user(email="bia@example.com")
        plan = make_product(name="Plan", subscription=True)
        paid_subscription_order(db, other, plan, age=timedelta(days=1))
        assert order_service.is_subscription_eligible(db, customer.id) is False


def test_missing_account_is_rejected(db):
    with pytest.raises(Unauthenticated):
        order_service.place_order(db, None, [{"produtoId": 1, "quantidade": 1, "preco": 1}])
    assert audit_actions(db) == ["CREATE_ORDER_UNAUTHORIZED"]


def test_empty_order_creates_nothing(db, customer):
    with pytest.raises(EmptyOrder):
        order_service.place_order(db, customer.id, [])
    assert order_count(db) == 0
    assert audit_actions(db) == ["CREATE_ORDER_INVALID_ITEMS"]


def test_invalid_item_creates_nothing(db, make_user, make_product):
    user = make_user(cashback_cents=300)
    beans = make_product()
    items = [{"produtoId": beans.id, "quantidade": 1, "preco": 25}, {"produtoId": beans.id, "quantidade": 0, "preco": 25}]

    with pytest.raises(InvalidLineItem):
        order_service.place_order(db, user.id, items)

    assert order_count(db) == 0
    assert cashback_of(db, user.id) == 300
    assert audit_actions(db) == ["CREATE_ORDER_INVALID_ITEM_FIELD"]


def test_unknown_or_inactive_product_is_an_invalid_item(db, make_user, make_product):
    user = make_user(cashback_cents=300)
    retired = make_product(name="Retired", active=False)

    for product_id in (retired.id, 9999):
        with pytest.raises(InvalidLineItem):
            order_service.place_order(db, user.id, [{"produtoId": product_id, "quantidade": 1, "preco": 1}])

    assert order_count(db) == 0
    assert cashback_of(db, user.id) == 300


def test_failure_before_persisting_surfaces_generic_error(db, customer, make_product, monkeypatch):
    beans = make_product()

    def boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(order_service, "is_subscription_eligible", boom)

    with pytest.raises(OrderCreationFailed):
        order_service.place_order(db, customer.id, [{"produtoId": beans.id, "quantidade": 1, "preco": 25}])
    assert order_count(db) == 0
    assert audit_actions(db) == ["CREATE_ORDER_ERROR"]


def test_failure_after_insert_rolls_everything_back(db, make_user, make_product, monkeypatch):
    user = make_user(cashback_cents=700)
    beans = make_product()

    def boom(*args, **kwargs):
        raise RuntimeError("lost connection")

    monkeypatch.setattr(order_service, "update", boom)

    with pytest.raises(OrderCreationFailed):
        order_service.place_order(db, user.id, [{"produtoId": beans.id, "quantidade": 1, "preco": 25}])

    assert order_count(db) == 0
    assert db.execute(select(func.count(OrderItem.id))).scalar_one() == 0
    assert cashback_of(db, user.id) == 700


def test_audit_failure_never_fails_the_order(db, customer, make_product, monkeypatch):
    beans = make_product()

    def broken_session(*args, **kwargs):
        raise RuntimeError("audit table missing")

    monkeypatch.setattr(audit, "AuditSession", broken_session)

    placed = order_service.place_order(db, customer.id, [{"produtoId": beans.id, "quantidade": 1, "preco": 25}])
    assert placed.order_id
    assert order_count(db) == 1


def test_declared_price_is_captured_verbatim(db, customer, make_product):
    beans = make_product(price_cents=2500)
    placed = order_service.place_order(db, customer.id, [{"produtoId": beans.id, "quantidade": 1, "preco": 1.5}])

    db.expire_all()
    assert db.get(Order, placed.order_id).items[0].unit_price_cents == 150


def test_sub_cent_price_is_rounded_only_when_stored(db, customer, make_product):
    beans = make_product(price_cents=2500)
    placed = order_service.place_order(db, customer.id, [{"produtoId": beans.id, "quantidade": 3, "preco": "3.335"}])

    assert str(placed.gross) == "10.01"
    db.expire_all()
    order = db.get(Order, placed.order_id)
    assert order.gross_cents == 1001
    assert order.items[0].unit_price_cents == 334


def test_reprice_from_catalog(db, customer, make_product, monkeypatch):
    monkeypatch.setattr(settings, "REPRICE_FROM_CATALOG", True)
    beans = make_product(price_cents=2500)

    placed = order_service.place_order(db, customer.id, [{"produtoId": beans.id, "quantidade": 2, "preco": 1.5}])

    assert str(placed.gross) == "50.00"
    db.expire_all()
    assert db.get(Order, placed.order_id).items[0].unit_price_cents == 2500
