"""Order placement, retrieval and administrative status transitions.

Placement and status transitions are the only multi-statement operations in
the shop; each runs in a single database transaction and either commits as a
whole or leaves nothing behind.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from coffeeon.core.config import settings
from coffeeon.db.models import Order, OrderItem, OrderStatus, Product, User, TERMINAL_STATUSES
from coffeeon.errors import (
    CashbackConflict,
    Conflict,
    EmptyOrder,
    Forbidden,
    InvalidLineItem,
    InvalidStatus,
    NotFound,
    NothingToUpdate,
    OrderCreationFailed,
    OrderUpdateFailed,
    Unauthenticated,
)
from coffeeon.security.utils import now_utc
from coffeeon.services import audit
from coffeeon.services.audit import ClientInfo
from coffeeon.services.pricing import (
    LineItem,
    cashback_accrual_cents,
    describe_discounts,
    from_cents,
    parse_line_items,
    quote,
    to_cents,
)

logger = logging.getLogger(__name__)

RESOURCE = "pedidos"
UPDATABLE_FIELDS = ("status", "obs", "feedback")


@dataclass(frozen=True)
class PlacedOrder:
    order_id: int
    gross: Decimal
    subscription_discount: Decimal
    cashback_discount: Decimal
    total_discount: Decimal
    net: Decimal


def is_subscription_eligible(db: Session, user_id: str, now: Optional[datetime] = None) -> bool:
    """True when the account has a PAID order containing a subscription product
    created strictly within the last SUBSCRIPTION_WINDOW_DAYS."""
    cutoff = (now or now_utc()) - timedelta(days=settings.SUBSCRIPTION_WINDOW_DAYS)
    stmt = (
        select(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .join(Product, Product.id == OrderItem.product_id)
        .where(
            Order.user_id == user_id,
            Order.status == OrderStatus.PAID.value,
            Order.created_at > cutoff,
            Product.subscription.is_(True),
        )
        .limit(1)
    )
    return db.execute(stmt).first() is not None


def _resolve_prices(db: Session, items: List[LineItem]) -> List[LineItem]:
    ids = {it.product_id for it in items}
    products = {p.id: p for p in db.execute(select(Product).where(Product.id.in_(ids))).scalars()}
    priced = []
    for it in items:
        product = products.get(it.product_id)
        if product is None or not product.active:
            raise InvalidLineItem(it.model_dump(by_alias=True, mode="json"), reason="unknown or inactive product")
        if settings.REPRICE_FROM_CATALOG:
            it = it.model_copy(update={"unit_price": from_cents(product.price_cents)})
        priced.append(it)
    return priced


def _place_once(db: Session, user_id: str, items: List[LineItem], obs: str, address: str) -> PlacedOrder:
    # row lock on the account serializes concurrent checkouts on PostgreSQL
    user = db.execute(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if user is None:
        raise Unauthenticated("User not authenticated.")

    priced = _resolve_prices(db, items)
    eligible = is_subscription_eligible(db, user_id)
    cents = quote(priced, eligible, from_cents(user.cashback_cents)).in_cents()

    order = Order(
        user_id=user_id,
        status=OrderStatus.CREATED.value,
        obs=describe_discounts(obs, cents),
        address=address,
        gross_cents=cents.gross,
        discount_cents=cents.total_discount,
        net_cents=cents.net,
        subscription_discount_cents=cents.subscription_discount,
        cashback_discount_cents=cents.cashback_discount,
    )
    order.items = [
        OrderItem(
            product_id=it.product_id,
            quantity=it.quantity,
            unit_price_cents=to_cents(it.unit_price),
            discount_cents=0,
        )
        for it in priced
    ]
    db.add(order)
    db.flush()

    if cents.cashback_discount:
        result = db.execute(
            update(User)
            .where(User.id == user_id, User.cashback_cents >= cents.cashback_discount)
            .values(cashback_cents=User.cashback_cents - cents.cashback_discount)
        )
        if result.rowcount != 1:
            raise CashbackConflict(user_id, cents.cashback_discount)

    return PlacedOrder(
        order_id=order.id,
        gross=from_cents(cents.gross),
        subscription_discount=from_cents(cents.subscription_discount),
        cashback_discount=from_cents(cents.cashback_discount),
        total_discount=from_cents(cents.total_discount),
        net=from_cents(cents.net),
    )


def place_order(
    db: Session,
    user_id: Optional[str],
    raw_items: Any,
    obs: str = "",
    address: str = "",
    client: Optional[ClientInfo] = None,
) -> PlacedOrder:
    if not user_id:
        audit.record(db, "CREATE_ORDER_UNAUTHORIZED", RESOURCE, details={"ip": client.ip if client else None}, client=client)
        raise Unauthenticated("User not authenticated.")

    try:
        items = parse_line_items(raw_items)
    except EmptyOrder:
        audit.record(db, "CREATE_ORDER_INVALID_ITEMS", RESOURCE, user_id=user_id, details={"itens": raw_items}, client=client)
        raise
    except InvalidLineItem as e:
        audit.record(db, "CREATE_ORDER_INVALID_ITEM_FIELD", RESOURCE, user_id=user_id,
                     details={"item": e.item, "reason": e.reason}, client=client)
        raise

    attempts = max(settings.ORDER_PLACEMENT_ATTEMPTS, 1)
    for attempt in range(1, attempts + 1):
        try:
            placed = _place_once(db, user_id, items, obs or "", address or "")
            db.commit()
        except CashbackConflict:
            db.rollback()
            logger.warning("cashback of user %s changed during checkout (attempt %d/%d)", user_id, attempt, attempts)
            continue
        except Unauthenticated:
            db.rollback()
            audit.record(db, "CREATE_ORDER_UNAUTHORIZED", RESOURCE, user_id=user_id, client=client)
            raise
        except InvalidLineItem as e:
            db.rollback()
            audit.record(db, "CREATE_ORDER_INVALID_ITEM_FIELD", RESOURCE, user_id=user_id,
                         details={"item": e.item, "reason": e.reason}, client=client)
            raise
        except Exception as e:
            db.rollback()
            logger.exception("order creation failed for user %s", user_id)
            audit.record(db, "CREATE_ORDER_ERROR", RESOURCE, user_id=user_id, details={"error": str(e)}, client=client)
            raise OrderCreationFailed() from e
        else:
            break
    else:
        audit.record(db, "CREATE_ORDER_ERROR", RESOURCE, user_id=user_id,
                     details={"error": f"cashback balance changed {attempts} times"}, client=client)
        raise OrderCreationFailed()

    logger.info("order %s placed by %s: gross=%s net=%s", placed.order_id, user_id, placed.gross, placed.net)
    audit.record(
        db, "CREATE_ORDER_SUCCESS", RESOURCE, user_id=user_id, resource_id=placed.order_id,
        details={
            "totalBruto": placed.gross,
            "totalFinal": placed.net,
            "descontoAssinatura": placed.subscription_discount,
            "descontoCashback": placed.cashback_discount,
        },
        client=client,
    )
    return placed


def list_orders(db: Session, actor: User, client: Optional[ClientInfo] = None) -> List[Order]:
    stmt = select(Order).options(selectinload(Order.items)).order_by(Order.created_at.desc(), Order.id.desc())
    if not actor.is_admin:
        stmt = stmt.where(Order.user_id == actor.id)
    orders = list(db.execute(stmt).scalars())
    audit.record(db, "LIST_ORDERS_SUCCESS", RESOURCE, user_id=actor.id,
                 details={"total": len(orders), "actorRole": actor.role}, client=client)
    return orders


def get_order(db: Session, order_id: int, actor: User, client: Optional[ClientInfo] = None) -> Order:
    stmt = (
        select(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .where(Order.id == order_id)
    )
    order = db.execute(stmt).scalar_one_or_none()
    if order is None:
        audit.record(db, "GET_ORDER_NOT_FOUND", RESOURCE, user_id=actor.id, resource_id=order_id, client=client)
        raise NotFound("Order not found.")
    if not actor.is_admin and order.user_id != actor.id:
        audit.record(db, "GET_ORDER_FORBIDDEN", RESOURCE, user_id=actor.id, resource_id=order_id, client=client)
        raise Forbidden("Access to this order is denied.")
    audit.record(db, "GET_ORDER_SUCCESS", RESOURCE, user_id=actor.id, resource_id=order_id,
                 details={"total_itens": len(order.items)}, client=client)
    return order


def _normalize_changes(changes: dict) -> dict:
    fields = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
    if "status" in fields:
        if not fields["status"]:
            del fields["status"]
        else:
            try:
                fields["status"] = OrderStatus(fields["status"]).value
            except ValueError:
                raise InvalidStatus(fields["status"]) from None
    if "obs" in fields and fields["obs"] is None:
        fields["obs"] = ""
    return fields


def update_order(
    db: Session,
    order_id: int,
    changes: dict,
    actor: User,
    client: Optional[ClientInfo] = None,
) -> Order:
    """Apply an administrative partial update to an order.

    The first transition into PAID credits the owner's cashback with
    CASHBACK_RATE of the order's net total, in the same transaction. Later
    transitions into PAID credit nothing. Orders in a terminal status keep
    their status; obs and feedback stay editable.
    """
    if not actor.is_admin:
        audit.record(db, "UPDATE_ORDER_FORBIDDEN", RESOURCE, user_id=actor.id, resource_id=order_id, client=client)
        raise Forbidden("Only administrators can update orders.")

    try:
        fields = _normalize_changes(changes)
    except InvalidStatus as e:
        audit.record(db, "UPDATE_ORDER_INVALID_STATUS", RESOURCE, user_id=actor.id, resource_id=order_id,
                     details={"status": e.status}, client=client)
        raise
    if not fields:
        raise NothingToUpdate()

    try:
        order = db.execute(
            select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise NotFound("Order not found.")

        previous = order.status
        new_status = fields.get("status")
        if new_status and previous in TERMINAL_STATUSES and new_status != previous:
            raise Conflict(f"Order is {previous}; its status can no longer change.")

        for k, v in fields.items():
            setattr(order, k, v)

        db.flush()

        credited = 0
        if new_status == OrderStatus.PAID.value:
            # the flag flips once, so a second transition into PAID credits nothing
            claimed = db.execute(
                update(Order)
                .where(Order.id == order.id, Order.cashback_credited.is_(False))
                .values(cashback_credited=True)
            ).rowcount
            if claimed:
                credited = cashback_accrual_cents(order.net_cents)
                if credited:
                    db.execute(
                        update(User)
                        .where(User.id == order.user_id)
                        .values(cashback_cents=User.cashback_cents + credited)
                    )

        db.commit()
    except NotFound:
        db.rollback()
        audit.record(db, "UPDATE_ORDER_NOT_FOUND", RESOURCE, user_id=actor.id, resource_id=order_id, client=client)
        raise
    except Conflict:
        db.rollback()
        audit.record(db, "UPDATE_ORDER_TERMINAL_STATUS", RESOURCE, user_id=actor.id, resource_id=order_id,
                     details={"status": fields.get("status")}, client=client)
        raise
    except Exception as e:
        db.rollback()
        logger.exception("order %s update failed", order_id)
        audit.record(db, "UPDATE_ORDER_ERROR", RESOURCE, user_id=actor.id, resource_id=order_id,
                     details={"error": str(e)}, client=client)
        raise OrderUpdateFailed() from e

    if credited:
        logger.info("order %s paid: credited %s cents cashback to %s", order_id, credited, order.user_id)
    audit.record(db, "UPDATE_ORDER_SUCCESS", RESOURCE, user_id=actor.id, resource_id=order_id,
                 details={**fields, "previous_status": previous, "cashback_credited_cents": credited}, client=client)
    return order
