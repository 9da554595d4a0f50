"""Order pricing: gross total, subscription discount and cashback redemption.

All arithmetic is done in ``Decimal`` currency units. Amounts are rounded to
cents only when a quote is converted for storage (``Quote.in_cents``).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Sequence

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError

from coffeeon.core.config import settings
from coffeeon.errors import EmptyOrder, InvalidLineItem

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) / CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) * CENT).quantize(CENT)


class LineItem(BaseModel):
    """One requested product entry, as sent by the client."""

    model_config = ConfigDict(populate_by_name=True)

    # strict ints: booleans and numeric strings are not quantities
    product_id: StrictInt = Field(alias="produtoId", gt=0)
    quantity: StrictInt = Field(alias="quantidade", ge=1)
    unit_price: Decimal = Field(alias="preco", ge=0)


def parse_line_items(raw: Any) -> List[LineItem]:
    if not isinstance(raw, list) or not raw:
        raise EmptyOrder()
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise InvalidLineItem(entry, reason="item must be an object")
        try:
            items.append(LineItem.model_validate(entry))
        except ValidationError as e:
            raise InvalidLineItem(entry, reason=e.errors()[0]["msg"]) from e
    return items


@dataclass(frozen=True)
class CentsBreakdown:
    gross: int
    subscription_discount: int
    cashback_discount: int
    total_discount: int
    net: int
    cashback_remaining: int


@dataclass(frozen=True)
class Quote:
    gross: Decimal
    subscription_discount: Decimal
    cashback_discount: Decimal
    total_discount: Decimal
    net: Decimal
    cashback_remaining: Decimal

    def in_cents(self) -> CentsBreakdown:
        # discounts are rounded independently, so the cashback share is capped
        # again in cents to keep net >= 0 and total == gross - net
        gross = to_cents(self.gross)
        subscription = min(to_cents(self.subscription_discount), gross)
        cashback = min(to_cents(self.cashback_discount), gross - subscription)
        available = to_cents(self.cashback_discount + self.cashback_remaining)
        total = subscription + cashback
        return CentsBreakdown(
            gross=gross,
            subscription_discount=subscription,
            cashback_discount=cashback,
            total_discount=total,
            net=gross - total,
            cashback_remaining=available - cashback,
        )


def validate_item(item) -> None:
    product_id = getattr(item, "product_id", None)
    quantity = getattr(item, "quantity", None)
    unit_price = getattr(item, "unit_price", None)
    if not product_id:
        raise InvalidLineItem(item, reason="missing product")
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
        raise InvalidLineItem(item, reason="quantity must be a positive integer")
    if unit_price is None or Decimal(unit_price) < 0:
        raise InvalidLineItem(item, reason="price must not be negative")


def quote(
    items: Sequence,
    subscription_eligible: bool,
    cashback_available: Decimal,
    subscription_rate: Decimal | None = None,
) -> Quote:
    """Price a list of line items for one account.

    Every item is validated before anything is computed; a single bad item
    rejects the whole order. Cashback is capped by both the balance and the
    amount still payable after the subscription discount.
    """
    for item in items:
        validate_item(item)

    rate = Decimal(settings.SUBSCRIPTION_DISCOUNT_RATE) if subscription_rate is None else Decimal(subscription_rate)
    available = max(Decimal(cashback_available), ZERO)

    gross = sum((Decimal(it.unit_price) * it.quantity for it in items), ZERO)
    subscription_discount = gross * rate if subscription_eligible else ZERO
    payable = gross - subscription_discount
    cashback_discount = min(available, payable)
    total_discount = subscription_discount + cashback_discount

    return Quote(
        gross=gross,
        subscription_discount=subscription_discount,
        cashback_discount=cashback_discount,
        total_discount=total_discount,
        net=gross - total_discount,
        cashback_remaining=available - cashback_discount,
    )


def cashback_accrual_cents(net_cents: int, rate: Decimal | None = None) -> int:
    rate = Decimal(settings.CASHBACK_RATE) if rate is None else Decimal(rate)
    return to_cents(from_cents(net_cents) * rate)


def describe_discounts(obs: str, breakdown: CentsBreakdown) -> str:
    note = (
        f"Subscription discount: {from_cents(breakdown.subscription_discount)}, "
        f"Cashback: {from_cents(breakdown.cashback_discount)}"
    )
    return f"{obs} | {note}" if obs else note


