"""Sales summary for the administrative dashboard. Only PAID orders count as revenue."""
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coffeeon.db.models import Order, OrderItem, OrderStatus, Product, User
from coffeeon.services.pricing import from_cents

MONTHS = 6
TOP = 5


def _money(cents) -> float:
    return float(from_cents(int(cents or 0)))


def summary(db: Session) -> dict:
    paid = Order.status == OrderStatus.PAID.value

    total_orders = db.execute(select(func.count(Order.id))).scalar_one()
    paid_cents = db.execute(select(func.coalesce(func.sum(Order.net_cents), 0)).where(paid)).scalar_one()

    # grouped in Python: month formatting differs between database dialects
    by_month = defaultdict(int)
    for created_at, net_cents in db.execute(select(Order.created_at, Order.net_cents).where(paid)):
        by_month[created_at.strftime("%Y-%m")] += net_cents
    months = sorted(by_month, reverse=True)[:MONTHS]

    revenue = func.sum(OrderItem.quantity * OrderItem.unit_price_cents)
    top_products = db.execute(
        select(Product.name, func.sum(OrderItem.quantity), revenue)
        .join(OrderItem, OrderItem.product_id == Product.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(paid)
        .group_by(Product.id, Product.name)
        .order_by(revenue.desc())
        .limit(TOP)
    ).all()

    spent = func.sum(Order.net_cents)
    top_customers = db.execute(
        select(User.name, spent, func.count(Order.id))
        .join(Order, Order.user_id == User.id)
        .where(paid)
        .group_by(User.id, User.name)
        .order_by(spent.desc())
        .limit(TOP)
    ).all()

    return {
        "totais": {
            "total_pedidos": total_orders,
            "total_vendas": _money(paid_cents),
            "ticket_medio": _money(round(paid_cents / total_orders)) if total_orders else 0.0,
        },
        "porMes": [{"mes": m, "total_mes": _money(by_month[m])} for m in months],
        "topProdutos": [
            {"nome": name, "quantidade_vendida": int(qty or 0), "total_vendido": _money(total)}
            for name, qty, total in top_products
        ],
        "topClientes": [
            {"nome": name, "total_gasto": _money(total), "pedidos": count}
            for name, total, count in top_customers
        ],
    }
