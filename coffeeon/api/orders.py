from typing import Any, List, Optional
from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from coffeeon.api.deps import get_db, get_current_user, get_optional_user, get_client_info
from coffeeon.db.models import Order, User
from coffeeon.services import orders as order_service
from coffeeon.services.audit import ClientInfo
from coffeeon.services.pricing import from_cents

router = APIRouter()


class OrderPlacedResponse(BaseModel):
    message: str = "Order created successfully"
    pedidoId: int
    totalBruto: float
    descontoAssinatura: float
    descontoCashback: float
    totalFinal: float


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    obs: Optional[str] = None
    feedback: Optional[str] = None


def _money(cents: int) -> float:
    return float(from_cents(cents))


def serialize_order(o: Order) -> dict:
    return {
        "id": o.id,
        "usuario_id": o.user_id,
        "status": o.status,
        "obs": o.obs,
        "endereco": o.address,
        "feedback": o.feedback,
        "total_itens": o.total_items,
        "total_bruto": _money(o.gross_cents),
        "total_desconto": _money(o.discount_cents),
        "desconto_assinatura": _money(o.subscription_discount_cents),
        "desconto_cashback": _money(o.cashback_discount_cents),
        "total_final": _money(o.net_cents),
        "created_at": o.created_at,
        "updated_at": o.updated_at,
    }


def serialize_order_detail(o: Order) -> dict:
    data = serialize_order(o)
    data["itens"] = [
        {
            "id": it.id,
            "produto_id": it.product_id,
            "quantidade": it.quantity,
            "preco_unitario": _money(it.unit_price_cents),
            "desconto": _money(it.discount_cents),
            "subtotal": _money(it.subtotal_cents),
            "nome": it.product.name if it.product else None,
            "imagem": it.product.image if it.product else None,
        }
        for it in o.items
    ]
    return data


@router.post("/pedidos", response_model=OrderPlacedResponse, status_code=201)
def create_order(
    payload: Optional[dict[str, Any]] = Body(default=None),
    user: Optional[User] = Depends(get_optional_user),
    client: ClientInfo = Depends(get_client_info),
    db: Session = Depends(get_db),
):
    # body is validated by the service so that every rejection is audited
    payload = payload or {}
    placed = order_service.place_order(
        db,
        user.id if user else None,
        payload.get("itens"),
        obs=str(payload.get("obs") or ""),
        address=str(payload.get("endereco") or ""),
        client=client,
    )
    return OrderPlacedResponse(
        pedidoId=placed.order_id,
        totalBruto=float(placed.gross),
        descontoAssinatura=float(placed.subscription_discount),
        descontoCashback=float(placed.cashback_discount),
        totalFinal=float(placed.net),
    )


@router.get("/pedidos", response_model=List[dict])
def list_orders(user: User = Depends(get_current_user), client: ClientInfo = Depends(get_client_info),
                db: Session = Depends(get_db)):
    return [serialize_order(o) for o in order_service.list_orders(db, user, client)]


@router.get("/pedidos/{order_id}")
def get_order(order_id: int, user: User = Depends(get_current_user), client: ClientInfo = Depends(get_client_info),
              db: Session = Depends(get_db)):
    return serialize_order_detail(order_service.get_order(db, order_id, user, client))


@router.put("/pedidos/{order_id}")
def update_order(order_id: int, payload: OrderUpdate, user: User = Depends(get_current_user),
                 client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    order = order_service.update_order(db, order_id, payload.model_dump(exclude_unset=True), user, client)
    return {"message": "Order updated successfully.", "pedido": serialize_order(order)}
