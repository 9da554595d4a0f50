import re
import unicodedata
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from coffeeon.api.deps import get_db, get_current_user, get_client_info, require_admin
from coffeeon.db.models import Product, OrderItem, User
from coffeeon.errors import Conflict, NotFound, NothingToUpdate, ValidationFailed
from coffeeon.services import audit
from coffeeon.services.audit import ClientInfo
from coffeeon.services.pricing import from_cents, to_cents

router = APIRouter()  # main.py mounts at /api/produtos
RESOURCE = "produtos"


class ProductCreate(BaseModel):
    nome: Optional[str] = None
    descricao: str = ""
    preco: Optional[Decimal] = Field(default=None, decimal_places=2)
    estoque: int = 0
    ativo: bool = True
    imagem: Optional[str] = None
    assinatura: bool = False


class ProductUpdate(BaseModel):
    nome: Optional[str] = None
    descricao: Optional[str] = None
    preco: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    estoque: Optional[int] = Field(default=None, ge=0)
    ativo: Optional[bool] = None
    imagem: Optional[str] = None
    assinatura: Optional[bool] = None


def slugify(text: str) -> str:
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "produto"


def unique_slug(db: Session, name: str, exclude_id: Optional[int] = None) -> str:
    base = slugify(name)
    slug, n = base, 1
    while db.execute(select(Product.id).where(Product.slug == slug, Product.id != exclude_id)).first():
        slug = f"{base}-{n}"
        n += 1
    return slug


def sanitize_product(p: Product) -> dict:
    return {
        "id": p.id,
        "nome": p.name,
        "descricao": p.description,
        "preco": float(from_cents(p.price_cents)),
        "estoque": p.stock,
        "ativo": bool(p.active),
        "assinatura": bool(p.subscription),
        "slug": p.slug,
        "imagem": p.image,
        "created_at": p.created_at,
        "updated_at": p.updated_at,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductCreate,
                   admin: User = Depends(require_admin("CREATE_PRODUCT_FORBIDDEN", RESOURCE)),
                   client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    if not payload.nome or payload.preco is None:
        audit.record(db, "CREATE_PRODUCT_INVALID", RESOURCE, user_id=admin.id,
                     details={"nome": payload.nome, "preco": payload.preco}, client=client)
        raise ValidationFailed("Name and price are required.")
    if payload.preco < 0 or payload.estoque < 0:
        audit.record(db, "CREATE_PRODUCT_NEGATIVE_VALUES", RESOURCE, user_id=admin.id,
                     details={"nome": payload.nome, "preco": payload.preco, "estoque": payload.estoque}, client=client)
        raise ValidationFailed("Price and stock cannot be negative.")

    obj = Product(
        name=payload.nome,
        description=payload.descricao,
        price_cents=to_cents(payload.preco),
        stock=payload.estoque,
        active=payload.ativo,
        slug=unique_slug(db, payload.nome),
        image=payload.imagem,
        subscription=payload.assinatura,
    )
    db.add(obj); db.commit(); db.refresh(obj)

    audit.record(db, "CREATE_PRODUCT_SUCCESS", RESOURCE, user_id=admin.id, resource_id=obj.id,
                 details={"nome": obj.name, "preco": payload.preco, "estoque": obj.stock, "slug": obj.slug}, client=client)
    return {"message": "Product created successfully", "id": obj.id, "slug": obj.slug}


@router.get("", response_model=List[dict])
def list_products(user: User = Depends(get_current_user), client: ClientInfo = Depends(get_client_info),
                  db: Session = Depends(get_db)):
    rows = db.execute(select(Product).order_by(Product.created_at.desc(), Product.id.desc())).scalars().all()
    audit.record(db, "LIST_PRODUCTS", RESOURCE, user_id=user.id, details={"total": len(rows)}, client=client)
    return [sanitize_product(p) for p in rows]


@router.get("/{product_id}")
def get_product(product_id: int, user: User = Depends(get_current_user), client: ClientInfo = Depends(get_client_info),
                db: Session = Depends(get_db)):
    obj = db.get(Product, product_id)
    if not obj:
        audit.record(db, "GET_PRODUCT_NOT_FOUND", RESOURCE, user_id=user.id, resource_id=product_id, client=client)
        raise NotFound("Product not found")
    audit.record(db, "GET_PRODUCT_SUCCESS", RESOURCE, user_id=user.id, resource_id=product_id, client=client)
    return sanitize_product(obj)


@router.put("/{product_id}")
def update_product(product_id: int, payload: ProductUpdate,
                   admin: User = Depends(require_admin("UPDATE_PRODUCT_FORBIDDEN", RESOURCE)),
                   client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    if not changes: raise NothingToUpdate()
    obj = db.get(Product, product_id)
    if not obj:
        audit.record(db, "UPDATE_PRODUCT_NOT_FOUND", RESOURCE, user_id=admin.id, resource_id=product_id, client=client)
        raise NotFound("Product not found")

    columns = {"nome": "name", "descricao": "description", "estoque": "stock", "ativo": "active",
               "imagem": "image", "assinatura": "subscription"}
    for k, v in changes.items():
        if k == "preco":
            obj.price_cents = to_cents(v)
        else:
            setattr(obj, columns[k], v)
    if "nome" in changes:
        obj.slug = unique_slug(db, changes["nome"], exclude_id=obj.id)
    db.add(obj); db.commit(); db.refresh(obj)

    audit.record(db, "UPDATE_PRODUCT_SUCCESS", RESOURCE, user_id=admin.id, resource_id=product_id, details=changes, client=client)
    return sanitize_product(obj)


@router.delete("/{product_id}")
def delete_product(product_id: int,
                   admin: User = Depends(require_admin("DELETE_PRODUCT_FORBIDDEN", RESOURCE)),
                   client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    obj = db.get(Product, product_id)
    if not obj:
        audit.record(db, "DELETE_PRODUCT_NOT_FOUND", RESOURCE, user_id=admin.id, resource_id=product_id, client=client)
        raise NotFound("Product not found")
    if db.execute(select(OrderItem.id).where(OrderItem.product_id == product_id).limit(1)).first():
        audit.record(db, "DELETE_PRODUCT_IN_USE", RESOURCE, user_id=admin.id, resource_id=product_id, client=client)
        raise Conflict("Product is referenced by orders; deactivate it instead")
    db.delete(obj); db.commit()
    audit.record(db, "DELETE_PRODUCT_SUCCESS", RESOURCE, user_id=admin.id, resource_id=product_id, client=client)
    return {"message": "Product removed successfully"}
