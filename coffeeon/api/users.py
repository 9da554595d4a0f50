from typing import Optional
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from coffeeon.api.deps import get_db, get_current_user, get_optional_user, get_client_info, require_admin
from coffeeon.db.models import User, Order, Role
from coffeeon.errors import Conflict, Forbidden, NotFound, NothingToUpdate, ShopError, ValidationFailed
from coffeeon.security.utils import hash_password, generate_reset_code
from coffeeon.services import audit, mailer
from coffeeon.services.audit import ClientInfo
from coffeeon.services.pricing import from_cents

router = APIRouter()  # main.py mounts at /api/usuarios
RESOURCE = "usuarios"
ROLES = (Role.USER.value, Role.ADMIN.value)


class UserCreate(BaseModel):
    nome: Optional[str] = None
    email: Optional[EmailStr] = None
    senha: Optional[str] = None
    role: str = Role.USER.value
    ativo: bool = True
    assinante: bool = False


class UserUpdate(BaseModel):
    nome: Optional[str] = None
    email: Optional[EmailStr] = None
    senha: Optional[str] = None
    role: Optional[str] = None
    ativo: Optional[bool] = None
    assinante: Optional[bool] = None


class RecoverRequest(BaseModel):
    email: Optional[str] = None


class ResetRequest(BaseModel):
    email: Optional[str] = None
    codigo: Optional[str] = None
    novaSenha: Optional[str] = None


def sanitize_user(u: User) -> dict:
    return {
        "id": u.id,
        "nome": u.name,
        "email": u.email,
        "role": u.role,
        "ativo": bool(u.active),
        "assinante": bool(u.subscriber),
        "cashback": float(from_cents(u.cashback_cents or 0)),
        "created_at": u.created_at,
        "updated_at": u.updated_at,
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, actor: Optional[User] = Depends(get_optional_user),
                client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    actor_id = actor.id if actor else None
    if not payload.nome or not payload.email or not payload.senha:
        audit.record(db, "CREATE_USER_MISSING_FIELDS", RESOURCE, user_id=actor_id,
                     details={"nome": payload.nome, "email": payload.email}, client=client)
        raise ValidationFailed("nome, email and senha are required")

    role, active, subscriber = payload.role, payload.ativo, payload.assinante
    # only administrators may choose role and flags
    if not (actor and actor.is_admin):
        role, active, subscriber = Role.USER.value, True, False
    if role not in ROLES:
        audit.record(db, "CREATE_USER_INVALID_ROLE", RESOURCE, user_id=actor_id, details={"role": role}, client=client)
        raise ValidationFailed("Invalid role (ADMIN/USER)")

    email = str(payload.email)
    if db.query(User).filter(User.email == email).first():
        audit.record(db, "CREATE_USER_DUPLICATE_EMAIL", RESOURCE, user_id=actor_id, details={"email": email}, client=client)
        raise Conflict("Email already registered")

    user = User(
        name=payload.nome,
        email=email,
        password_hash=hash_password(payload.senha),
        role=role,
        active=active,
        subscriber=subscriber,
    )
    db.add(user); db.commit(); db.refresh(user)

    audit.record(db, "CREATE_USER_SUCCESS", RESOURCE, user_id=actor_id or user.id, resource_id=user.id,
                 details={"nome": user.name, "email": user.email, "role": role, "ativo": active, "assinante": subscriber},
                 client=client)
    return {"id": user.id, "message": "User created successfully"}


@router.get("")
def list_users(admin: User = Depends(require_admin("LIST_USERS_FORBIDDEN", RESOURCE)),
               client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    users = db.query(User).order_by(User.created_at.desc()).all()
    audit.record(db, "LIST_USERS", RESOURCE, user_id=admin.id, details={"total": len(users)}, client=client)
    return [sanitize_user(u) for u in users]


@router.post("/recover")
def request_password_reset(payload: RecoverRequest, client: ClientInfo = Depends(get_client_info),
                           db: Session = Depends(get_db)):
    if not payload.email:
        raise ValidationFailed("Email is required.")
    user = db.query(User).filter(User.email == payload.email).first()
    if not user:
        raise NotFound("User not found.")

    code = generate_reset_code()
    user.reset_code = code
    db.add(user); db.commit()

    html = (
        "<h2>Password recovery</h2>"
        f"<p>Hello, {user.name}!</p>"
        "<p>Use the code below to reset your password:</p>"
        f'<h1 style="color:#4CAF50;">{code}</h1>'
        "<p>If you did not request this, ignore this e-mail.</p>"
    )
    try:
        mailer.send_email(user.email, "Password recovery", html)
    except Exception as e:
        audit.record(db, "USER_RESET_CODE_ERROR", RESOURCE, user_id=user.id, details={"error": str(e)}, client=client)
        raise ShopError("Failed to send recovery code.") from e

    audit.record(db, "USER_RESET_CODE_SENT", RESOURCE, user_id=user.id, resource_id=user.id, client=client)
    return {"message": "Recovery code sent by e-mail."}


@router.post("/reset")
def reset_password(payload: ResetRequest, client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    if not payload.email or not payload.codigo or not payload.novaSenha:
        raise ValidationFailed("Email, code and new password are required.")
    user = db.query(User).filter(User.email == payload.email).first()
    if not user:
        raise NotFound("User not found.")
    if not user.reset_code or user.reset_code != payload.codigo:
        audit.record(db, "USER_RESET_CODE_INVALID", RESOURCE, user_id=user.id, resource_id=user.id,
                     details={"codigo": payload.codigo}, client=client)
        raise ValidationFailed("Invalid code.")

    user.password_hash = hash_password(payload.novaSenha)
    user.reset_code = None
    db.add(user); db.commit()

    audit.record(db, "USER_PASSWORD_RESET_SUCCESS", RESOURCE, user_id=user.id, resource_id=user.id, client=client)
    return {"message": "Password reset successfully."}


@router.get("/{user_id}")
def get_user(user_id: str, actor: User = Depends(get_current_user), client: ClientInfo = Depends(get_client_info),
             db: Session = Depends(get_db)):
    if not actor.is_admin and actor.id != user_id:
        audit.record(db, "GET_USER_FORBIDDEN", RESOURCE, user_id=actor.id, resource_id=user_id, client=client)
        raise Forbidden()
    user = db.get(User, user_id)
    if not user:
        audit.record(db, "GET_USER_NOT_FOUND", RESOURCE, user_id=actor.id, resource_id=user_id, client=client)
        raise NotFound("User not found")
    audit.record(db, "GET_USER_SUCCESS", RESOURCE, user_id=actor.id, resource_id=user_id, client=client)
    return sanitize_user(user)


@router.put("/{user_id}")
def update_user(user_id: str, payload: UserUpdate, actor: User = Depends(get_current_user),
                client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    if not actor.is_admin and actor.id != user_id:
        audit.record(db, "UPDATE_USER_FORBIDDEN", RESOURCE, user_id=actor.id, resource_id=user_id, client=client)
        raise Forbidden()

    changes = payload.model_dump(exclude_unset=True)
    if not actor.is_admin:
        for k in ("role", "ativo", "assinante"):
            changes.pop(k, None)
    if "role" in changes and changes["role"] not in ROLES:
        raise ValidationFailed("Invalid role (ADMIN/USER)")
    if not changes:
        raise NothingToUpdate()

    user = db.get(User, user_id)
    if not user:
        audit.record(db, "UPDATE_USER_NOT_FOUND", RESOURCE, user_id=actor.id, resource_id=user_id, client=client)
        raise NotFound("User not found")

    if changes.get("email") is not None:
        changes["email"] = str(changes["email"])
        dup = db.query(User).filter(User.email == changes["email"], User.id != user_id).first()
        if dup:
            audit.record(db, "UPDATE_USER_DUPLICATE_EMAIL", RESOURCE, user_id=actor.id, resource_id=user_id,
                         details={"email": changes["email"]}, client=client)
            raise Conflict("Email already registered")

    columns = {"nome": "name", "email": "email", "role": "role", "ativo": "active", "assinante": "subscriber"}
    for k, v in changes.items():
        if v is None:
            continue
        if k == "senha":
            user.password_hash = hash_password(v)
        else:
            setattr(user, columns[k], v)
    db.add(user); db.commit()

    changes.pop("senha", None)
    audit.record(db, "UPDATE_USER_SUCCESS", RESOURCE, user_id=actor.id, resource_id=user_id, details=changes, client=client)
    return {"message": "User updated successfully"}


@router.delete("/{user_id}")
def delete_user(user_id: str, admin: User = Depends(require_admin("DELETE_USER_FORBIDDEN", RESOURCE)),
                client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    user = db.get(User, user_id)
    if not user:
        audit.record(db, "DELETE_USER_NOT_FOUND", RESOURCE, user_id=admin.id, resource_id=user_id, client=client)
        raise NotFound("User not found")
    if db.query(Order.id).filter(Order.user_id == user_id).first():
        audit.record(db, "DELETE_USER_HAS_ORDERS", RESOURCE, user_id=admin.id, resource_id=user_id, client=client)
        raise Conflict("User has orders; deactivate the account instead")
    db.delete(user); db.commit()
    audit.record(db, "DELETE_USER_SUCCESS", RESOURCE, user_id=admin.id, resource_id=user_id, client=client)
    return {"message": "User removed successfully"}
