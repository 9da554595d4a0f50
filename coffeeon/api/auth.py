import logging
from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from typing import Optional
from sqlalchemy.orm import Session

from coffeeon.api.deps import get_db, get_current_user, get_session_store, get_session_token
from coffeeon.core.config import settings
from coffeeon.db.models import User
from coffeeon.errors import Unauthenticated, ValidationFailed
from coffeeon.security.utils import verify_password, generate_session_token
from coffeeon.store.session_store import Session as LoginSession, SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()  # main.py mounts at /api


class LoginPayload(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        token,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        path="/",
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )


@router.post("/login", status_code=status.HTTP_204_NO_CONTENT)
def login(payload: LoginPayload, db: Session = Depends(get_db), store: SessionStore = Depends(get_session_store)):
    if not payload.email or not payload.password:
        raise ValidationFailed("Email and password are required")

    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not user.active or not verify_password(payload.password, user.password_hash):
        raise Unauthenticated("Invalid credentials")

    token = generate_session_token()
    store.set(token, LoginSession(id=user.id, email=user.email), settings.SESSION_MAX_AGE_SECONDS)
    logger.info("login ok for %s", user.email)

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    set_session_cookie(response, token)
    return response


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    user: User = Depends(get_current_user),
    token: Optional[str] = Depends(get_session_token),
    store: SessionStore = Depends(get_session_store),
):
    if token:
        store.delete(token)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"id": user.id, "email": user.email, "isAdmin": user.is_admin}
