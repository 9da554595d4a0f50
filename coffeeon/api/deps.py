from typing import Optional
from fastapi import Depends, Request
from sqlalchemy.orm import Session
from coffeeon.core.config import settings
from coffeeon.db.session import SessionLocal
from coffeeon.db.models import User
from coffeeon.errors import Unauthenticated, Forbidden
from coffeeon.services import audit
from coffeeon.services.audit import ClientInfo
from coffeeon.store.session_store import SessionStore, get_client

def get_db():
    db = SessionLocal()
    try: yield db
    finally: db.close()

def get_session_store() -> SessionStore:
    return SessionStore(get_client())

def get_client_info(request: Request) -> ClientInfo:
    forwarded = request.headers.get("x-forwarded-for")
    ip = forwarded.split(",")[0].strip() if forwarded else (request.client.host if request.client else None)
    return ClientInfo(ip=ip, user_agent=request.headers.get("user-agent"))

def get_session_token(request: Request) -> Optional[str]:
    return request.cookies.get(settings.SESSION_COOKIE_NAME) or None

def get_optional_user(
    token: Optional[str] = Depends(get_session_token),
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
) -> Optional[User]:
    if not token: return None
    sess = store.get(token)
    if not sess: return None
    user = db.get(User, sess.id)
    return user if user and user.active else None

def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if not user: raise Unauthenticated()
    return user

def require_admin(action: str, resource: str):
    """Dependency that lets administrators through and audits everyone else as `action`."""
    def _check(
        user: User = Depends(get_current_user),
        client: ClientInfo = Depends(get_client_info),
        db: Session = Depends(get_db),
    ) -> User:
        if not user.is_admin:
            audit.record(db, action, resource, user_id=user.id, client=client)
            raise Forbidden()
        return user
    return _check
