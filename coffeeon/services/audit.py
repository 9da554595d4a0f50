"""Administrative audit trail.

Entries are written in their own short-lived session so they survive a
rollback of the caller's transaction. A failed write is logged and dropped;
it never reaches the caller.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session, sessionmaker

from coffeeon.db.models import AdminLog

logger = logging.getLogger(__name__)

AuditSession = sessionmaker(autoflush=False, autocommit=False)


@dataclass(frozen=True)
class ClientInfo:
    ip: Optional[str] = None
    user_agent: Optional[str] = None


def record(
    db: Session,
    action: str,
    resource: Optional[str] = None,
    user_id: Optional[str] = None,
    resource_id: Any = None,
    details: Optional[dict] = None,
    client: Optional[ClientInfo] = None,
) -> None:
    if not action:
        return
    try:
        entry = AdminLog(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=json.dumps(details, default=str) if details else None,
            ip=client.ip if client else None,
            user_agent=client.user_agent if client else None,
        )
        with AuditSession(bind=db.get_bind()) as s:
            s.add(entry)
            s.commit()
    except Exception:
        logger.exception("audit record failed (action=%s resource=%s)", action, resource)
