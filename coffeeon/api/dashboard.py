from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from coffeeon.api.deps import get_db, require_admin, get_client_info
from coffeeon.db.models import User
from coffeeon.services import audit, dashboard
from coffeeon.services.audit import ClientInfo

router = APIRouter()

@router.get("/resumo")
def get_summary(admin: User = Depends(require_admin("VIEW_DASHBOARD_FORBIDDEN", "dashboard")),
                client: ClientInfo = Depends(get_client_info), db: Session = Depends(get_db)):
    data = dashboard.summary(db)
    audit.record(db, "VIEW_DASHBOARD", "dashboard", user_id=admin.id, client=client)
    return data
