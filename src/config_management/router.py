from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from src.auth.dependencies import get_current_user, require_super_admin
from src.common.responses import envelope
from src.config_management.schemas import UpdateConfigRequest, MaxTopUpResponse
from src.config_management.service import ConfigService
from src.database import get_db

router = APIRouter()
admin_router = APIRouter()

@router.get("/max-topup")
def get_max_topup(request: Request, db: Session = Depends(get_db), _user=Depends(get_current_user)):
    """Highest wallet balance a top-up may reach, in paisa"""
    return envelope(request, MaxTopUpResponse(max_limit_paisa=ConfigService(db).get_max_topup_paisa()))

# Admin endpoints
@admin_router.get("/settings")
def list_settings(request: Request, db: Session = Depends(get_db), _admin=Depends(require_super_admin)):
    """All runtime settings"""
    return envelope(request, ConfigService(db).list_settings())

@admin_router.put("/settings/{key}")
def update_setting(
    key: str,
    payload: UpdateConfigRequest,
    request: Request,
    db: Session = Depends(get_db),
    _admin=Depends(require_super_admin),
):
    """Change the value of an existing setting"""
    return envelope(request, ConfigService(db).update_setting(key, payload.value))
