"""
主持人账号API路由
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from storypoint.core.database import get_db
from storypoint.core.errors import SessionError
from storypoint.schemas.auth_schemas import HostCreate, HostInfo
from storypoint.services.auth_service import AuthService

router = APIRouter()

@router.post("/hosts", status_code=201)
async def register_host(
    host_data: HostCreate,
    request: Request,
    db: Session = Depends(get_db)
):
    """创建主持人账号，令牌只返回这一次"""
    if not request.app.state.settings.ALLOW_HOST_REGISTRATION:
        raise HTTPException(status_code=403, detail="Host registration is disabled")

    try:
        user, token = AuthService(db).register_host(host_data.email)
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"user": HostInfo.model_validate(user).dump(), "token": token}
