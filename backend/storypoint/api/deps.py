"""
API依赖项
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from storypoint.core.database import get_db
from storypoint.core.errors import SessionError
from storypoint.models.user import User
from storypoint.services.auth_service import AuthService
from storypoint.services.session_gateway import SessionGateway


def get_gateway(request: Request) -> SessionGateway:
    """获取应用持有的会话网关"""
    return request.app.state.gateway


def get_current_host(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db)
) -> User:
    """从Bearer令牌解析当前主持人"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authentication required")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    try:
        return AuthService(db).host_for_token(token.strip())
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
