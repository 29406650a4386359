"""
会话管理API路由
"""

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from storypoint.api.deps import get_current_host, get_gateway
from storypoint.core.database import get_db
from storypoint.core.errors import SessionError
from storypoint.models.user import User
from storypoint.schemas.session_schemas import JoinRequest, SessionCreate
from storypoint.services.session_gateway import SessionGateway
from storypoint.services.session_service import SessionService

router = APIRouter()

@router.post("", status_code=201)
async def create_session(
    session_data: SessionCreate,
    host: User = Depends(get_current_host),
    db: Session = Depends(get_db)
):
    """创建新会话"""
    session = SessionService(db).create_session(host, session_data)
    return {"session": session.dump()}

@router.get("")
async def list_sessions(
    host: User = Depends(get_current_host),
    db: Session = Depends(get_db)
):
    """获取主持人的会话列表"""
    sessions = SessionService(db).list_host_sessions(host)
    return {"sessions": [session.dump() for session in sessions]}

@router.get("/{session_id}")
async def get_session(
    session_id: str,
    host: User = Depends(get_current_host),
    db: Session = Depends(get_db)
):
    """获取会话详情（故事与参与者）"""
    try:
        return SessionService(db).get_session_detail(host, session_id)
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    host: User = Depends(get_current_host),
    gateway: SessionGateway = Depends(get_gateway)
):
    """删除会话并通知所有连接"""
    try:
        await gateway.delete_session(session_id, host.id)
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True}

@router.post("/{session_id}/join")
async def join_session(
    session_id: str,
    join_data: JoinRequest,
    response: Response,
    gateway: SessionGateway = Depends(get_gateway)
):
    """以别名加入会话；已断线的同名参与者会被重新接管"""
    try:
        participant, reattached, session_name = await gateway.register_participant(session_id, join_data.alias)
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    response.status_code = 200 if reattached else 201
    return {
        "participant": participant,
        "sessionId": session_id,
        "sessionName": session_name
    }

@router.get("/{session_id}/check")
async def check_session(
    session_id: str,
    db: Session = Depends(get_db)
):
    """加入前检查会话是否存在"""
    try:
        return SessionService(db).check_session(session_id).dump()
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
