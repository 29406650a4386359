"""
API路由模块
"""

from fastapi import APIRouter
from .auth_routes import router as auth_router
from .session_routes import router as session_router
from .websocket_routes import router as ws_router

# 创建主路由器
api_router = APIRouter()

# 注册各个功能模块的路由
api_router.include_router(auth_router, prefix="/auth", tags=["主持人账号"])
api_router.include_router(session_router, prefix="/sessions", tags=["会话管理"])
api_router.include_router(ws_router, prefix="/ws", tags=["WebSocket"])
