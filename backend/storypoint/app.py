"""
应用工厂
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from storypoint.api import api_router
from storypoint.core.config import Settings, settings as default_settings
from storypoint.core.database import build_engine, build_session_factory, init_db
from storypoint.services.connection_registry import ConnectionRegistry
from storypoint.services.session_gateway import SessionGateway
from storypoint.services.state_machine import SessionLocks, SessionStateMachine

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> FastAPI:
    """创建应用；测试时可以注入配置和数据库引擎"""
    settings = settings or default_settings
    engine = engine or build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用启动时的初始化"""
        logger.info(f"🚀 启动 {settings.APP_NAME} 后端服务...")
        init_db(engine)

        # 重启后没有任何存活连接，所有参与者都应处于离线状态
        with session_factory() as db:
            reset = SessionStateMachine(db).reset_presence()
            db.commit()
        if reset:
            logger.info(f"已将 {reset} 个参与者重置为离线")

        yield
        logger.info("服务已停止")

    app = FastAPI(
        title=settings.APP_NAME,
        description="实时协作的故事点估算后端API",
        version=settings.VERSION,
        lifespan=lifespan
    )

    # CORS设置
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 连接注册表和网关随应用创建，不使用模块级全局变量
    registry = ConnectionRegistry()
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.registry = registry
    app.state.gateway = SessionGateway(session_factory, registry, SessionLocks())

    # 注册API路由
    app.include_router(api_router, prefix="/api")

    @app.get("/")
    async def root():
        """根路径健康检查"""
        return {"message": f"{settings.APP_NAME} 后端运行中", "status": "healthy"}

    @app.get("/health")
    async def health_check():
        """健康检查端点"""
        return {"status": "healthy", "service": "storypoint", **app.state.gateway.connection_counts()}

    return app
