"""
数据库配置
"""
import logging

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """根据连接串创建数据库引擎"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=echo  # 设置为True可以看到SQL查询日志
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """创建绑定到引擎的会话工厂"""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request):
    """获取数据库会话"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Engine):
    """初始化数据库"""
    # 导入所有模型
    from storypoint.models.user import User
    from storypoint.models.estimation_session import EstimationSession
    from storypoint.models.story import Story
    from storypoint.models.participant import Participant
    from storypoint.models.vote import Vote

    # 创建所有表
    Base.metadata.create_all(bind=engine)
    logger.info("数据库初始化完成")
