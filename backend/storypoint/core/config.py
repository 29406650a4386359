"""
应用配置模块
"""

from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """应用设置"""

    # 基础设置
    APP_NAME: str = "Storypoint"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # 服务器设置
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # 数据库设置
    DATABASE_URL: str = "sqlite:///./storypoint.db"

    # 主持人账号
    ALLOW_HOST_REGISTRATION: bool = True

    # WebSocket设置
    WS_SEND_QUEUE_SIZE: int = 256  # 每个连接的待发送消息上限，超出视为慢消费者

    class Config:
        env_file = ".env"
        case_sensitive = True

# 全局设置实例
settings = Settings()
