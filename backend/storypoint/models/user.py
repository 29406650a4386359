"""
主持人账号数据模型
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from storypoint.core.database import Base

class User(Base):
    """主持人表"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True)
    token_hash = Column(String(64), nullable=False, unique=True, index=True)  # 访问令牌的sha256
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    sessions = relationship("EstimationSession", back_populates="host")
