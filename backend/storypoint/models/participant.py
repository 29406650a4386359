"""
参与者数据模型
"""

import uuid

from sqlalchemy import Column, String, ForeignKey, Boolean, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from storypoint.core.database import Base

def _new_participant_id() -> str:
    return str(uuid.uuid4())

class Participant(Base):
    """匿名参与者表"""
    __tablename__ = "participants"

    id = Column(String(36), primary_key=True, default=_new_participant_id)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    alias = Column(String(50), nullable=False)        # 会话内显示名称
    is_connected = Column(Boolean, default=True)      # 连接是否存活
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    session = relationship("EstimationSession", back_populates="participants")
    votes = relationship("Vote", back_populates="participant", cascade="all, delete-orphan")
