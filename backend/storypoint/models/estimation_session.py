"""
估算会话数据模型
"""

import json
import uuid

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Boolean
from sqlalchemy.sql import func
from sqlalchemy.orm import object_session, relationship
from storypoint.core.database import Base

def _new_session_id() -> str:
    return str(uuid.uuid4())

class EstimationSession(Base):
    """估算会话表"""
    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=_new_session_id)
    name = Column(String(200), nullable=False)
    host_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    scale = Column(Text, nullable=False)                      # JSON格式的升序打分刻度
    notifications_enabled = Column(Boolean, default=False)    # 全员投票后是否通知
    active_story_id = Column(Integer, nullable=True)          # 当前进行中的故事，仅由状态机维护
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # 关系
    host = relationship("User", back_populates="sessions")
    stories = relationship(
        "Story",
        back_populates="session",
        order_by="Story.order",
        cascade="all, delete-orphan"
    )
    participants = relationship(
        "Participant",
        back_populates="session",
        order_by="Participant.joined_at",
        cascade="all, delete-orphan"
    )

    @property
    def scale_values(self):
        from storypoint.services.scale_service import parse_stored_scale
        return parse_stored_scale(self.scale)

    @scale_values.setter
    def scale_values(self, values):
        self.scale = json.dumps(list(values))

    @property
    def active_story(self):
        """按指针取当前故事，不扫描故事列表"""
        if self.active_story_id is None:
            return None
        from storypoint.models.story import Story
        db = object_session(self)
        if db is None:
            return None
        return db.get(Story, self.active_story_id)
