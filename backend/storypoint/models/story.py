"""
用户故事数据模型
"""

import enum

from sqlalchemy import Column, Integer, String, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from storypoint.core.database import Base

class StoryStatus(enum.Enum):
    """故事生命周期"""
    PENDING = "pending"        # 尚未开始
    ACTIVE = "active"          # 正在投票
    COMPLETED = "completed"    # 已确认最终估算
    SKIPPED = "skipped"        # 跳过，无估算

class Story(Base):
    """用户故事表"""
    __tablename__ = "stories"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    final_estimate = Column(Integer, nullable=True)            # 完成前为空
    order = Column(Integer, nullable=False)                    # 遍历顺序
    status = Column(String(20), nullable=False, default=StoryStatus.PENDING.value)
    votes_revealed = Column(Boolean, nullable=False, default=False)  # 本轮投票是否已公开

    # 关系
    session = relationship("EstimationSession", back_populates="stories")
    votes = relationship("Vote", back_populates="story", cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == StoryStatus.ACTIVE.value

    @property
    def is_completed(self) -> bool:
        return self.status == StoryStatus.COMPLETED.value

    @property
    def is_pending(self) -> bool:
        return self.status == StoryStatus.PENDING.value
