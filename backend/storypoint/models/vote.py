"""
投票数据模型
"""

from sqlalchemy import Column, Integer, String, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from storypoint.core.database import Base

class Vote(Base):
    """投票表"""
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("participant_id", "story_id", name="uq_vote_participant_story"),
    )

    id = Column(Integer, primary_key=True, index=True)
    participant_id = Column(String(36), ForeignKey("participants.id"), nullable=False)  # 投票者
    story_id = Column(Integer, ForeignKey("stories.id"), nullable=False, index=True)    # 被估算的故事
    value = Column(Integer, nullable=False)                                             # 刻度上的取值

    # 关系
    participant = relationship("Participant", back_populates="votes")
    story = relationship("Story", back_populates="votes")
