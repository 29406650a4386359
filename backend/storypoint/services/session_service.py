"""
会话管理服务
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from storypoint.core.errors import ForbiddenError, NotFoundError
from storypoint.models.estimation_session import EstimationSession
from storypoint.models.story import Story, StoryStatus
from storypoint.models.user import User
from storypoint.schemas.session_schemas import (
    ParticipantInfo,
    SessionCheck,
    SessionCreate,
    SessionInfo,
    SessionSummary,
    StoryInfo,
)
from storypoint.services import scale_service
from storypoint.services.state_machine import SessionStateMachine

logger = logging.getLogger(__name__)


class SessionService:
    """会话的创建与查询"""

    def __init__(self, db: Session):
        self.db = db

    def create_session(self, host: User, session_data: SessionCreate) -> SessionInfo:
        """创建会话和故事，并激活第一个故事"""
        scale = scale_service.resolve(scale_service.ScaleConfig(
            kind=session_data.scale_type,
            custom_values=session_data.custom_scale
        ))

        session = EstimationSession(
            name=session_data.name,
            host_id=host.id,
            notifications_enabled=session_data.notifications_enabled
        )
        session.scale_values = scale
        self.db.add(session)

        for index, story_data in enumerate(session_data.stories):
            session.stories.append(Story(
                title=story_data.title,
                description=story_data.description or None,
                order=index,
                status=StoryStatus.PENDING.value
            ))
        self.db.flush()

        SessionStateMachine(self.db).activate_first_story(session)
        self.db.commit()
        self.db.refresh(session)

        logger.info(f"主持人 {host.id} 创建会话 {session.id}，共 {len(session_data.stories)} 个故事，刻度 {scale}")
        return SessionInfo.model_validate(session)

    def list_host_sessions(self, host: User) -> List[SessionSummary]:
        """主持人的所有会话，附带故事数量"""
        sessions = self.db.query(EstimationSession).filter(
            EstimationSession.host_id == host.id
        ).order_by(EstimationSession.created_at.desc()).all()

        return [
            SessionSummary(
                **SessionInfo.model_validate(session).model_dump(),
                stories_count=len(session.stories)
            )
            for session in sessions
        ]

    def get_session_detail(self, host: User, session_id: str) -> dict:
        """会话详情，仅限主持人本人"""
        session = self._get_owned(host, session_id)
        return {
            "session": SessionInfo.model_validate(session).dump(),
            "stories": [StoryInfo.model_validate(story).dump() for story in session.stories],
            "participants": [ParticipantInfo.model_validate(p).dump() for p in session.participants],
        }

    def check_session(self, session_id: str) -> SessionCheck:
        """加入页面使用的存在性检查"""
        session = self.db.get(EstimationSession, session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return SessionCheck(exists=True, session_name=session.name)

    def _get_owned(self, host: User, session_id: str) -> EstimationSession:
        session = self.db.get(EstimationSession, session_id)
        if session is None:
            raise NotFoundError("Session not found")
        if session.host_id != host.id:
            raise ForbiddenError("Access denied")
        return session
