"""
会话状态机

每个会话的权威状态：当前故事指针、参与者在线状态、投票与公开标记。
所有改变故事和投票的操作都经过这里；调用方负责持有会话锁并提交事务。

故事生命周期：pending -> active -> completed | skipped
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from storypoint.core.errors import (
    AliasInUseError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from storypoint.models.estimation_session import EstimationSession
from storypoint.models.participant import Participant
from storypoint.models.story import Story, StoryStatus
from storypoint.models.vote import Vote
from storypoint.services import scale_service

logger = logging.getLogger(__name__)

MAX_ALIAS_LENGTH = 50


class SessionLocks:
    """
    按会话划分的互斥锁，同一会话的读改写操作串行执行

    锁只在有协程持有或等待时存在，释放后即移除，
    因此不存在的会话ID不会在进程中留下记录。
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, session_id: str):
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        self._holders[session_id] = self._holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[session_id] -= 1
            if not self._holders[session_id]:
                del self._holders[session_id]
                del self._locks[session_id]

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._locks

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class VoteOutcome:
    vote: Vote
    story: Story
    all_voted: bool
    notify_all_voted: bool


@dataclass
class RevealOutcome:
    story: Story
    votes: List[Vote]
    final_estimate: int


@dataclass
class StoryTransition:
    """一次完成或跳过之后的故事切换"""
    previous: Story
    next_story: Optional[Story]
    final_estimate: Optional[int] = None

    @property
    def all_done(self) -> bool:
        return self.next_story is None


def verify_invariants(session: EstimationSession) -> None:
    """检查会话不变量，违反时抛出InvalidStateError使事务回滚"""
    active = [story for story in session.stories if story.is_active]
    if len(active) > 1:
        raise InvalidStateError(f"Session {session.id} has {len(active)} active stories")

    pointer = session.active_story_id
    if active and active[0].id != pointer:
        raise InvalidStateError(f"Active story pointer of session {session.id} is out of sync")
    if not active and pointer is not None:
        raise InvalidStateError(f"Session {session.id} points at story {pointer} which is not active")
    if pointer is None and any(story.is_pending for story in session.stories):
        raise InvalidStateError(f"Session {session.id} has pending stories but none is active")

    for story in session.stories:
        if story.is_completed and story.final_estimate is None:
            raise InvalidStateError(f"Completed story {story.id} has no final estimate")


class SessionStateMachine:
    """绑定到一个数据库会话（工作单元）的状态机"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------ 查询

    def load_session(self, session_id: str) -> EstimationSession:
        session = self.db.get(EstimationSession, session_id) if session_id else None
        if session is None:
            raise NotFoundError("Session not found")
        return session

    def votes_by_story(self, session: EstimationSession) -> Dict[int, List[Vote]]:
        """已完成故事的历史投票"""
        return {
            story.id: list(story.votes)
            for story in session.stories
            if story.is_completed
        }

    def _require_story(self, session: EstimationSession, story_id: Optional[int]) -> Story:
        story = self.db.get(Story, story_id) if story_id is not None else None
        if story is None or story.session_id != session.id:
            raise NotFoundError("Story not found")
        return story

    def _require_active(self, session: EstimationSession, story_id: Optional[int], action: str) -> Story:
        story = self._require_story(session, story_id)
        if session.active_story_id != story.id:
            raise InvalidStateError(f"Cannot {action}: story is {story.status}")
        return story

    def _next_pending(self, session: EstimationSession, after: Story) -> Optional[Story]:
        candidates = [
            story for story in session.stories
            if story.is_pending and story.order > after.order
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda story: story.order)

    # ------------------------------------------------------------------ 故事流转

    def _activate(self, session: EstimationSession, story: Story) -> None:
        if story.id is None:
            self.db.flush()
        story.status = StoryStatus.ACTIVE.value
        story.votes_revealed = False
        story.votes.clear()
        session.active_story_id = story.id

    def activate_first_story(self, session: EstimationSession) -> Optional[Story]:
        """激活顺序最靠前的待处理故事"""
        if session.active_story_id is not None:
            raise InvalidStateError("Session already has an active story")

        pending = [story for story in session.stories if story.is_pending]
        if not pending:
            return None

        story = min(pending, key=lambda item: item.order)
        self._activate(session, story)
        self.db.flush()
        verify_invariants(session)
        logger.info(f"会话 {session.id} 激活首个故事 {story.id}")
        return story

    def _move_past(self, session: EstimationSession, story: Story) -> Optional[Story]:
        session.active_story_id = None
        next_story = self._next_pending(session, story)
        if next_story is not None:
            self._activate(session, next_story)
        self.db.flush()
        verify_invariants(session)
        return next_story

    def submit_vote(self, session: EstimationSession, participant_id: str, story_id: int, value: int) -> VoteOutcome:
        """记录或覆盖参与者对当前故事的投票"""
        participant = self.db.get(Participant, participant_id) if participant_id else None
        if participant is None or participant.session_id != session.id:
            raise ForbiddenError("Not authorized to vote in this session")

        story = self._require_story(session, story_id)
        if session.active_story_id != story.id:
            raise InvalidStateError(f"Cannot vote on this story: story is {story.status}")
        if story.votes_revealed:
            raise InvalidStateError("Votes for this story have already been revealed")
        if value not in session.scale_values:
            raise ValidationError(f"Vote value {value} is not on this session's scale")

        vote = next((item for item in story.votes if item.participant_id == participant.id), None)
        if vote is None:
            vote = Vote(participant_id=participant.id, story_id=story.id, value=value)
            story.votes.append(vote)
        else:
            vote.value = value
        self.db.flush()
        verify_invariants(session)

        all_voted = self._everyone_voted(session, story)
        return VoteOutcome(
            vote=vote,
            story=story,
            all_voted=all_voted,
            notify_all_voted=all_voted and bool(session.notifications_enabled)
        )

    def _everyone_voted(self, session: EstimationSession, story: Story) -> bool:
        connected = [participant for participant in session.participants if participant.is_connected]
        if not connected:
            return False
        voted = {vote.participant_id for vote in story.votes}
        return all(participant.id in voted for participant in connected)

    def reveal(self, session: EstimationSession, story_id: int) -> RevealOutcome:
        """公开投票并计算估算；估算在主持人确认前不写入故事"""
        story = self._require_active(session, story_id, "reveal votes")
        votes = list(story.votes)
        final_estimate = scale_service.estimate(
            [vote.value for vote in votes], session.scale_values
        )
        story.votes_revealed = True
        self.db.flush()
        verify_invariants(session)
        return RevealOutcome(story=story, votes=votes, final_estimate=final_estimate)

    def restart(self, session: EstimationSession, story_id: int) -> Story:
        """清空当前故事的投票，故事保持进行中"""
        story = self._require_active(session, story_id, "restart voting")
        story.votes.clear()
        story.votes_revealed = False
        self.db.flush()
        verify_invariants(session)
        return story

    def skip(self, session: EstimationSession, story_id: int) -> StoryTransition:
        """跳过当前故事（不产生估算）并激活下一个"""
        story = self._require_active(session, story_id, "skip story")
        story.status = StoryStatus.SKIPPED.value
        story.votes_revealed = False
        next_story = self._move_past(session, story)
        logger.info(f"会话 {session.id} 跳过故事 {story.id}，下一个: {next_story.id if next_story else '无'}")
        return StoryTransition(previous=story, next_story=next_story)

    def advance(self, session: EstimationSession, story_id: int, final_estimate: Optional[int]) -> StoryTransition:
        """以确认的估算完成当前故事并激活下一个"""
        story = self._require_active(session, story_id, "move to the next story")
        if not story.votes_revealed:
            raise InvalidStateError("Votes must be revealed before moving to the next story")

        scale = session.scale_values
        if final_estimate is None:
            final_estimate = scale_service.estimate([vote.value for vote in story.votes], scale)
        elif final_estimate != 0 and final_estimate not in scale:
            raise ValidationError(f"Final estimate {final_estimate} is not on this session's scale")

        story.status = StoryStatus.COMPLETED.value
        story.final_estimate = final_estimate
        next_story = self._move_past(session, story)
        logger.info(f"会话 {session.id} 完成故事 {story.id}，估算 {final_estimate}")
        return StoryTransition(previous=story, next_story=next_story, final_estimate=final_estimate)

    # ------------------------------------------------------------------ 参与者

    def join_participant(self, session: EstimationSession, alias: str) -> Tuple[Participant, bool]:
        """
        以别名加入会话

        别名不区分大小写。已断线的同名参与者会被重新接管（返回True），
        在线的同名参与者会导致AliasInUseError。
        """
        alias = (alias or "").strip()
        if not alias:
            raise ValidationError("Alias is required")
        if len(alias) > MAX_ALIAS_LENGTH:
            raise ValidationError(f"Alias must be at most {MAX_ALIAS_LENGTH} characters")

        key = alias.casefold()
        existing = next(
            (participant for participant in session.participants if participant.alias.casefold() == key),
            None
        )
        if existing is not None:
            if existing.is_connected:
                raise AliasInUseError("Alias already in use")
            existing.is_connected = True
            self.db.flush()
            return existing, True

        participant = Participant(session_id=session.id, alias=alias, is_connected=True)
        session.participants.append(participant)
        self.db.flush()
        return participant, False

    def attach_participant(self, session: EstimationSession, participant_id: str) -> Participant:
        participant = self.db.get(Participant, participant_id) if participant_id else None
        if participant is None or participant.session_id != session.id:
            raise NotFoundError("Participant not found")
        participant.is_connected = True
        self.db.flush()
        return participant

    def detach_participant(self, session_id: str, participant_id: str) -> Optional[Participant]:
        """标记参与者断线，保留记录和投票"""
        participant = self.db.get(Participant, participant_id)
        if participant is None or participant.session_id != session_id:
            return None
        participant.is_connected = False
        self.db.flush()
        return participant

    def reset_presence(self) -> int:
        """进程启动时所有参与者都视为离线，返回被重置的数量"""
        count = self.db.query(Participant).filter(
            Participant.is_connected.is_(True)
        ).update({Participant.is_connected: False}, synchronize_session=False)
        self.db.flush()
        return count

    # ------------------------------------------------------------------ 会话

    def delete_session(self, session: EstimationSession, host_id: int) -> None:
        if session.host_id != host_id:
            raise ForbiddenError("You are not the host of this session")
        self.db.delete(session)
        self.db.flush()
        logger.info(f"会话 {session.id} 已删除")
