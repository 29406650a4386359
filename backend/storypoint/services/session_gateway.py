"""
会话网关

解析客户端命令，按发送者在注册表中的身份做角色校验，调用状态机，
提交事务后向会话广播结果。每个处理器的流程都是：
校验 -> 修改 -> 持久化 -> 广播；校验失败只回复发送者，不广播。

数据库读写在工作线程中执行，事件循环只负责注册表和消息收发，
一个会话的持久化不会拖慢其他会话。
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storypoint.core.errors import (
    AliasInUseError,
    ForbiddenError,
    InvalidStateError,
    SessionError,
    ValidationError,
)
from storypoint.models.estimation_session import EstimationSession
from storypoint.models.story import Story
from storypoint.models.vote import Vote
from storypoint.schemas.message_schemas import (
    DeleteSessionCommand,
    HostJoinSessionCommand,
    JoinSessionCommand,
    NextStoryCommand,
    PingCommand,
    RestartVoteCommand,
    RevealVotesCommand,
    SkipStoryCommand,
    VoteCommand,
    client_command_adapter,
)
from storypoint.schemas.session_schemas import ParticipantInfo, SessionInfo, StoryInfo, VoteInfo
from storypoint.services.auth_service import AuthService
from storypoint.services.connection_registry import (
    ConnectionIdentity,
    ConnectionRegistry,
    ConnectionRole,
    WebSocketConnection,
)
from storypoint.services.state_machine import SessionLocks, SessionStateMachine

logger = logging.getLogger(__name__)


def _story(story: Optional[Story]) -> Optional[dict]:
    if story is None:
        return None
    return StoryInfo.model_validate(story).dump()


def _votes(votes: List[Vote]) -> List[dict]:
    return [VoteInfo.model_validate(vote).dump() for vote in votes]


def _participants(session: EstimationSession) -> List[dict]:
    return [ParticipantInfo.model_validate(p).dump() for p in session.participants]


def describe_parse_error(error: PydanticValidationError) -> str:
    """把命令解析错误转换为给客户端的说明"""
    errors = error.errors()
    if not errors:
        return "Malformed message"
    first = errors[0]
    if first["type"] == "json_invalid":
        return "Invalid JSON message"
    if first["type"] == "union_tag_invalid":
        return "Unknown message type"
    if first["type"] == "union_tag_not_found":
        return "Message type is required"
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    return f"Malformed message: {location} {first.get('msg', '')}".strip()


class SessionGateway:
    """WebSocket协议处理器"""

    def __init__(
        self,
        session_factory: sessionmaker,
        registry: ConnectionRegistry,
        locks: Optional[SessionLocks] = None
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.locks = locks or SessionLocks()

    # ------------------------------------------------------------------ 入口

    async def handle_message(self, connection: WebSocketConnection, raw: str) -> None:
        """处理一条入站消息，所有错误都只回复给发送者"""
        try:
            command = client_command_adapter.validate_json(raw)
        except PydanticValidationError as e:
            self._reply_error(connection, describe_parse_error(e), ValidationError.code)
            return

        try:
            await self.dispatch(connection, command)
        except SessionError as e:
            logger.info(f"连接 {connection.id} 的 {command.type} 被拒绝: {e.message}")
            self._reply_error(connection, e.message, e.code)
        except SQLAlchemyError:
            logger.exception(f"处理 {command.type} 时持久化失败")
            self._reply_error(connection, "Failed to process message", InvalidStateError.code)

    async def dispatch(self, connection: WebSocketConnection, command) -> None:
        if isinstance(command, PingCommand):
            self.registry.send(connection, {"type": "pong", "timestamp": command.timestamp})
        elif isinstance(command, JoinSessionCommand):
            await self._join_session(connection, command)
        elif isinstance(command, HostJoinSessionCommand):
            await self._host_join_session(connection, command)
        elif isinstance(command, VoteCommand):
            await self._vote(connection, command)
        elif isinstance(command, RevealVotesCommand):
            await self._reveal_votes(connection, command)
        elif isinstance(command, RestartVoteCommand):
            await self._restart_vote(connection, command)
        elif isinstance(command, SkipStoryCommand):
            await self._skip_story(connection, command)
        elif isinstance(command, NextStoryCommand):
            await self._next_story(connection, command)
        elif isinstance(command, DeleteSessionCommand):
            identity = self._require_host(connection, command.session_id, "delete the session")
            await self.delete_session(command.session_id, identity.host_id)
        else:
            raise ValidationError("Unknown message type")

    async def handle_disconnect(self, connection: WebSocketConnection) -> None:
        """连接断开：注销连接，参与者标记为离线并通知会话，不删除任何状态"""
        identity = self.registry.remove(connection)
        if identity is None:
            return

        if identity.is_host:
            self.registry.broadcast(identity.session_id, {"type": "host_disconnected"})
            return

        def work(db: Session, machine: SessionStateMachine) -> bool:
            return machine.detach_participant(identity.session_id, identity.participant_id) is not None

        try:
            async with self.locks.hold(identity.session_id):
                if await self._unit_of_work(work):
                    self.registry.broadcast(identity.session_id, {
                        "type": "participant_disconnected",
                        "participantId": identity.participant_id
                    })
        except SQLAlchemyError:
            logger.exception(f"更新参与者 {identity.participant_id} 离线状态失败")

    # ------------------------------------------------------------------ 工作单元

    def _run_unit(self, work: Callable[[Session, SessionStateMachine], Any]) -> Any:
        with self.session_factory() as db:
            result = work(db, SessionStateMachine(db))
            db.commit()
            return result

    async def _unit_of_work(self, work: Callable[[Session, SessionStateMachine], Any]) -> Any:
        """在工作线程中打开数据库会话、执行并提交；调用方须持有会话锁"""
        return await asyncio.to_thread(self._run_unit, work)

    # ------------------------------------------------------------------ 身份校验

    def _require_participant(self, connection: WebSocketConnection, session_id: str) -> ConnectionIdentity:
        identity = self.registry.identity_of(connection)
        if identity is None or identity.is_host or identity.session_id != session_id:
            raise ForbiddenError("Not authorized to vote in this session")
        return identity

    def _require_host(self, connection: WebSocketConnection, session_id: str, action: str) -> ConnectionIdentity:
        identity = self.registry.identity_of(connection)
        if identity is None or not identity.is_host or identity.session_id != session_id:
            raise ForbiddenError(f"Only the host can {action}")
        return identity

    def _require_unbound(self, connection: WebSocketConnection) -> None:
        if self.registry.identity_of(connection) is not None:
            raise ValidationError("Connection has already joined a session")

    def _reply_error(self, connection: WebSocketConnection, message: str, code: str) -> None:
        self.registry.send(connection, {"type": "error", "message": message, "code": code})

    # ------------------------------------------------------------------ 加入

    def _snapshot(self, message_type: str, session: EstimationSession, machine: SessionStateMachine,
                  include_history: bool = False) -> dict:
        active = session.active_story
        votes: List[Vote] = []
        voted: List[str] = []
        if active is not None:
            voted = [vote.participant_id for vote in active.votes]
            # 未公开的投票数值不下发
            if active.is_completed or active.votes_revealed:
                votes = list(active.votes)

        message = {
            "type": message_type,
            "session": SessionInfo.model_validate(session).dump(),
            "stories": [_story(story) for story in session.stories],
            "participants": _participants(session),
            "activeStory": _story(active),
            "votes": _votes(votes),
            "votedParticipantIds": voted,
            "scale": session.scale_values,
            "notificationsEnabled": bool(session.notifications_enabled),
        }
        if include_history:
            message["completedStoryVotes"] = {
                str(story_id): _votes(story_votes)
                for story_id, story_votes in machine.votes_by_story(session).items()
            }
        return message

    async def _join_session(self, connection: WebSocketConnection, command: JoinSessionCommand) -> None:
        self._require_unbound(connection)

        def work(db: Session, machine: SessionStateMachine) -> Tuple[str, dict, dict]:
            session = machine.load_session(command.session_id)
            participant = machine.attach_participant(session, command.participant_id)
            db.flush()
            return (
                participant.id,
                self._snapshot("session_joined", session, machine),
                ParticipantInfo.model_validate(participant).dump()
            )

        async with self.locks.hold(command.session_id):
            live = self.registry.participant_connection(command.session_id, command.participant_id)
            if live is not None and live.id != connection.id:
                raise AliasInUseError("Participant is already connected")

            participant_id, snapshot, participant = await self._unit_of_work(work)

            self.registry.bind(connection, ConnectionIdentity(
                session_id=command.session_id,
                role=ConnectionRole.PARTICIPANT,
                participant_id=participant_id
            ))
            self.registry.send(connection, snapshot)
            self.registry.broadcast(command.session_id, {
                "type": "participant_joined",
                "participant": participant
            }, exclude=[connection])
            logger.info(f"参与者 {participant_id} 加入会话 {command.session_id}")

    async def _host_join_session(self, connection: WebSocketConnection, command: HostJoinSessionCommand) -> None:
        self._require_unbound(connection)

        def work(db: Session, machine: SessionStateMachine) -> Tuple[int, dict]:
            host = AuthService(db).authenticate_host(command.host_id, command.credential)
            session = machine.load_session(command.session_id)
            if session.host_id != host.id:
                raise ForbiddenError("You are not the host of this session")
            return host.id, self._snapshot("host_session_joined", session, machine, include_history=True)

        async with self.locks.hold(command.session_id):
            host_id, snapshot = await self._unit_of_work(work)

            self.registry.bind(connection, ConnectionIdentity(
                session_id=command.session_id,
                role=ConnectionRole.HOST,
                host_id=host_id
            ))
            self.registry.send(connection, snapshot)
            self.registry.broadcast(command.session_id, {"type": "host_connected"}, exclude=[connection])
            logger.info(f"主持人 {host_id} 加入会话 {command.session_id}")

    async def register_participant(self, session_id: str, alias: str) -> Tuple[dict, bool, str]:
        """HTTP加入入口：创建参与者或接管已断线的同名参与者"""

        def work(db: Session, machine: SessionStateMachine) -> Tuple[dict, bool, str]:
            session = machine.load_session(session_id)
            participant, reattached = machine.join_participant(session, alias)
            db.flush()
            return ParticipantInfo.model_validate(participant).dump(), reattached, session.name

        async with self.locks.hold(session_id):
            return await self._unit_of_work(work)

    # ------------------------------------------------------------------ 投票

    async def _vote(self, connection: WebSocketConnection, command: VoteCommand) -> None:
        identity = self._require_participant(connection, command.session_id)

        def work(db: Session, machine: SessionStateMachine) -> Tuple[bool, bool]:
            session = machine.load_session(command.session_id)
            outcome = machine.submit_vote(session, identity.participant_id, command.story_id, command.value)
            return outcome.notify_all_voted, bool(session.notifications_enabled)

        async with self.locks.hold(command.session_id):
            notify_all_voted, notifications_enabled = await self._unit_of_work(work)

            self.registry.send(connection, {
                "type": "vote_recorded",
                "storyId": command.story_id,
                "value": command.value
            })
            # 广播时不包含投票数值
            self.registry.broadcast(command.session_id, {
                "type": "participant_voted",
                "participantId": identity.participant_id,
                "storyId": command.story_id
            })
            if notify_all_voted:
                self.registry.broadcast(command.session_id, {
                    "type": "all_voted",
                    "storyId": command.story_id,
                    "notificationsEnabled": notifications_enabled
                })

    async def _reveal_votes(self, connection: WebSocketConnection, command: RevealVotesCommand) -> None:
        self._require_host(connection, command.session_id, "reveal votes")

        def work(db: Session, machine: SessionStateMachine) -> dict:
            session = machine.load_session(command.session_id)
            outcome = machine.reveal(session, command.story_id)
            return {
                "type": "votes_revealed",
                "storyId": command.story_id,
                "votes": _votes(outcome.votes),
                "participants": _participants(session),
                "finalEstimate": outcome.final_estimate
            }

        async with self.locks.hold(command.session_id):
            message = await self._unit_of_work(work)
            self.registry.broadcast(command.session_id, message)

    async def _restart_vote(self, connection: WebSocketConnection, command: RestartVoteCommand) -> None:
        self._require_host(connection, command.session_id, "restart voting")

        def work(db: Session, machine: SessionStateMachine) -> None:
            machine.restart(machine.load_session(command.session_id), command.story_id)

        async with self.locks.hold(command.session_id):
            await self._unit_of_work(work)
            self.registry.broadcast(command.session_id, {
                "type": "voting_restarted",
                "storyId": command.story_id
            })

    # ------------------------------------------------------------------ 故事切换

    async def _skip_story(self, connection: WebSocketConnection, command: SkipStoryCommand) -> None:
        self._require_host(connection, command.session_id, "skip stories")

        def work(db: Session, machine: SessionStateMachine) -> dict:
            transition = machine.skip(machine.load_session(command.session_id), command.story_id)
            if transition.all_done:
                return {
                    "type": "all_stories_completed",
                    "lastSkippedId": command.story_id
                }
            return {
                "type": "story_skipped",
                "previousStoryId": command.story_id,
                "nextStoryId": transition.next_story.id,
                "nextStory": _story(transition.next_story)
            }

        async with self.locks.hold(command.session_id):
            message = await self._unit_of_work(work)
            self.registry.broadcast(command.session_id, message)

    async def _next_story(self, connection: WebSocketConnection, command: NextStoryCommand) -> None:
        self._require_host(connection, command.session_id, "move to the next story")

        def work(db: Session, machine: SessionStateMachine) -> dict:
            session = machine.load_session(command.session_id)
            transition = machine.advance(session, command.current_story_id, command.final_estimate)
            if transition.all_done:
                return {
                    "type": "all_stories_completed",
                    "lastCompletedId": command.current_story_id,
                    "finalEstimate": transition.final_estimate
                }
            return {
                "type": "next_story_activated",
                "completedStoryId": command.current_story_id,
                "nextStoryId": transition.next_story.id,
                "nextStory": _story(transition.next_story),
                "finalEstimate": transition.final_estimate
            }

        async with self.locks.hold(command.session_id):
            message = await self._unit_of_work(work)
            self.registry.broadcast(command.session_id, message)

    # ------------------------------------------------------------------ 删除

    async def delete_session(self, session_id: str, host_id: int) -> None:
        """删除会话（HTTP与WebSocket共用），通知并解除所有连接"""

        def work(db: Session, machine: SessionStateMachine) -> None:
            machine.delete_session(machine.load_session(session_id), host_id)

        async with self.locks.hold(session_id):
            await self._unit_of_work(work)
            self.registry.broadcast(session_id, {"type": "session_deleted", "sessionId": session_id})
            released = self.registry.unbind_session(session_id)
            logger.info(f"会话 {session_id} 删除后解除 {len(released)} 个连接")

    def connection_counts(self) -> Dict[str, int]:
        return {"connections": len(self.registry)}
