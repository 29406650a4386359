"""
WebSocket客户端命令

客户端消息是带 `type` 标签的JSON记录，这里把它们定义为封闭的联合类型。
"""

from typing import Annotated, Any, Optional, Union, Literal

from pydantic import Field, TypeAdapter

from storypoint.schemas.session_schemas import RequestModel


class JoinSessionCommand(RequestModel):
    type: Literal["join_session"]
    session_id: str
    participant_id: str


class HostJoinSessionCommand(RequestModel):
    type: Literal["host_join_session"]
    session_id: str
    host_id: int
    credential: str


class VoteCommand(RequestModel):
    type: Literal["vote"]
    session_id: str
    story_id: int
    value: int


class RevealVotesCommand(RequestModel):
    type: Literal["reveal_votes"]
    session_id: str
    story_id: int


class RestartVoteCommand(RequestModel):
    type: Literal["restart_vote"]
    session_id: str
    story_id: int


class SkipStoryCommand(RequestModel):
    type: Literal["skip_story"]
    session_id: str
    story_id: int


class NextStoryCommand(RequestModel):
    type: Literal["next_story"]
    session_id: str
    current_story_id: int
    final_estimate: Optional[int] = None  # 为空时使用公开时计算的估算


class DeleteSessionCommand(RequestModel):
    type: Literal["delete_session"]
    session_id: str


class PingCommand(RequestModel):
    type: Literal["ping"]
    timestamp: Optional[Any] = None


ClientCommand = Annotated[
    Union[
        JoinSessionCommand,
        HostJoinSessionCommand,
        VoteCommand,
        RevealVotesCommand,
        RestartVoteCommand,
        SkipStoryCommand,
        NextStoryCommand,
        DeleteSessionCommand,
        PingCommand,
    ],
    Field(discriminator="type"),
]

client_command_adapter = TypeAdapter(ClientCommand)
