"""
会话相关的数据模式

请求体按camelCase接收，响应与推送消息按camelCase输出。
"""

from pydantic import AliasGenerator, BaseModel, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Union, Literal
from datetime import datetime

from storypoint.core.utils import format_timestamp_with_timezone


class RequestModel(BaseModel):
    """接收camelCase字段的请求基类"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class PayloadModel(BaseModel):
    """从ORM对象读取、以camelCase输出的基类"""

    class Config:
        from_attributes = True
        alias_generator = AliasGenerator(serialization_alias=to_camel)

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)


class StoryCreate(RequestModel):
    """创建会话时提交的故事"""
    title: str = Field(..., min_length=1, max_length=500, description="故事标题")
    description: Optional[str] = Field(default=None, description="故事描述")

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Story title is required")
        return value


class SessionCreate(RequestModel):
    """创建会话的请求模式"""
    name: str = Field(..., min_length=1, max_length=200, description="会话名称")
    scale_type: Literal["fibonacci", "custom"] = Field(default="fibonacci", description="刻度类型")
    custom_scale: Optional[Union[str, List[Union[int, str]]]] = Field(default=None, description="自定义刻度，逗号分隔或列表")
    notifications_enabled: bool = Field(default=False, description="全员投票后是否通知主持人")
    stories: List[StoryCreate] = Field(default_factory=list, description="按顺序排列的故事")

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Session name is required")
        return value


class JoinRequest(RequestModel):
    """以别名加入会话"""
    alias: str = Field(..., min_length=1, max_length=50, description="参与者别名")


class StoryInfo(PayloadModel):
    """故事信息"""
    id: int
    session_id: str
    title: str
    description: Optional[str] = None
    final_estimate: Optional[int] = None
    order: int
    status: str
    is_active: bool
    is_completed: bool
    votes_revealed: bool = False


class ParticipantInfo(PayloadModel):
    """参与者信息"""
    id: str
    session_id: str
    alias: str
    is_connected: bool
    joined_at: Optional[datetime] = None

    @field_serializer('joined_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)


class VoteInfo(PayloadModel):
    """投票信息（仅在公开后发送数值）"""
    id: int
    participant_id: str
    story_id: int
    value: int


class SessionInfo(PayloadModel):
    """会话信息"""
    id: str
    name: str
    host_id: int
    scale_values: List[int] = Field(serialization_alias="scale")
    notifications_enabled: bool = False
    active_story_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @field_serializer('created_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)


class SessionSummary(SessionInfo):
    """主持人会话列表项"""
    stories_count: int = 0


class SessionCheck(PayloadModel):
    """加入前的会话检查结果"""
    exists: bool
    session_name: str
