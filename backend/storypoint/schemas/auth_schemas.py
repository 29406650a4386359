"""
主持人账号相关的数据模式
"""

import re

from pydantic import Field, field_validator

from storypoint.schemas.session_schemas import PayloadModel, RequestModel

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


class HostCreate(RequestModel):
    """注册主持人的请求"""
    email: str = Field(..., max_length=255, description="主持人邮箱")

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email format")
        return value


class HostInfo(PayloadModel):
    """主持人信息"""
    id: int
    email: str
