"""
会话核心的错误类型

所有错误都只影响当前请求：WebSocket端回复给发送者，HTTP端转换为对应状态码。
"""


class SessionError(Exception):
    """会话操作失败的基类"""

    code = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SessionError):
    """引用的会话、故事或参与者不存在"""

    code = "not_found"
    status_code = 404


class ForbiddenError(SessionError):
    """身份或角色不匹配"""

    code = "forbidden"
    status_code = 403


class InvalidStateError(SessionError):
    """故事不处于操作所需的生命周期状态，或持久化失败"""

    code = "invalid_state"
    status_code = 409


class ValidationError(SessionError):
    """输入不合法"""

    code = "validation"
    status_code = 400


class ConflictError(ValidationError):
    """与已有记录冲突"""

    status_code = 409


class AliasInUseError(ConflictError):
    """别名已被在线参与者占用"""
