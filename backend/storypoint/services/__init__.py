# 业务逻辑服务包
from .scale_service import ScaleConfig, resolve, estimate
from .state_machine import SessionLocks, SessionStateMachine
from .connection_registry import ConnectionRegistry, WebSocketConnection
from .session_gateway import SessionGateway
from .session_service import SessionService
from .auth_service import AuthService

__all__ = [
    "ScaleConfig",
    "resolve",
    "estimate",
    "SessionLocks",
    "SessionStateMachine",
    "ConnectionRegistry",
    "WebSocketConnection",
    "SessionGateway",
    "SessionService",
    "AuthService",
]
