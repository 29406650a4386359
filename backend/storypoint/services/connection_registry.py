"""
WebSocket连接管理服务

每个连接有自己的发送队列和写协程：广播只是入队，不等待慢连接；
同一连接上的消息按入队顺序发出。
"""

import asyncio
import enum
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionRole(enum.Enum):
    HOST = "host"
    PARTICIPANT = "participant"


@dataclass(frozen=True)
class ConnectionIdentity:
    """连接在某个会话中的身份"""
    session_id: str
    role: ConnectionRole
    participant_id: Optional[str] = None
    host_id: Optional[int] = None

    @property
    def is_host(self) -> bool:
        return self.role is ConnectionRole.HOST


class WebSocketConnection:
    """带发送队列的WebSocket连接"""

    _CLOSE = object()

    def __init__(self, websocket: WebSocket, max_pending: int = 256):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.closed = False
        self._overflowed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)

    def send(self, message: dict) -> bool:
        """入队一条消息，从不阻塞；队列已满时放弃该连接"""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"连接 {self.id} 发送队列已满，视为失效连接")
            self.closed = True
            self._overflowed = True
            return False
        return True

    async def pump(self):
        """写协程：依次把队列中的消息发给客户端"""
        while True:
            message = await self._queue.get()
            if message is self._CLOSE:
                return
            try:
                await self.websocket.send_text(json.dumps(message, ensure_ascii=False))
            except Exception as e:
                logger.warning(f"向连接 {self.id} 发送消息失败: {e}")
                self.closed = True
                return
            if self._overflowed:
                # 慢消费者：主动关闭，由接收循环走正常的断线流程
                try:
                    await self.websocket.close(code=1013)
                except Exception as e:
                    logger.debug(f"关闭连接 {self.id} 失败: {e}")
                return

    def close(self):
        """停止写协程，已入队的消息仍会先发出"""
        if self.closed:
            return
        self.closed = True
        try:
            self._queue.put_nowait(self._CLOSE)
        except asyncio.QueueFull:
            pass


class ConnectionRegistry:
    """
    连接注册表

    以连接ID为键保存连接及其会话身份。所有方法都不含await，
    在事件循环内是原子的，不同会话之间互不影响。
    """

    def __init__(self):
        self._connections: Dict[str, WebSocketConnection] = {}
        self._identities: Dict[str, ConnectionIdentity] = {}

    def add(self, connection: WebSocketConnection) -> None:
        self._connections[connection.id] = connection
        logger.info(f"新连接 {connection.id}，当前连接数: {len(self._connections)}")

    def bind(self, connection: WebSocketConnection, identity: ConnectionIdentity) -> None:
        """把连接登记到某个会话"""
        self._connections[connection.id] = connection
        self._identities[connection.id] = identity

    def remove(self, connection: WebSocketConnection) -> Optional[ConnectionIdentity]:
        """注销连接，返回其身份供调用方更新在线状态"""
        self._connections.pop(connection.id, None)
        identity = self._identities.pop(connection.id, None)
        logger.info(f"连接断开 {connection.id}，当前连接数: {len(self._connections)}")
        return identity

    def get(self, connection_id: str) -> Optional[WebSocketConnection]:
        return self._connections.get(connection_id)

    def identity_of(self, connection: WebSocketConnection) -> Optional[ConnectionIdentity]:
        return self._identities.get(connection.id)

    def connections_for(self, session_id: str) -> List[WebSocketConnection]:
        return [
            self._connections[connection_id]
            for connection_id, identity in list(self._identities.items())
            if identity.session_id == session_id and connection_id in self._connections
        ]

    def participant_connection(self, session_id: str, participant_id: str) -> Optional[WebSocketConnection]:
        for connection_id, identity in list(self._identities.items()):
            if identity.session_id == session_id and identity.participant_id == participant_id:
                return self._connections.get(connection_id)
        return None

    def send(self, connection: WebSocketConnection, message: dict) -> bool:
        """发送个人消息"""
        return connection.send(message)

    def broadcast(self, session_id: str, message: dict, exclude: Iterable[WebSocketConnection] = ()) -> int:
        """向会话中的所有连接广播消息，返回成功入队的连接数"""
        excluded = {connection.id for connection in exclude}
        connections = [c for c in self.connections_for(session_id) if c.id not in excluded]
        if not connections:
            logger.debug(f"会话 {session_id} 没有可广播的连接，跳过 {message.get('type', 'unknown')}")
            return 0

        delivered = 0
        for connection in connections:
            if connection.send(message):
                delivered += 1

        logger.debug(
            f"📡 会话 {session_id} 广播 {message.get('type', 'unknown')}: "
            f"{delivered} 成功, {len(connections) - delivered} 失败"
        )
        return delivered

    def unbind_session(self, session_id: str) -> List[WebSocketConnection]:
        """解除会话中所有连接的登记（会话被删除时）"""
        released = []
        for connection_id, identity in list(self._identities.items()):
            if identity.session_id == session_id:
                del self._identities[connection_id]
                connection = self._connections.get(connection_id)
                if connection is not None:
                    released.append(connection)
        return released

    def __len__(self) -> int:
        return len(self._connections)
