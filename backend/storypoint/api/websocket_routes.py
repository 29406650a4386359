"""
WebSocket API路由
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from storypoint.services.connection_registry import WebSocketConnection
from storypoint.services.session_gateway import SessionGateway

logger = logging.getLogger(__name__)

router = APIRouter()

@router.websocket("/sessions")
async def websocket_session_endpoint(websocket: WebSocket):
    """会话WebSocket连接端点"""
    gateway: SessionGateway = websocket.app.state.gateway
    settings = websocket.app.state.settings

    await websocket.accept()
    connection = WebSocketConnection(websocket, max_pending=settings.WS_SEND_QUEUE_SIZE)
    gateway.registry.add(connection)
    writer = asyncio.create_task(connection.pump())

    try:
        # 监听消息，同一连接上的命令按到达顺序处理
        while True:
            data = await websocket.receive_text()
            await gateway.handle_message(connection, data)
    except WebSocketDisconnect:
        logger.info(f"连接 {connection.id} 已断开")
    except Exception as e:
        logger.warning(f"WebSocket错误: {e}")
    finally:
        await gateway.handle_disconnect(connection)
        connection.close()
        writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            pass
