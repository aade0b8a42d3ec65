# copytrader/sockets.py: live notification push per follower wallet
import logging
from typing import Dict, List

from fastapi import WebSocket, WebSocketDisconnect

from copytrader.schemas import Notification

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, wallet: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.setdefault(wallet, []).append(websocket)

    def disconnect(self, wallet: str, websocket: WebSocket):
        connections = self.active_connections.get(wallet, [])
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            self.active_connections.pop(wallet, None)

    async def push(self, wallet: str, notification: Notification):
        """NotificationEmitter listener: forward a new notice to the wallet's sockets."""
        message = notification.model_dump(mode="json")
        for connection in self.active_connections.get(wallet, [])[:]:
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.info(f"Dropping notification socket for {wallet}: {e}")
                self.disconnect(wallet, connection)


# Registered with add_api_websocket_route, not a decorator
async def notifications_socket(websocket: WebSocket, wallet: str):
    manager: ConnectionManager = websocket.app.state.connections
    await manager.connect(wallet, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(wallet, websocket)
