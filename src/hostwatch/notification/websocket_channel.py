import asyncio
import json
import logging
from datetime import datetime
from typing import Dict, Any

import websockets
from websockets.exceptions import ConnectionClosed

from hostwatch.models import SendResult
from hostwatch.notification.channels import NotificationChannel


class WebSocketChannel(NotificationChannel):
    """Broadcast alerts to connected dashboard clients"""

    name = "websocket"
    default_max_length = 1000000

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.host = self.config.get('host', '0.0.0.0')
        self.port = int(self.config.get('port', 8765))
        self.clients = set()
        self.server = None
        self.logger = self._setup_logger()

    def _setup_logger(self):
        return logging.getLogger('NotificationRouter')

    async def handler(self, websocket):
        self.clients.add(websocket)
        try:
            async for _ in websocket:
                pass  # clients don't send data
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)

    async def start(self):
        """Start the WebSocket server on the running event loop"""
        if self.server is not None:
            return
        self.server = await websockets.serve(self.handler, self.host, self.port)
        self.logger.info(f"WebSocket running on ws://{self.host}:{self.port}")

    async def close(self):
        if self.server is None:
            return
        self.server.close()
        await self.server.wait_closed()
        self.server = None
        self.clients.clear()

    async def send_chunk(self, text: str) -> SendResult:
        if self.server is None:
            return SendResult(False, transient=False, error="server not started")
        if not self.clients:
            return SendResult(True)

        message = json.dumps({'text': text, 'sent_at': datetime.now().isoformat()})
        clients = list(self.clients)
        outcomes = await asyncio.gather(
            *[client.send(message) for client in clients],
            return_exceptions=True
        )
        delivered = 0
        errors = []
        for client, outcome in zip(clients, outcomes):
            if isinstance(outcome, ConnectionClosed):
                self.clients.discard(client)
            elif isinstance(outcome, Exception):
                self.logger.error(f"WebSocket send failed: {outcome}")
                errors.append(str(outcome))
            else:
                delivered += 1

        if delivered == 0 and errors:
            return SendResult(False, transient=True, error=f"no client received the message: {errors[0]}")
        return SendResult(True)
