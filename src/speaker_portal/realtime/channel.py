"""Live channel abstraction and its WebSocket implementation."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from fastapi import WebSocket


class LiveChannel(ABC):
    """One authenticated, bidirectional client connection."""

    def __init__(self, user_id: UUID, user_name: Optional[str] = None) -> None:
        self.id = str(uuid4())
        self.user_id = user_id
        self.user_name = user_name

    @abstractmethod
    async def send(self, event: Dict[str, Any]) -> None:
        """Push one event to the client."""
        pass

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} user={self.user_id}>"


class WebSocketChannel(LiveChannel):
    def __init__(self, websocket: WebSocket, user_id: UUID, user_name: Optional[str] = None) -> None:
        super().__init__(user_id, user_name)
        self.websocket = websocket

    async def send(self, event: Dict[str, Any]) -> None:
        await self.websocket.send_json(event)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        await self.websocket.close(code=code, reason=reason)
