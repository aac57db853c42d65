from typing import Dict, Optional
from fastapi import WebSocket
import asyncio
from datetime import datetime
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and message routing"""

    def __init__(self, stale_after_seconds: int = 300):
        self.active_connections: Dict[str, WebSocket] = {}
        self.session_metadata: Dict[str, Dict] = {}
        self.stale_after_seconds = stale_after_seconds
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str, user_id: Optional[str] = None):
        """Accept a new WebSocket connection"""
        await websocket.accept()

        async with self._lock:
            self.active_connections[session_id] = websocket
            self.session_metadata[session_id] = {
                "user_id": user_id,
                "connected_at": datetime.utcnow(),
                "last_activity": datetime.utcnow()
            }

        # Send connection confirmation
        await self.send_event(
            session_id,
            ConnectionEvent(
                status="connected",
                session_id=session_id
            )
        )

        logger.info("WebSocket connected", session_id=session_id, user_id=user_id)

    async def disconnect(self, session_id: str):
        """Disconnect a WebSocket connection"""
        async with self._lock:
            if session_id in self.active_connections:
                ws = self.active_connections.pop(session_id)
                self.session_metadata.pop(session_id, None)

                try:
                    await ws.close()
                except Exception as e:
                    logger.debug("WebSocket already closed", session_id=session_id, error=str(e))

        logger.info("WebSocket disconnected", session_id=session_id)

    async def send_event(self, session_id: str, event: BaseEvent) -> bool:
        """Send an event to a specific session"""
        if session_id not in self.active_connections:
            logger.warning("Attempted to send to disconnected session", session_id=session_id)
            return False

        websocket = self.active_connections[session_id]
        if event.session_id is None:
            event.session_id = session_id

        try:
            await websocket.send_json(event.model_dump(mode="json"))

            # Update last activity
            if session_id in self.session_metadata:
                self.session_metadata[session_id]["last_activity"] = datetime.utcnow()

            return True

        except Exception as e:
            logger.error("Failed to send event", session_id=session_id, error=str(e))
            await self.disconnect(session_id)
            return False

    async def send_error(self, session_id: str, error_message: str, error_code: Optional[str] = None,
                         details: Optional[Dict] = None):
        """Send an error event to a session"""
        error_event = ErrorEvent(
            payload={"message": error_message, **(details or {})},
            error_code=error_code,
            session_id=session_id
        )
        await self.send_event(session_id, error_event)

    async def disconnect_stale(self) -> int:
        """Disconnect sessions idle for longer than stale_after_seconds"""
        current_time = datetime.utcnow()
        stale_sessions = [
            session_id
            for session_id, metadata in list(self.session_metadata.items())
            if metadata.get("last_activity")
            and (current_time - metadata["last_activity"]).total_seconds() > self.stale_after_seconds
        ]

        for session_id in stale_sessions:
            logger.warning("Disconnecting stale session", session_id=session_id)
            await self.disconnect(session_id)
        return len(stale_sessions)

    async def health_check(self, interval_seconds: int = 60):
        """Periodic health check to clean up stale connections"""
        while True:
            try:
                await self.disconnect_stale()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Health check error", error=str(e))

            await asyncio.sleep(interval_seconds)
