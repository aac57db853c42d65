from typing import Dict, Any, Optional
import asyncio
import copy
from datetime import datetime

from meeting_agent.domain.collaborators.interfaces import StateStore


class InMemoryStateStore(StateStore):
    """Keeps persisted workflow snapshots per session"""

    def __init__(self):
        self.states: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def save_state(self, session_id: str, payload: Dict[str, Any]) -> None:
        """Store a snapshot, keeping the original creation time"""

        async with self._lock:
            existing = self.states.get(session_id)
            record = copy.deepcopy(payload)
            record["id"] = session_id
            record["created_at"] = (
                existing["created_at"] if existing else record.get("created_at", datetime.utcnow().isoformat())
            )
            record["updated_at"] = datetime.utcnow().isoformat()
            self.states[session_id] = record

    async def load_state(self, session_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            record = self.states.get(session_id)
            return copy.deepcopy(record) if record is not None else None

    async def delete_state(self, session_id: str) -> bool:
        async with self._lock:
            return self.states.pop(session_id, None) is not None

    async def get_all_active_sessions(self) -> Dict[str, Dict[str, Any]]:
        """Get all stored session snapshots"""

        async with self._lock:
            return copy.deepcopy(self.states)
