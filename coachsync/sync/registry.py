"""
Connection Registry

Tracks admitted client connections grouped into per-team rooms.
Owned by a SyncServer instance; there is no process-wide registry.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..common.schemas import utcnow

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass(eq=False)
class Connection:
    """One admitted client connection"""
    user_id: str
    team_id: str
    send: Sender
    role: str = "rep"
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=utcnow)

    def describe(self) -> Dict[str, Any]:
        return {
            "connectionId": self.connection_id,
            "userId": self.user_id,
            "teamId": self.team_id,
            "role": self.role,
            "connectedAt": self.connected_at.isoformat(),
        }


class ConnectionRegistry:
    """
    Team rooms of live connections.

    A user may hold several connections (one per installation); each is
    tracked separately by connection_id.
    """

    def __init__(self):
        self._rooms: Dict[str, Dict[str, Connection]] = {}

    def add(self, connection: Connection) -> None:
        self._rooms.setdefault(connection.team_id, {})[connection.connection_id] = connection

    def remove(self, connection: Connection) -> bool:
        """Remove a connection; returns False if it was not registered"""
        room = self._rooms.get(connection.team_id)
        if not room or connection.connection_id not in room:
            return False
        del room[connection.connection_id]
        if not room:
            del self._rooms[connection.team_id]
        return True

    def get(self, team_id: str, connection_id: str) -> Optional[Connection]:
        return self._rooms.get(team_id, {}).get(connection_id)

    def room(self, team_id: str) -> List[Connection]:
        """Snapshot of a team's connections, oldest first"""
        return sorted(self._rooms.get(team_id, {}).values(), key=lambda c: c.connected_at)

    def teams(self) -> List[str]:
        return sorted(self._rooms)

    def count(self, team_id: Optional[str] = None) -> int:
        if team_id is not None:
            return len(self._rooms.get(team_id, {}))
        return sum(len(room) for room in self._rooms.values())

    def __contains__(self, connection: Connection) -> bool:
        return self.get(connection.team_id, connection.connection_id) is connection
