import threading
from typing import Any

from keyplane.errors import NotFoundError


class SessionRegistry:
    """
    In-memory map from session identifiers to the device they operate on.

    Several sessions may resolve to the same device. The lock only covers
    the map itself and is never held while a caller performs I/O.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, str] = {}

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("SessionRegistry(...)")
        else:
            with self._lock:
                sessions = dict(self._sessions)
            with p.group(4, "SessionRegistry(", ")"):
                p.breakable()
                p.text("sessions=")
                p.pretty(sessions)
                p.breakable()

    def register(self, session_id: str, device_id: str) -> None:
        with self._lock:
            self._sessions[session_id] = device_id

    def resolve(self, session_id: str) -> str:
        with self._lock:
            device_id = self._sessions.get(session_id)
        if device_id is None:
            raise NotFoundError(f"Unknown session {session_id}")
        return device_id

    def unregister(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def sessions_for(self, device_id: str) -> list[str]:
        with self._lock:
            return [s for s, d in self._sessions.items() if d == device_id]

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
