"""Session registry - who is connected to a room and what they call themselves."""

import re
from typing import Any, Optional

MAX_PLAYERS = 2
MAX_NAME_LENGTH = 12
DEFAULT_COLORS = {1: "#FFD700", 2: "#1ABC9C"}
COLOR_PATTERN = re.compile(r"^#[0-9a-fA-F]{6}$")


class CapacityError(Exception):
    """Raised when a third connection tries to join a full room."""


class Session:
    """One connected player."""
    def __init__(self, conn: Any, slot: int):
        self.conn = conn
        self.slot = slot
        self.ready = False
        self.name = ""
        self.color = DEFAULT_COLORS[slot]

    @property
    def display_name(self) -> str:
        return self.name or f"Player {self.slot}"

    def to_dict(self) -> dict:
        return {"player_id": self.slot, "name": self.display_name, "color": self.color, "ready": self.ready}


class SessionRegistry:
    """Tracks up to two sessions, keyed by their connection object."""

    def __init__(self):
        self.sessions: list[Session] = []

    def __len__(self) -> int:
        return len(self.sessions)

    def __iter__(self):
        return iter(list(self.sessions))

    def is_full(self) -> bool:
        return len(self.sessions) >= MAX_PLAYERS

    def get(self, conn: Any) -> Optional[Session]:
        for session in self.sessions:
            if session.conn is conn:
                return session
        return None

    def get_slot(self, slot: int) -> Optional[Session]:
        for session in self.sessions:
            if session.slot == slot:
                return session
        return None

    def next_free_slot(self) -> Optional[int]:
        taken = {s.slot for s in self.sessions}
        for slot in range(1, MAX_PLAYERS + 1):
            if slot not in taken:
                return slot
        return None

    def add_session(self, conn: Any) -> Session:
        """Register a connection. Raises CapacityError (without mutating anything) if full."""
        if self.is_full():
            raise CapacityError(f"room already has {MAX_PLAYERS} players")
        session = Session(conn, self.next_free_slot())
        self.sessions.append(session)
        return session

    def remove_session(self, conn: Any) -> Optional[Session]:
        session = self.get(conn)
        if session:
            self.sessions.remove(session)
        return session

    def set_ready(self, conn: Any) -> Optional[Session]:
        """Mark the sender ready. Returns the session only if its readiness changed."""
        session = self.get(conn)
        if session is None or session.ready:
            return None
        session.ready = True
        return session

    def all_ready(self) -> bool:
        return self.is_full() and all(s.ready for s in self.sessions)

    def clear_ready(self):
        for session in self.sessions:
            session.ready = False

    def set_name(self, conn: Any, text: Any) -> Optional[Session]:
        """Apply a display name. Empty names (after trimming) are ignored."""
        session = self.get(conn)
        if session is None or not isinstance(text, str):
            return None
        name = text.strip()[:MAX_NAME_LENGTH]
        if not name:
            return None
        session.name = name
        return session

    def set_color(self, conn: Any, text: Any) -> Optional[Session]:
        """Apply a ``#RRGGBB`` color. Anything else is silently ignored."""
        session = self.get(conn)
        if session is None or not isinstance(text, str):
            return None
        color = text.strip()
        if not COLOR_PATTERN.match(color):
            return None
        session.color = color
        return session

    def names(self) -> list[str]:
        """Display names indexed by slot - 1."""
        return [self._slot_attr(slot, "display_name", f"Player {slot}") for slot in (1, 2)]

    def colors(self) -> list[str]:
        return [self._slot_attr(slot, "color", DEFAULT_COLORS[slot]) for slot in (1, 2)]

    def _slot_attr(self, slot: int, attr: str, default: str) -> str:
        session = self.get_slot(slot)
        return getattr(session, attr) if session else default
