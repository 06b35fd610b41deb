"""Conversation domain model - per-channel session state and bounded history."""

import asyncio
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

DEFAULT_HISTORY_LIMIT = 50


class HistoryRole(str, Enum):
    """Roles recorded in channel history."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class TurnState(str, Enum):
    """Controller state machine for one user turn.

    IDLE -> THINKING -> (TOOLING -> SYNTHESIZING)? -> REPLYING -> IDLE
    """

    IDLE = "idle"
    THINKING = "thinking"
    TOOLING = "tooling"
    SYNTHESIZING = "synthesizing"
    REPLYING = "replying"


@dataclass(frozen=True)
class HistoryEntry:
    """One recorded message in a channel's history."""

    role: HistoryRole
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class ChannelSession:
    """
    Conversational state for one chat channel.

    History is a ring buffer capped at ``limit`` entries. Mutations happen
    while holding ``lock``; the controller holds it for the whole turn.
    """

    def __init__(
        self,
        channel_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        provider_name: str | None = None,
    ) -> None:
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.channel_id = channel_id
        self.limit = limit
        self.provider_name = provider_name
        self.state = TurnState.IDLE
        self.lock = asyncio.Lock()
        self._history: deque[HistoryEntry] = deque(maxlen=limit)
        self._appended = 0

    def __len__(self) -> int:
        return len(self._history)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(list(self._history))

    @property
    def history(self) -> list[HistoryEntry]:
        return list(self._history)

    def append(self, role: HistoryRole, content: str) -> HistoryEntry:
        """Append an entry, evicting the oldest when the limit is reached."""
        entry = HistoryEntry(role=role, content=content)
        self._history.append(entry)
        self._appended += 1
        return entry

    def checkpoint(self) -> int:
        """Return a marker that ``rollback`` can restore to."""
        return self._appended

    def rollback(self, marker: int) -> int:
        """Drop entries appended after ``marker``. Returns how many were removed.

        Entries evicted by the ring buffer in the meantime are not restored.
        """
        to_remove = min(self._appended - marker, len(self._history))
        for _ in range(max(0, to_remove)):
            self._history.pop()
        self._appended = marker
        return max(0, to_remove)

    def resize(self, limit: int) -> None:
        """Apply a new history limit, keeping the newest entries."""
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        if limit != self.limit:
            self._history = deque(self._history, maxlen=limit)
            self.limit = limit


class SessionStore:
    """Lazily creates one ChannelSession per channel for the process lifetime."""

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT, provider_name: str | None = None) -> None:
        self._limit = limit
        self._provider_name = provider_name
        self._sessions: dict[str, ChannelSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._sessions

    def get(self, channel_id: str) -> ChannelSession:
        """Return the session for a channel, creating it on first use."""
        session = self._sessions.get(channel_id)
        if session is None:
            session = ChannelSession(channel_id, self._limit, self._provider_name)
            self._sessions[channel_id] = session
        return session

    def configure(self, limit: int, provider_name: str | None = None) -> None:
        """Apply new defaults to existing and future sessions (used on reload)."""
        self._limit = limit
        self._provider_name = provider_name
        for session in self._sessions.values():
            session.resize(limit)
            session.provider_name = provider_name
