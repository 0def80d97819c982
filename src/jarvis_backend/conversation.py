"""Bounded, session-scoped conversation history."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Dict, List

from jarvis_backend.backends.base import ChatMessage
from jarvis_backend.errors import SessionNotFound


DEFAULT_SESSION_ID = "default"


class ConversationStore:
    """Keep the most recent ``max_messages`` entries per session key.

    Sessions are created lazily on first reference and only removed through
    :meth:`delete`; older entries are evicted first once the cap is reached.
    """

    def __init__(self, max_messages: int = 20) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be at least 1")
        self._max_messages = max_messages
        self._lock = threading.Lock()
        self._sessions: Dict[str, Deque[ChatMessage]] = {}

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def get(self, session_id: str) -> List[ChatMessage]:
        with self._lock:
            return list(self._materialise_locked(session_id))

    def append(self, session_id: str, *entries: ChatMessage) -> List[ChatMessage]:
        with self._lock:
            history = self._materialise_locked(session_id)
            history.extend(entries)
            return list(history)

    def delete(self, session_id: str) -> None:
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFound(session_id)
            del self._sessions[session_id]

    def sessions(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _materialise_locked(self, session_id: str) -> Deque[ChatMessage]:
        history = self._sessions.get(session_id)
        if history is None:
            history = deque(maxlen=self._max_messages)
            self._sessions[session_id] = history
        return history


__all__ = ["ConversationStore", "DEFAULT_SESSION_ID"]
