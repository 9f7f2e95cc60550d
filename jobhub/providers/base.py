"""
Base interface for AI providers.

A provider turns a prompt into a stream of chunks:
    {'type': 'text', 'content': '...'}
    {'type': 'error', 'message': '...'}
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional


class BaseProvider(ABC):
    """
    Abstract base class for AI providers.

    Subclasses must implement:
        - name (class attribute)
        - query(self, prompt, user_id, chat_id, model=None, max_turns=10)
    """

    name: str = "base"

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.sessions: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @abstractmethod
    def query(
        self,
        prompt: str,
        user_id: str,
        chat_id: str,
        model: Optional[str] = None,
        max_turns: int = 10
    ) -> Iterator[Dict[str, Any]]:
        """
        Send a prompt and yield streaming response chunks.

        Args:
            prompt: The user message
            user_id: User identifier
            chat_id: Chat session identifier
            model: Model override
            max_turns: Maximum conversation turns kept for the session

        Yields:
            Text and error chunks
        """

    @staticmethod
    def _session_key(chat_id: str, user_id: str = None) -> str:
        if user_id is None:
            return chat_id
        return f"{user_id}:{chat_id}"

    def get_session(self, chat_id: str, user_id: str = None) -> Optional[Any]:
        """Get the stored session state for a chat, if any."""
        if not chat_id:
            return None
        with self._lock:
            return self.sessions.get(self._session_key(chat_id, user_id))

    def set_session(self, chat_id: str, session: Any, user_id: str = None) -> None:
        """Store session state for a chat."""
        with self._lock:
            self.sessions[self._session_key(chat_id, user_id)] = session

    def cleanup(self) -> None:
        """Drop all sessions."""
        with self._lock:
            self.sessions.clear()
