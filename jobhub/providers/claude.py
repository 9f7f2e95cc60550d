"""
Claude provider backed by the Anthropic Messages API.

Conversation history is kept per chat in memory so scheduled prompts that
share a chatId continue the same conversation.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

import anthropic

from jobhub import config
from jobhub.providers.base import BaseProvider


logger = logging.getLogger("jobhub.providers.claude")

MAX_TOKENS = 4096


class ClaudeProvider(BaseProvider):
    """Streams responses from Claude."""

    name = "claude"

    def __init__(self, config_override: Dict[str, Any] = None, client: anthropic.Anthropic = None):
        super().__init__(config_override)
        self._client = client

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            api_key = self.config.get('api_key') or config.get_anthropic_api_key()
            if not api_key:
                raise RuntimeError("ANTHROPIC_API_KEY not set in environment")
            self._client = anthropic.Anthropic(api_key=api_key)
        return self._client

    def query(
        self,
        prompt: str,
        user_id: str,
        chat_id: str,
        model: Optional[str] = None,
        max_turns: int = 10
    ) -> Iterator[Dict[str, Any]]:
        history: List[Dict[str, str]] = list(self.get_session(chat_id, user_id) or [])
        # One turn is a user message plus the assistant reply
        history = history[-2 * max(max_turns - 1, 0):] if max_turns > 1 else []
        messages = history + [{'role': 'user', 'content': prompt}]

        parts = []
        try:
            with self.client.messages.stream(
                model=model or config.DEFAULT_CHAT_MODEL,
                max_tokens=MAX_TOKENS,
                messages=messages,
            ) as stream:
                for text in stream.text_stream:
                    parts.append(text)
                    yield {'type': 'text', 'content': text}
        except anthropic.APIError as e:
            logger.error(f"Claude request failed for chat {chat_id}: {e}")
            yield {'type': 'error', 'message': str(e)}
            return
        except RuntimeError as e:
            yield {'type': 'error', 'message': str(e)}
            return

        messages.append({'role': 'assistant', 'content': ''.join(parts)})
        self.set_session(chat_id, messages, user_id)
