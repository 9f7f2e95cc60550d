"""
AI providers for chat_message jobs.
"""

import threading
from typing import Dict, Type

from jobhub.providers.base import BaseProvider
from jobhub.providers.claude import ClaudeProvider


PROVIDERS: Dict[str, Type[BaseProvider]] = {
    ClaudeProvider.name: ClaudeProvider,
}

_instances: Dict[str, BaseProvider] = {}
_instances_lock = threading.Lock()


def get_provider(name: str) -> BaseProvider:
    """
    Get the shared provider instance for a name.

    Raises:
        ValueError: If no provider is registered under that name
    """
    key = (name or '').lower()
    provider_class = PROVIDERS.get(key)
    if provider_class is None:
        raise ValueError(f"Unknown provider: {name}")

    with _instances_lock:
        if key not in _instances:
            _instances[key] = provider_class()
        return _instances[key]


__all__ = ['BaseProvider', 'ClaudeProvider', 'PROVIDERS', 'get_provider']
