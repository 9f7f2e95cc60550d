"""Unit Tests for AI Providers"""
import pytest
import sys
import os
from unittest.mock import MagicMock

# Add project root to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from jobhub.providers import ClaudeProvider, get_provider


def make_client(chunks):
    """Anthropic client double whose message stream yields chunks"""
    client = MagicMock()
    stream = client.messages.stream.return_value.__enter__.return_value
    stream.text_stream = chunks
    return client


class TestRegistry:
    """Test provider lookup"""

    def test_claude_is_shared(self):
        assert isinstance(get_provider('claude'), ClaudeProvider)
        assert get_provider('Claude') is get_provider('claude')

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match='Unknown provider: gemini'):
            get_provider('gemini')


class TestClaudeProvider:
    """Test streaming and chat history"""

    def test_streams_text_chunks(self):
        provider = ClaudeProvider(client=make_client(['Hel', 'lo']))
        chunks = list(provider.query('Hi', 'user-1', 'chat-1', model='claude-test'))

        assert chunks == [{'type': 'text', 'content': 'Hel'}, {'type': 'text', 'content': 'lo'}]
        kwargs = provider.client.messages.stream.call_args.kwargs
        assert kwargs['model'] == 'claude-test'
        assert kwargs['messages'][0] == {'role': 'user', 'content': 'Hi'}

    def test_history_continues_per_chat(self):
        provider = ClaudeProvider(client=make_client(['ok']))
        list(provider.query('first', 'user-1', 'chat-1'))
        list(provider.query('second', 'user-1', 'chat-1'))

        messages = provider.client.messages.stream.call_args.kwargs['messages']
        assert [m['content'] for m in messages[:3]] == ['first', 'ok', 'second']

    def test_chats_are_separate(self):
        provider = ClaudeProvider(client=make_client(['ok']))
        list(provider.query('first', 'user-1', 'chat-1'))
        list(provider.query('other', 'user-1', 'chat-2'))

        messages = provider.client.messages.stream.call_args.kwargs['messages']
        assert messages[0]['content'] == 'other'

    def test_single_turn_drops_history(self):
        provider = ClaudeProvider(client=make_client(['ok']))
        list(provider.query('first', 'user-1', 'chat-1'))
        list(provider.query('second', 'user-1', 'chat-1', max_turns=1))

        messages = provider.client.messages.stream.call_args.kwargs['messages']
        assert messages[0]['content'] == 'second'

    def test_missing_api_key_yields_error(self, monkeypatch):
        monkeypatch.delenv('ANTHROPIC_API_KEY', raising=False)
        chunks = list(ClaudeProvider().query('Hi', 'user-1', 'chat-1'))
        assert chunks == [{'type': 'error', 'message': 'ANTHROPIC_API_KEY not set in environment'}]

    def test_cleanup_drops_sessions(self):
        provider = ClaudeProvider(client=make_client(['ok']))
        list(provider.query('first', 'user-1', 'chat-1'))
        assert provider.get_session('chat-1', 'user-1') is not None

        provider.cleanup()
        assert provider.get_session('chat-1', 'user-1') is None
