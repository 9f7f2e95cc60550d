"""
Chat Message Action

Sends a prompt to an AI provider and stores the streamed response.

Config:
    prompt: Message to send (required)
    provider: Provider name (default claude)
    chatId: Conversation to continue (default job-<job id>)
    model: Model override for the provider
    maxTurns: Turn budget for the provider (default 10)
"""

from typing import Any, Dict

from jobhub.actions.base import ActionError, BaseAction


DEFAULT_PROVIDER = 'claude'
DEFAULT_MAX_TURNS = 10


class ChatMessageAction(BaseAction):
    """Send a scheduled prompt to an AI provider."""

    name = "chat_message"
    description = "Send a prompt to an AI provider"

    def validate_config(self) -> None:
        self.require_config('prompt')
        if self.provider_factory is None:
            raise ActionError("AI provider is not configured")

    def run(self) -> Dict[str, Any]:
        prompt = self.config['prompt']
        provider_name = self.get_config_value('provider', DEFAULT_PROVIDER)
        chat_id = self.get_config_value('chatId', f"job-{self.job['id']}")

        provider = self.provider_factory(provider_name)

        parts = []
        for chunk in provider.query(
            prompt=prompt,
            user_id=self.job['user_id'],
            chat_id=chat_id,
            model=self.get_config_value('model'),
            max_turns=int(self.get_config_value('maxTurns', DEFAULT_MAX_TURNS))
        ):
            chunk_type = chunk.get('type')
            if chunk_type == 'text':
                parts.append(chunk.get('content') or '')
            elif chunk_type == 'error':
                raise ActionError(chunk.get('message') or 'Provider returned an error')

        response = ''.join(parts)
        return {
            'provider': provider_name,
            'prompt': prompt,
            'chatId': chat_id,
            'response': response,
            'responseLength': len(response),
        }
