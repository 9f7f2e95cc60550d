"""
Webhook Action

Calls a user-configured HTTP endpoint. The URL is checked against the
outbound request policy (no private networks) before every call.

Config:
    url: Target URL (http/https)
    method: GET or POST (default POST)
    headers: Extra request headers, merged over Content-Type: application/json
    body: String sent as-is, or any other value sent as JSON
"""

import json
from typing import Any, Dict

import requests

from jobhub.actions.base import ActionError, BaseAction
from jobhub.runner.webhooks import validate_webhook_url


WEBHOOK_TIMEOUT_SECONDS = 20
ALLOWED_METHODS = ('GET', 'POST')
MAX_BODY_CHARS = 10_000


class WebhookAction(BaseAction):
    """Send an HTTP request to a webhook URL."""

    name = "webhook"
    description = "Call an external webhook"

    def validate_config(self) -> None:
        self.require_config('url')
        method = str(self.get_config_value('method', 'POST')).upper()
        if method not in ALLOWED_METHODS:
            raise ActionError(f"Unsupported webhook method: {method}")

    def run(self) -> Dict[str, Any]:
        url = self.config['url']
        validate_webhook_url(url)

        method = str(self.get_config_value('method', 'POST')).upper()
        headers = {'Content-Type': 'application/json'}
        headers.update(self.config.get('headers') or {})

        data = None
        body = self.config.get('body')
        if body is not None:
            data = body if isinstance(body, str) else json.dumps(body)

        try:
            response = requests.request(
                method,
                url,
                headers=headers,
                data=data,
                timeout=WEBHOOK_TIMEOUT_SECONDS,
                allow_redirects=False
            )
        except requests.Timeout:
            raise ActionError(f"Webhook timed out after {WEBHOOK_TIMEOUT_SECONDS}s")
        except requests.RequestException as e:
            raise ActionError(f"Webhook request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ActionError(f"Webhook returned {response.status_code}: {response.reason}")

        return {
            'status': response.status_code,
            'statusText': response.reason,
            'body': (response.text or '')[:MAX_BODY_CHARS],
        }
