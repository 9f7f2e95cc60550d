"""
Action handlers for scheduled jobs.

Each action inherits from BaseAction and implements the run() method.
"""

from typing import Dict, Optional, Type

from jobhub.actions.base import ActionError, ActionResult, BaseAction
from jobhub.actions.chat_message import ChatMessageAction
from jobhub.actions.data_export import DataExportAction
from jobhub.actions.report_generation import ReportGenerationAction
from jobhub.actions.webhook import WebhookAction


ACTION_TYPES: Dict[str, Type[BaseAction]] = {
    action.name: action
    for action in (ReportGenerationAction, WebhookAction, DataExportAction, ChatMessageAction)
}


def get_action_class(action_type: str) -> Optional[Type[BaseAction]]:
    """Look up the handler class for an action type."""
    return ACTION_TYPES.get(action_type)


__all__ = [
    'ACTION_TYPES',
    'ActionError',
    'ActionResult',
    'BaseAction',
    'get_action_class',
]
