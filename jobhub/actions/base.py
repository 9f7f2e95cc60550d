"""
Base action class that all job action handlers inherit from.
Provides timing, config helpers, and error handling.
"""

import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional


class ActionError(RuntimeError):
    """Raised by an action handler to fail the job with a message."""


@dataclass
class ActionResult:
    """Result of running a job's action."""
    success: bool
    result_data: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    duration_ms: int = 0
    execution_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'success': self.success,
            'result_data': self.result_data,
            'error_message': self.error_message,
            'duration_ms': self.duration_ms,
            'execution_id': self.execution_id,
        }


class BaseAction(ABC):
    """
    Abstract base class for job actions.

    Subclasses must implement:
        - run(self) -> dict

    run() returns the result payload stored on the execution; raising any
    exception (ActionError for expected failures) fails the execution.

    Optional overrides:
        - validate_config(self) -> None
        - on_success(self, result: ActionResult)
        - on_failure(self, result: ActionResult)

    Example:
        class PingAction(BaseAction):
            name = "ping"
            description = "Returns pong"

            def run(self) -> dict:
                return {'reply': 'pong'}
    """

    # Class-level metadata (override in subclasses)
    name: str = "base_action"
    description: str = "Base action class"

    def __init__(
        self,
        job: Dict[str, Any],
        report_store=None,
        provider_factory: Callable[[str], Any] = None
    ):
        """
        Initialize the action.

        Args:
            job: The job record being executed
            report_store: ReportStore for report and export actions
            provider_factory: Callable mapping a provider name to a provider
        """
        self.job = job
        self.config = job.get('action_config') or {}
        self.report_store = report_store
        self.provider_factory = provider_factory
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Set up a logger for this action."""
        return logging.getLogger(f"jobhub.action.{self.name}")

    def execute(self) -> ActionResult:
        """
        Run the action and capture the outcome.

        This is the entry point called by the executor.
        Do not override this method - override run() instead.

        Returns:
            ActionResult with the result payload or error message and timing
        """
        start_time = time.time()

        try:
            self.validate_config()
            data = self.run()
            result = ActionResult(
                success=True,
                result_data=data or {},
                duration_ms=int((time.time() - start_time) * 1000)
            )
            self.on_success(result)
            return result

        except Exception as e:
            result = ActionResult(
                success=False,
                error_message=str(e) or e.__class__.__name__,
                duration_ms=int((time.time() - start_time) * 1000)
            )
            self.on_failure(result)
            return result

    @abstractmethod
    def run(self) -> Dict[str, Any]:
        """
        Main action logic. Override this in subclasses.

        Returns:
            Result payload for the execution record
        """
        pass

    def validate_config(self) -> None:
        """
        Validate action configuration before running.

        Override to add checks; raise ActionError on invalid config.
        """

    def on_success(self, result: ActionResult) -> None:
        """Called after a successful run."""
        self.logger.info(
            f"Action '{self.name}' for job {self.job.get('id')} completed in {result.duration_ms}ms"
        )

    def on_failure(self, result: ActionResult) -> None:
        """Called after a failed run."""
        self.logger.warning(
            f"Action '{self.name}' for job {self.job.get('id')} failed: {result.error_message}"
        )

    def get_config_value(self, key: str, default: Any = None) -> Any:
        """
        Safely get an action configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found or empty

        Returns:
            Configuration value or default
        """
        value = self.config.get(key)
        return default if value is None or value == '' else value

    def require_config(self, *keys: str) -> None:
        """
        Check that required configuration keys are present and non-empty.

        Raises:
            ActionError: Naming the first missing key
        """
        for key in keys:
            value = self.config.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ActionError(f"{key} is required")
