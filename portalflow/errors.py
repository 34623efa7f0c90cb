"""Error types raised by portalflow."""

from __future__ import annotations

from pydantic import ValidationError


class PortalflowError(Exception):
    """Base class for all portalflow errors."""


class UnknownWorkflowType(PortalflowError, LookupError):
    """Raised when no workflow is registered under the requested type."""

    def __init__(self, workflow_type: str) -> None:
        super().__init__(f"Workflow type '{workflow_type}' is not registered")
        self.workflow_type = workflow_type


class DuplicateWorkflowType(PortalflowError):
    """Raised when a workflow type is registered twice."""

    def __init__(self, workflow_type: str) -> None:
        super().__init__(f"Workflow type '{workflow_type}' is already registered")
        self.workflow_type = workflow_type


class UnknownRun(PortalflowError, LookupError):
    """Raised when a run identifier cannot be resolved."""

    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run '{run_id}' was not found")
        self.run_id = run_id


class InvalidWorkflowInput(PortalflowError, ValueError):
    """Raised by ``start`` when the payload fails the workflow's input model."""

    def __init__(self, workflow_type: str, error: ValidationError) -> None:
        super().__init__(f"Invalid input for workflow '{workflow_type}': {error}")
        self.workflow_type = workflow_type
        self.errors = error.errors()


class InvalidRunTransition(PortalflowError):
    """Raised when a run status change would move backwards or leave a terminal state."""

    def __init__(self, run_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Run '{run_id}' cannot move from '{current}' to '{requested}'"
        )
        self.run_id = run_id
        self.current = current
        self.requested = requested


class StepFailure(PortalflowError):
    """Base class for failures a step handler may raise."""


class StepRetryableFailure(StepFailure):
    """Transient step failure; the engine may retry the step."""


class StepFatalFailure(StepFailure):
    """Permanent step failure; the run fails without retrying."""
