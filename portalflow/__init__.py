"""portalflow: sequential, retryable workflow runs for the Developer Portal."""

from .contracts import (
    BackoffPolicy,
    ExecutionContext,
    OutcomeKind,
    StepDefinition,
    StepOutcome,
    WorkflowDefinition,
)
from .engine import WorkflowEngine
from .errors import (
    DuplicateWorkflowType,
    InvalidWorkflowInput,
    StepFatalFailure,
    StepRetryableFailure,
    UnknownRun,
    UnknownWorkflowType,
)
from .notify import get_notifier
from .persistence import AttemptRecord, RunRecord, RunStatus, get_repository
from .policy import RetryPolicy, should_retry
from .registry import StepRegistry, step

__version__ = "0.1.0"
__all__ = [
    "AttemptRecord",
    "BackoffPolicy",
    "DuplicateWorkflowType",
    "ExecutionContext",
    "InvalidWorkflowInput",
    "OutcomeKind",
    "RetryPolicy",
    "RunRecord",
    "RunStatus",
    "StepDefinition",
    "StepFatalFailure",
    "StepOutcome",
    "StepRegistry",
    "StepRetryableFailure",
    "UnknownRun",
    "UnknownWorkflowType",
    "WorkflowDefinition",
    "WorkflowEngine",
    "get_notifier",
    "get_repository",
    "should_retry",
    "step",
]
