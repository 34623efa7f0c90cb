"""Core workflow contracts: step definitions, outcomes and execution context."""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils.retry import compute_backoff


class OutcomeKind(str, Enum):
    """Result classification for a single step attempt."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable-failure"
    FATAL_FAILURE = "fatal-failure"


class StepOutcome(BaseModel):
    """What a step handler reports back to the engine."""

    kind: OutcomeKind
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, output: Any = None) -> "StepOutcome":
        return cls(kind=OutcomeKind.SUCCESS, output=output)

    @classmethod
    def retryable(cls, error: str) -> "StepOutcome":
        return cls(kind=OutcomeKind.RETRYABLE_FAILURE, error=error)

    @classmethod
    def fatal(cls, error: str) -> "StepOutcome":
        return cls(kind=OutcomeKind.FATAL_FAILURE, error=error)

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


class BackoffPolicy(BaseModel):
    """Exponential backoff applied between attempts of one step."""

    model_config = ConfigDict(frozen=True)

    initial_delay: float = Field(default=0.5, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)
    jitter: float = Field(default=0.1, ge=0)

    def delay(self, attempt: int) -> float:
        """Seconds to wait after ``attempt`` failed, before the next one."""
        return compute_backoff(
            attempt,
            initial_delay=self.initial_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
            jitter=self.jitter,
        )


class ExecutionContext(BaseModel):
    """State carried through a single run.

    The engine driving the run is the only writer; step handlers read the
    input and the outputs of the steps before them.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str
    workflow_type: str
    input: Any = None
    outputs: Dict[str, Any] = Field(default_factory=dict)
    step_index: int = 0
    attempt: int = 0

    def output_of(self, step_name: str) -> Any:
        """Return the recorded output of ``step_name``.

        Raises:
            KeyError: If the step has not completed in this run.
        """
        return self.outputs[step_name]

    @property
    def previous_output(self) -> Any:
        """Output of the most recently completed step, or ``None``."""
        if not self.outputs:
            return None
        return next(reversed(self.outputs.values()))


StepResult = Union[StepOutcome, Any]
StepHandler = Callable[[ExecutionContext], Union[StepResult, Awaitable[StepResult]]]


class StepDefinition(BaseModel):
    """Defines one step in a workflow."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(min_length=1)
    handler: Callable[..., Any]
    max_retries: int = Field(default=0, ge=0)
    backoff: Optional[BackoffPolicy] = None


class WorkflowDefinition(BaseModel):
    """An ordered, immutable sequence of steps registered under a type."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    workflow_type: str = Field(min_length=1)
    steps: Tuple[StepDefinition, ...]
    input_model: Optional[Type[BaseModel]] = None

    @field_validator("steps")
    @classmethod
    def _ensure_steps(
        cls, v: Tuple[StepDefinition, ...]
    ) -> Tuple[StepDefinition, ...]:
        if not v:
            raise ValueError("a workflow must define at least one step")
        names = [step.name for step in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate step names: {', '.join(duplicates)}")
        return v

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]
