"""Step registry: write-once mapping of workflow types to ordered steps."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple, Type

from pydantic import BaseModel

from .contracts import BackoffPolicy, StepDefinition, StepHandler, WorkflowDefinition
from .errors import DuplicateWorkflowType, UnknownWorkflowType

logger = logging.getLogger(__name__)


def step(
    name: str,
    handler: StepHandler,
    max_retries: int = 0,
    backoff: Optional[BackoffPolicy] = None,
) -> StepDefinition:
    """Shorthand for building a :class:`StepDefinition`."""
    return StepDefinition(
        name=name, handler=handler, max_retries=max_retries, backoff=backoff
    )


class StepRegistry:
    """Holds the registered workflow definitions.

    Registration is write-once per type: there is no update or delete, so a
    run always sees the step sequence that existed when it started. The
    registry is read-mostly after startup and is shared by all runs without
    locking.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}

    def register(
        self,
        workflow_type: str,
        steps: Iterable[StepDefinition],
        input_model: Optional[Type[BaseModel]] = None,
    ) -> WorkflowDefinition:
        """Register ``steps`` in order under ``workflow_type``.

        Raises:
            DuplicateWorkflowType: If ``workflow_type`` is already registered.
            pydantic.ValidationError: If the steps are empty or share a name.
        """
        if workflow_type in self._definitions:
            raise DuplicateWorkflowType(workflow_type)
        definition = WorkflowDefinition(
            workflow_type=workflow_type, steps=tuple(steps), input_model=input_model
        )
        return self.register_definition(definition)

    def register_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        if definition.workflow_type in self._definitions:
            raise DuplicateWorkflowType(definition.workflow_type)
        self._definitions[definition.workflow_type] = definition
        logger.info(
            f"Registered workflow {definition.workflow_type} with steps {definition.step_names}"
        )
        return definition

    def get(self, workflow_type: str) -> WorkflowDefinition:
        try:
            return self._definitions[workflow_type]
        except KeyError:
            raise UnknownWorkflowType(workflow_type) from None

    def resolve(self, workflow_type: str) -> Tuple[StepDefinition, ...]:
        """Return the ordered steps registered for ``workflow_type``."""
        return self.get(workflow_type).steps

    def workflow_types(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, workflow_type: object) -> bool:
        return workflow_type in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
