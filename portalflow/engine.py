"""Workflow engine: drives runs from pending to a terminal status."""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import PortalflowConfig, load_config
from .contracts import (
    ExecutionContext,
    OutcomeKind,
    StepDefinition,
    StepOutcome,
    WorkflowDefinition,
)
from .errors import InvalidWorkflowInput, StepFatalFailure, StepRetryableFailure
from .notify import BaseNotifier, CallbackNotifier, TerminalHook, get_notifier
from .persistence import InMemoryRunHistoryStore, RunHistoryStore, get_repository
from .persistence.models import AttemptRecord, RunRecord, RunStatus, utcnow
from .policy import RetryPolicy
from .registry import StepRegistry

logger = logging.getLogger(__name__)


class _RunHandle:
    """In-process state of one run owned by this engine."""

    def __init__(
        self,
        definition: WorkflowDefinition,
        record: RunRecord,
        context: ExecutionContext,
    ) -> None:
        self.definition = definition
        self.record = record
        self.context = context
        # serialises record changes between the run task and cancel()
        self.lock = asyncio.Lock()
        self.cancel_requested = asyncio.Event()
        self.task: Optional[asyncio.Task] = None


class WorkflowEngine:
    """Runs registered workflows, one asyncio task per run.

    Steps inside a run execute strictly in order; separate runs proceed
    concurrently. Every attempt is appended to the run history store, and
    step failures are recorded as run state rather than raised to callers.
    """

    def __init__(
        self,
        registry: Optional[StepRegistry] = None,
        store: Optional[RunHistoryStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
        notifier: Optional[BaseNotifier] = None,
        on_terminal: Optional[TerminalHook] = None,
    ) -> None:
        self.registry = registry or StepRegistry()
        self.store = store or InMemoryRunHistoryStore()
        self.retry_policy = retry_policy or RetryPolicy()
        self._notifier = notifier
        self._hooks: List[BaseNotifier] = [n for n in (notifier,) if n is not None]
        if on_terminal is not None:
            self._hooks.append(CallbackNotifier(on_terminal))
        self._runs: Dict[str, _RunHandle] = {}

    @classmethod
    def from_config(
        cls,
        config: Optional[PortalflowConfig] = None,
        registry: Optional[StepRegistry] = None,
        store: Optional[RunHistoryStore] = None,
        on_terminal: Optional[TerminalHook] = None,
    ) -> "WorkflowEngine":
        """Build an engine whose store, notifier and default backoff come from config."""
        config = config or load_config()
        return cls(
            registry=registry,
            store=store or get_repository(config=config),
            retry_policy=RetryPolicy.from_config(config.retry),
            notifier=get_notifier(config=config),
            on_terminal=on_terminal,
        )

    async def __aenter__(self) -> "WorkflowEngine":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Caller-facing operations
    async def start(self, workflow_type: str, payload: Any = None) -> str:
        """Start a run of ``workflow_type`` and return its run id.

        Returns as soon as the run is recorded as running; the steps execute
        on a background task. Use :meth:`status` or :meth:`wait` to observe
        the outcome.

        Raises:
            UnknownWorkflowType: If ``workflow_type`` is not registered.
            InvalidWorkflowInput: If ``payload`` fails the workflow's input model.
        """
        definition = self.registry.get(workflow_type)
        run_input, stored_payload = self._validate_input(definition, payload)

        run_id = str(uuid.uuid4())
        record = RunRecord(
            run_id=run_id, workflow_type=workflow_type, payload=stored_payload
        )
        await self.store.create_run(record)

        context = ExecutionContext(
            run_id=run_id, workflow_type=workflow_type, input=run_input
        )
        handle = _RunHandle(definition, record, context)
        self._runs[run_id] = handle
        await self._transition(handle, RunStatus.RUNNING)

        handle.task = asyncio.create_task(
            self._drive(handle), name=f"portalflow-run-{run_id}"
        )
        handle.task.add_done_callback(lambda task: self._forget(run_id, task))
        logger.info(f"Started run {run_id} of workflow {workflow_type}")
        return run_id

    async def status(self, run_id: str) -> RunRecord:
        """Return the current record of ``run_id``.

        Raises:
            UnknownRun: If no such run exists.
        """
        return await self.store.get_run(run_id)

    async def cancel(self, run_id: str) -> RunRecord:
        """Cancel ``run_id`` unless it already reached a terminal status.

        A step attempt already in progress is allowed to finish, but its
        outcome no longer affects the run and no further step is scheduled.

        Raises:
            UnknownRun: If no such run exists.
        """
        handle = self._runs.get(run_id)
        if handle is None:
            record = await self.store.get_run(run_id)
            if record.is_terminal:
                return record
            # run is not driven by this engine; record the cancellation directly
            record.transition(RunStatus.CANCELLED)
            await self.store.save_run(record)
            logger.info(f"Cancelled run {run_id}")
            await self._notify(record)
            return record

        handle.cancel_requested.set()
        if await self._transition(handle, RunStatus.CANCELLED):
            logger.info(f"Cancelled run {run_id}")
        return await self.store.get_run(run_id)

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> RunRecord:
        """Wait until this engine has stopped working on ``run_id``.

        Raises:
            UnknownRun: If no such run exists.
            TimeoutError: If the run task is still active after ``timeout`` seconds.
        """
        handle = self._runs.get(run_id)
        if handle is not None and handle.task is not None:
            _, pending = await asyncio.wait({handle.task}, timeout=timeout)
            if pending:
                raise TimeoutError(f"Run {run_id} did not finish within {timeout}s")
        return await self.status(run_id)

    async def list_attempts(self, run_id: str) -> list[AttemptRecord]:
        return await self.store.list_attempts(run_id)

    async def list_runs(self) -> list[RunRecord]:
        return await self.store.list_runs()

    async def aclose(self, cancel: bool = False) -> None:
        """Wait for in-flight runs, optionally cancelling them first."""
        handles = list(self._runs.values())
        if cancel:
            for handle in handles:
                await self.cancel(handle.record.run_id)
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.wait(tasks)
        if self._notifier is not None:
            await self._notifier.disconnect()

    # ------------------------------------------------------------------
    # Run driver
    async def _drive(self, handle: _RunHandle) -> None:
        run_id = handle.record.run_id
        context = handle.context
        try:
            for index, step in enumerate(handle.definition.steps):
                if handle.cancel_requested.is_set():
                    return
                context.step_index = index
                await self._record_progress(handle, current_step=step.name)

                outcome = await self._run_step(handle, index, step)
                if outcome is None:
                    return
                if not outcome.succeeded:
                    if await self._transition(
                        handle,
                        RunStatus.FAILED,
                        error=outcome.error or f"Step {step.name} failed",
                        failed_step=step.name,
                    ):
                        logger.error(f"Run {run_id} failed at step {step.name}")
                    return

            if await self._transition(handle, RunStatus.SUCCEEDED):
                logger.info(f"Run {run_id} succeeded")
        except Exception as exc:
            logger.exception(f"Run {run_id} aborted by an internal error")
            await self._transition(
                handle,
                RunStatus.FAILED,
                error=f"{type(exc).__name__}: {exc}",
                failed_step=handle.record.current_step,
            )

    async def _run_step(
        self, handle: _RunHandle, index: int, step: StepDefinition
    ) -> Optional[StepOutcome]:
        """Run every attempt of ``step``.

        Returns the final outcome, or ``None`` when the run was cancelled.
        """
        run_id = handle.record.run_id
        context = handle.context
        attempt = 0
        while True:
            attempt += 1
            context.attempt = attempt
            outcome = await self._invoke(step, context)

            retry = False
            kind = outcome.kind
            if kind is OutcomeKind.RETRYABLE_FAILURE:
                retry = self.retry_policy.should_retry(attempt, step.max_retries, kind)
                if not retry:
                    # retries exhausted: the last attempt counts as fatal
                    kind = OutcomeKind.FATAL_FAILURE

            await self.store.append(
                AttemptRecord(
                    run_id=run_id,
                    step_name=step.name,
                    step_index=index,
                    attempt=attempt,
                    outcome=kind,
                    error=outcome.error,
                )
            )

            if handle.cancel_requested.is_set():
                logger.info(
                    f"Discarding {kind.value} of step {step.name} attempt {attempt}: run {run_id} was cancelled"
                )
                return None

            if outcome.succeeded:
                context.outputs[step.name] = outcome.output
                await self._record_progress(handle, outputs=dict(context.outputs))
                logger.info(f"Step {step.name} completed for run {run_id}")
                return outcome

            if not retry:
                logger.error(
                    f"Step {step.name} failed for run {run_id} on attempt {attempt}: {outcome.error}"
                )
                return StepOutcome(kind=kind, error=outcome.error)

            delay = self.retry_policy.delay(step, attempt)
            logger.warning(
                f"Step {step.name} attempt {attempt} failed for run {run_id}: {outcome.error}; "
                f"retrying in {delay:.2f}s"
            )
            if await self._cancelled_during(handle, delay):
                return None

    async def _invoke(self, step: StepDefinition, context: ExecutionContext) -> StepOutcome:
        # handlers get a deep snapshot so only the engine writes the live context
        snapshot = context.model_copy(deep=True)
        try:
            result = step.handler(snapshot)
            if inspect.isawaitable(result):
                result = await result
        except StepFatalFailure as exc:
            return StepOutcome.fatal(str(exc) or type(exc).__name__)
        except StepRetryableFailure as exc:
            return StepOutcome.retryable(str(exc) or type(exc).__name__)
        except Exception as exc:
            logger.warning(f"Step {step.name} raised {exc!r}")
            return StepOutcome.retryable(f"{type(exc).__name__}: {exc}")

        if isinstance(result, StepOutcome):
            return result
        return StepOutcome.success(result)

    async def _cancelled_during(self, handle: _RunHandle, delay: float) -> bool:
        """Wait out a backoff delay; return ``True`` if the run got cancelled."""
        if handle.cancel_requested.is_set():
            return True
        if delay <= 0:
            await asyncio.sleep(0)
            return handle.cancel_requested.is_set()
        try:
            await asyncio.wait_for(handle.cancel_requested.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    # ------------------------------------------------------------------
    # Record bookkeeping
    async def _transition(
        self,
        handle: _RunHandle,
        status: RunStatus,
        error: Optional[str] = None,
        failed_step: Optional[str] = None,
    ) -> bool:
        """Apply a status change unless the run is already terminal."""
        async with handle.lock:
            if handle.record.is_terminal:
                return False
            record = handle.record.model_copy()
            record.transition(status, error=error)
            if failed_step is not None:
                record.failed_step = failed_step
            await self.store.save_run(record)
            handle.record = record
            terminal = record.is_terminal
        if terminal:
            await self._notify(record)
        return True

    async def _record_progress(self, handle: _RunHandle, **changes: Any) -> None:
        async with handle.lock:
            if handle.record.is_terminal:
                return
            # the live record only changes once the store accepted the update
            updated = handle.record.model_copy(update={**changes, "updated_at": utcnow()})
            await self.store.save_run(updated)
            handle.record = updated

    async def _notify(self, record: RunRecord) -> None:
        snapshot = record.model_copy(deep=True)
        for hook in self._hooks:
            try:
                await hook.publish(snapshot)
            except Exception:
                logger.exception(
                    f"Notifier {type(hook).__name__} failed for run {record.run_id}"
                )

    def _forget(self, run_id: str, task: asyncio.Task) -> None:
        self._runs.pop(run_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Run task for {run_id} ended with an error", exc_info=task.exception()
            )

    @staticmethod
    def _validate_input(definition: WorkflowDefinition, payload: Any) -> tuple[Any, Any]:
        """Return the run input and its JSON-ready form for the run record."""
        if definition.input_model is None:
            return payload, payload
        try:
            model = definition.input_model.model_validate(payload)
        except ValidationError as exc:
            raise InvalidWorkflowInput(definition.workflow_type, exc) from exc
        return model, model.model_dump(mode="json")
