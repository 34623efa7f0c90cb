"""Workflow engine tests."""

import asyncio

import pytest

from portalflow import (
    BackoffPolicy,
    OutcomeKind,
    RunStatus,
    StepFatalFailure,
    StepOutcome,
    StepRegistry,
    UnknownRun,
    UnknownWorkflowType,
    WorkflowEngine,
    step,
)
from portalflow.persistence import SQLiteRunHistoryStore

NO_WAIT = BackoffPolicy(initial_delay=0, jitter=0)


def _onboard_registry(persist=None, persist_retries=0, extra_steps=()):
    calls = []

    def validate(ctx):
        calls.append("validate")
        return {"email": ctx.input["email"].lower()}

    def default_persist(ctx):
        calls.append("persist")
        return {"user_id": 7, "email": ctx.output_of("validate")["email"]}

    def notify(ctx):
        calls.append("notify")
        return "sent"

    registry = StepRegistry()
    registry.register(
        "onboard",
        [
            step("validate", validate),
            step(
                "persist",
                persist or default_persist,
                max_retries=persist_retries,
                backoff=NO_WAIT,
            ),
            step("notify", notify),
            *extra_steps,
        ],
    )
    return registry, calls


@pytest.mark.asyncio
async def test_all_steps_succeed_in_order():
    registry, calls = _onboard_registry()
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("onboard", {"email": "A@b.com"})
    record = await engine.wait(run_id, timeout=5)

    assert record.status == RunStatus.SUCCEEDED
    assert (await engine.status(run_id)).status == "succeeded"
    assert calls == ["validate", "persist", "notify"]

    attempts = await engine.list_attempts(run_id)
    assert [a.step_name for a in attempts] == ["validate", "persist", "notify"]
    assert all(a.outcome == OutcomeKind.SUCCESS for a in attempts)
    assert all(a.attempt == 1 for a in attempts)
    assert record.outputs["persist"] == {"user_id": 7, "email": "a@b.com"}
    assert record.error is None


@pytest.mark.asyncio
async def test_retryable_step_exhausts_retries_and_fails_run():
    def persist(ctx):
        return StepOutcome.retryable("database unavailable")

    registry, calls = _onboard_registry(persist=persist, persist_retries=2)
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("onboard", {"email": "a@b.com"})
    record = await engine.wait(run_id, timeout=5)

    assert record.status == RunStatus.FAILED
    assert record.failed_step == "persist"
    assert record.error == "database unavailable"

    attempts = await engine.list_attempts(run_id)
    persist_attempts = [a for a in attempts if a.step_name == "persist"]
    assert [a.attempt for a in persist_attempts] == [1, 2, 3]
    assert [a.outcome for a in persist_attempts] == [
        OutcomeKind.RETRYABLE_FAILURE,
        OutcomeKind.RETRYABLE_FAILURE,
        OutcomeKind.FATAL_FAILURE,
    ]
    assert "notify" not in calls
    assert all(a.step_name != "notify" for a in attempts)


@pytest.mark.asyncio
async def test_retry_then_success():
    failures = {"left": 2}

    def persist(ctx):
        if failures["left"]:
            failures["left"] -= 1
            raise ConnectionError("timeout talking to user service")
        return {"attempt": ctx.attempt}

    registry, _ = _onboard_registry(persist=persist, persist_retries=2)
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("onboard", {"email": "a@b.com"})
    record = await engine.wait(run_id, timeout=5)

    assert record.status == RunStatus.SUCCEEDED
    assert record.outputs["persist"] == {"attempt": 3}
    persist_attempts = [
        a for a in await engine.list_attempts(run_id) if a.step_name == "persist"
    ]
    assert [a.outcome for a in persist_attempts] == [
        OutcomeKind.RETRYABLE_FAILURE,
        OutcomeKind.RETRYABLE_FAILURE,
        OutcomeKind.SUCCESS,
    ]
    assert "ConnectionError" in persist_attempts[0].error


@pytest.mark.asyncio
async def test_fatal_failure_is_not_retried():
    seen = []

    async def persist(ctx):
        seen.append(ctx.attempt)
        raise StepFatalFailure("email already taken")

    registry, calls = _onboard_registry(persist=persist, persist_retries=5)
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("onboard", {"email": "a@b.com"})
    record = await engine.wait(run_id, timeout=5)

    assert record.status == RunStatus.FAILED
    assert record.error == "email already taken"
    assert seen == [1]
    assert "notify" not in calls


@pytest.mark.asyncio
async def test_cancel_during_in_flight_step_discards_its_result():
    entered = asyncio.Event()
    release = asyncio.Event()
    archived = []
    terminal = []

    async def notify(ctx):
        entered.set()
        await release.wait()
        return "sent"

    registry = StepRegistry()
    registry.register(
        "onboard",
        [
            step("validate", lambda ctx: True),
            step("persist", lambda ctx: True),
            step("notify", notify),
            step("archive", lambda ctx: archived.append(ctx.run_id)),
        ],
    )
    engine = WorkflowEngine(registry=registry, on_terminal=terminal.append)

    run_id = await engine.start("onboard", {"email": "a@b.com"})
    await asyncio.wait_for(entered.wait(), timeout=5)

    record = await engine.cancel(run_id)
    assert record.status == RunStatus.CANCELLED

    release.set()
    final = await engine.wait(run_id, timeout=5)

    assert final.status == RunStatus.CANCELLED
    assert archived == []
    attempts = await engine.list_attempts(run_id)
    assert [a.step_name for a in attempts] == ["validate", "persist", "notify"]
    assert [r.status for r in terminal] == [RunStatus.CANCELLED]


@pytest.mark.asyncio
async def test_cancel_interrupts_backoff_wait():
    def persist(ctx):
        return StepOutcome.retryable("busy")

    registry = StepRegistry()
    registry.register(
        "slow_retry",
        [
            step(
                "persist",
                persist,
                max_retries=3,
                backoff=BackoffPolicy(initial_delay=60, jitter=0),
            )
        ],
    )
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("slow_retry")
    for _ in range(100):
        if await engine.list_attempts(run_id):
            break
        await asyncio.sleep(0.01)

    await engine.cancel(run_id)
    record = await engine.wait(run_id, timeout=5)

    assert record.status == RunStatus.CANCELLED
    assert len(await engine.list_attempts(run_id)) == 1


@pytest.mark.asyncio
async def test_cancel_terminal_run_is_noop():
    registry, _ = _onboard_registry()
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("onboard", {"email": "a@b.com"})
    await engine.wait(run_id, timeout=5)

    record = await engine.cancel(run_id)
    assert record.status == RunStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_start_returns_before_steps_finish():
    release = asyncio.Event()

    async def slow(ctx):
        await release.wait()
        return "done"

    registry = StepRegistry()
    registry.register("slow", [step("wait", slow)])
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("slow")
    assert (await engine.status(run_id)).status == RunStatus.RUNNING

    release.set()
    assert (await engine.wait(run_id, timeout=5)).status == RunStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_runs_progress_independently():
    gate = asyncio.Event()
    order = []

    async def blocked(ctx):
        await gate.wait()
        order.append("blocked")

    def quick(ctx):
        order.append("quick")

    registry = StepRegistry()
    registry.register("blocked", [step("wait", blocked)])
    registry.register("quick", [step("go", quick)])
    engine = WorkflowEngine(registry=registry)

    first = await engine.start("blocked")
    second = await engine.start("quick")
    assert (await engine.wait(second, timeout=5)).status == RunStatus.SUCCEEDED
    assert order == ["quick"]

    gate.set()
    assert (await engine.wait(first, timeout=5)).status == RunStatus.SUCCEEDED
    assert order == ["quick", "blocked"]


@pytest.mark.asyncio
async def test_terminal_hook_called_once_and_errors_do_not_change_state():
    registry, _ = _onboard_registry()
    delivered = []

    def hook(record):
        delivered.append(record.run_id)
        raise RuntimeError("webhook down")

    engine = WorkflowEngine(registry=registry, on_terminal=hook)
    run_id = await engine.start("onboard", {"email": "a@b.com"})
    record = await engine.wait(run_id, timeout=5)

    assert record.status == RunStatus.SUCCEEDED
    assert delivered == [run_id]


@pytest.mark.asyncio
async def test_steps_cannot_modify_engine_context():
    def tamper(ctx):
        ctx.outputs["first"] = "tampered"
        return "second"

    registry = StepRegistry()
    registry.register(
        "tamper", [step("first", lambda ctx: "original"), step("second", tamper)]
    )
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("tamper")
    record = await engine.wait(run_id, timeout=5)
    assert record.outputs == {"first": "original", "second": "second"}


@pytest.mark.asyncio
async def test_steps_cannot_modify_earlier_outputs_in_place():
    def tamper(ctx):
        ctx.output_of("first")["v"] = "tampered"
        return ctx.output_of("first")["v"]

    registry = StepRegistry()
    registry.register(
        "tamper", [step("first", lambda ctx: {"v": "orig"}), step("second", tamper)]
    )
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("tamper")
    record = await engine.wait(run_id, timeout=5)
    assert record.outputs == {"first": {"v": "orig"}, "second": "tampered"}


@pytest.mark.asyncio
async def test_unserialisable_output_fails_run_in_durable_store(tmp_path):
    after = []
    terminal = []

    registry = StepRegistry()
    registry.register(
        "opaque",
        [step("make", lambda ctx: object()), step("after", lambda ctx: after.append(1))],
    )
    store = SQLiteRunHistoryStore(tmp_path / "runs.db")
    engine = WorkflowEngine(registry=registry, store=store, on_terminal=terminal.append)

    run_id = await engine.start("opaque")
    record = await engine.wait(run_id, timeout=5)

    assert record.status == RunStatus.FAILED
    assert record.failed_step == "make"
    assert "serialize" in record.error
    assert (await store.get_run(run_id)).status == RunStatus.FAILED
    assert after == []
    assert [r.status for r in terminal] == [RunStatus.FAILED]
    store.close()


@pytest.mark.asyncio
async def test_caller_errors():
    engine = WorkflowEngine()

    with pytest.raises(UnknownWorkflowType):
        await engine.start("missing")
    with pytest.raises(UnknownRun):
        await engine.status("nonexistent-run")
    with pytest.raises(UnknownRun):
        await engine.cancel("nonexistent-run")
    with pytest.raises(UnknownRun):
        await engine.list_attempts("nonexistent-run")


@pytest.mark.asyncio
async def test_aclose_cancels_in_flight_runs():
    release = asyncio.Event()

    async def slow(ctx):
        await release.wait()

    registry = StepRegistry()
    registry.register("slow", [step("wait", slow), step("after", lambda ctx: None)])
    engine = WorkflowEngine(registry=registry)

    run_id = await engine.start("slow")
    await asyncio.sleep(0)
    release.set()
    await engine.aclose(cancel=True)

    record = await engine.status(run_id)
    assert record.status == RunStatus.CANCELLED
