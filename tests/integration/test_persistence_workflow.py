"""Engine runs recorded in durable stores."""

import pytest
from pydantic import BaseModel

from portalflow import (
    BackoffPolicy,
    InvalidWorkflowInput,
    OutcomeKind,
    RunStatus,
    StepOutcome,
    StepRegistry,
    WorkflowEngine,
    step,
)
from portalflow.db import SQLModelRunHistoryStore
from portalflow.notify import InMemoryNotifier
from portalflow.persistence import SQLiteRunHistoryStore


class Signup(BaseModel):
    email: str
    team: str = "platform"


def _registry() -> StepRegistry:
    state = {"persist_calls": 0}

    def validate(ctx):
        if "@" not in ctx.input.email:
            return StepOutcome.fatal("invalid email")
        return {"email": ctx.input.email}

    def persist(ctx):
        state["persist_calls"] += 1
        if state["persist_calls"] == 1:
            return StepOutcome.retryable("table locked")
        return {"team": ctx.input.team}

    async def notify(ctx):
        return f"welcome {ctx.output_of('validate')['email']}"

    registry = StepRegistry()
    registry.register(
        "onboard",
        [
            step("validate", validate),
            step("persist", persist, max_retries=1, backoff=BackoffPolicy(initial_delay=0, jitter=0)),
            step("notify", notify),
        ],
        input_model=Signup,
    )
    return registry


@pytest.fixture(params=["sqlite", "sqlmodel"])
def store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRunHistoryStore(tmp_path / "runs.db")
    return SQLModelRunHistoryStore(f"sqlite+aiosqlite:///{tmp_path / 'runs.db'}")


@pytest.mark.asyncio
async def test_run_history_is_persisted(store):
    notifier = InMemoryNotifier()
    async with WorkflowEngine(registry=_registry(), store=store, notifier=notifier) as engine:
        run_id = await engine.start("onboard", {"email": "dev@example.com"})
        record = await engine.wait(run_id, timeout=10)

    assert record.status == RunStatus.SUCCEEDED
    assert record.payload == {"email": "dev@example.com", "team": "platform"}
    assert record.outputs["notify"] == "welcome dev@example.com"

    attempts = await store.list_attempts(run_id)
    assert [(a.step_name, a.attempt, a.outcome) for a in attempts] == [
        ("validate", 1, OutcomeKind.SUCCESS),
        ("persist", 1, OutcomeKind.RETRYABLE_FAILURE),
        ("persist", 2, OutcomeKind.SUCCESS),
        ("notify", 1, OutcomeKind.SUCCESS),
    ]
    assert [r.status for r in notifier.for_run(run_id)] == [RunStatus.SUCCEEDED]


@pytest.mark.asyncio
async def test_fatal_outcome_is_persisted(store):
    engine = WorkflowEngine(registry=_registry(), store=store)
    run_id = await engine.start("onboard", {"email": "nobody"})
    record = await engine.wait(run_id, timeout=10)

    assert record.status == RunStatus.FAILED
    assert record.failed_step == "validate"
    assert record.error == "invalid email"
    attempts = await engine.list_attempts(run_id)
    assert [(a.step_name, a.outcome) for a in attempts] == [
        ("validate", OutcomeKind.FATAL_FAILURE)
    ]


@pytest.mark.asyncio
async def test_invalid_input_creates_no_run(store):
    engine = WorkflowEngine(registry=_registry(), store=store)
    with pytest.raises(InvalidWorkflowInput):
        await engine.start("onboard", {"team": "platform"})
    assert await engine.list_runs() == []
