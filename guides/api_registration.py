"""API registration workflow for the Developer Portal.

Registers an internal API in four steps: validate its spec, store its
metadata, generate documentation and notify the owning team. Run it
directly, or through the CLI:

    portalflow workflow start guides.api_registration:registry api_registration \
        --input '{"name": "billing", "version": "1.2.0", "owner": "payments", "spec": {"openapi": "3.1.0", "paths": {"/invoices": {}}}}'
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from pydantic import BaseModel, Field

from portalflow import (
    BackoffPolicy,
    ExecutionContext,
    StepFatalFailure,
    StepOutcome,
    StepRegistry,
    WorkflowEngine,
    step,
)

logger = logging.getLogger(__name__)

# Stand-ins for the portal's metadata table and team inboxes.
API_CATALOG: Dict[str, Dict[str, Any]] = {}
TEAM_INBOX: Dict[str, list[str]] = {}


class ApiRegistration(BaseModel):
    name: str = Field(min_length=1)
    version: str
    owner: str
    spec: Dict[str, Any] = Field(default_factory=dict)


def validate_spec(ctx: ExecutionContext) -> Dict[str, Any]:
    request: ApiRegistration = ctx.input
    if not str(request.spec.get("openapi", "")).startswith("3."):
        raise StepFatalFailure("spec must declare an OpenAPI 3.x version")
    paths = sorted(request.spec.get("paths", {}))
    if not paths:
        raise StepFatalFailure("spec defines no paths")
    return {"paths": paths}


async def store_metadata(ctx: ExecutionContext) -> StepOutcome:
    request: ApiRegistration = ctx.input
    key = f"{request.name}@{request.version}"
    if key in API_CATALOG:
        return StepOutcome.fatal(f"{key} is already registered")
    await asyncio.sleep(0)
    API_CATALOG[key] = {
        "owner": request.owner,
        "paths": ctx.output_of("validate_spec")["paths"],
    }
    return StepOutcome.success({"catalog_key": key})


def generate_docs(ctx: ExecutionContext) -> str:
    request: ApiRegistration = ctx.input
    lines = [f"# {request.name} {request.version}", ""]
    lines += [f"- `{path}`" for path in ctx.output_of("validate_spec")["paths"]]
    return "\n".join(lines)


async def notify_team(ctx: ExecutionContext) -> None:
    request: ApiRegistration = ctx.input
    TEAM_INBOX.setdefault(request.owner, []).append(
        f"{ctx.output_of('store_metadata')['catalog_key']} is live in the portal"
    )


registry = StepRegistry()
registry.register(
    "api_registration",
    [
        step("validate_spec", validate_spec),
        step(
            "store_metadata",
            store_metadata,
            max_retries=3,
            backoff=BackoffPolicy(initial_delay=0.2, max_delay=2.0),
        ),
        step("generate_docs", generate_docs),
        step("notify_team", notify_team, max_retries=2),
    ],
    input_model=ApiRegistration,
)


async def main() -> None:
    async with WorkflowEngine(registry=registry) as engine:
        run_id = await engine.start(
            "api_registration",
            {
                "name": "billing",
                "version": "1.2.0",
                "owner": "payments",
                "spec": {"openapi": "3.1.0", "paths": {"/invoices": {}, "/refunds": {}}},
            },
        )
        record = await engine.wait(run_id)
        print(f"Run {run_id}: {record.status.value}")
        for attempt in await engine.list_attempts(run_id):
            print(f"- {attempt.step_name} #{attempt.attempt}: {attempt.outcome.value}")
        print(record.outputs["generate_docs"])


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
