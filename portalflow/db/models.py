from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class RunRow(SQLModel, table=True):
    """Row holding the state of one run."""

    run_id: str = Field(primary_key=True)
    workflow_type: str
    status: str = Field(default="pending", index=True)
    created_at: datetime
    updated_at: datetime
    error: Optional[str] = None
    failed_step: Optional[str] = None
    current_step: Optional[str] = None
    payload: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    outputs: Optional[dict] = Field(default=None, sa_column=Column(JSON))


class AttemptRow(SQLModel, table=True):
    """One step attempt, keyed by run, step and attempt number."""

    run_id: str = Field(foreign_key="runrow.run_id", primary_key=True)
    step_name: str = Field(primary_key=True)
    attempt: int = Field(primary_key=True)
    step_index: int
    outcome: str
    timestamp: datetime
    error: Optional[str] = None
