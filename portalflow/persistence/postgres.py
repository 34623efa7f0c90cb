"""PostgreSQL implementation of the run history store."""

from __future__ import annotations

import json

import asyncpg

from ..errors import UnknownRun
from .models import AttemptRecord, RunRecord
from .repository import RunHistoryStore

_RUN_COLUMNS = (
    "run_id, workflow_type, status, created_at, updated_at, error, "
    "failed_step, current_step, payload, outputs"
)


class PostgresRunHistoryStore(RunHistoryStore):
    """Persist run history using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                error TEXT,
                failed_step TEXT,
                current_step TEXT,
                payload JSONB,
                outputs JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempts (
                id SERIAL PRIMARY KEY,
                run_id TEXT NOT NULL REFERENCES runs (run_id),
                step_name TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                attempt INTEGER NOT NULL,
                outcome TEXT NOT NULL,
                timestamp TIMESTAMPTZ NOT NULL,
                error TEXT,
                UNIQUE (run_id, step_name, attempt)
            )
            """
        )

    @staticmethod
    def _row_to_run(row: asyncpg.Record) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            workflow_type=row["workflow_type"],
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            error=row["error"],
            failed_step=row["failed_step"],
            current_step=row["current_step"],
            payload=json.loads(row["payload"]) if row["payload"] else None,
            outputs=json.loads(row["outputs"]) if row["outputs"] else {},
        )

    # ------------------------------------------------------------------
    async def create_run(self, record: RunRecord) -> None:
        data = record.model_dump(mode="json")
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO runs ({_RUN_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)",
                record.run_id,
                record.workflow_type,
                record.status.value,
                record.created_at,
                record.updated_at,
                record.error,
                record.failed_step,
                record.current_step,
                json.dumps(data["payload"]),
                json.dumps(data["outputs"]),
            )
        finally:
            await conn.close()

    async def save_run(self, record: RunRecord) -> None:
        data = record.model_dump(mode="json")
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE runs
                SET status = $1, updated_at = $2, error = $3, failed_step = $4,
                    current_step = $5, payload = $6, outputs = $7
                WHERE run_id = $8
                """,
                record.status.value,
                record.updated_at,
                record.error,
                record.failed_step,
                record.current_step,
                json.dumps(data["payload"]),
                json.dumps(data["outputs"]),
                record.run_id,
            )
        finally:
            await conn.close()
        if result == "UPDATE 0":
            raise UnknownRun(record.run_id)

    async def get_run(self, run_id: str) -> RunRecord:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_RUN_COLUMNS} FROM runs WHERE run_id = $1", run_id
            )
        finally:
            await conn.close()
        if not row:
            raise UnknownRun(run_id)
        return self._row_to_run(row)

    async def list_runs(self) -> list[RunRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(f"SELECT {_RUN_COLUMNS} FROM runs ORDER BY created_at")
        finally:
            await conn.close()
        return [self._row_to_run(r) for r in rows]

    async def append(self, attempt: AttemptRecord) -> bool:
        await self.get_run(attempt.run_id)
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                INSERT INTO attempts
                    (run_id, step_name, step_index, attempt, outcome, timestamp, error)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (run_id, step_name, attempt) DO NOTHING
                """,
                attempt.run_id,
                attempt.step_name,
                attempt.step_index,
                attempt.attempt,
                attempt.outcome.value,
                attempt.timestamp,
                attempt.error,
            )
        finally:
            await conn.close()
        return result == "INSERT 0 1"

    async def list_attempts(self, run_id: str) -> list[AttemptRecord]:
        await self.get_run(run_id)
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT run_id, step_name, step_index, attempt, outcome, timestamp, error
                FROM attempts WHERE run_id = $1 ORDER BY step_index, attempt
                """,
                run_id,
            )
        finally:
            await conn.close()
        return [
            AttemptRecord(
                run_id=r["run_id"],
                step_name=r["step_name"],
                step_index=r["step_index"],
                attempt=r["attempt"],
                outcome=r["outcome"],
                timestamp=r["timestamp"],
                error=r["error"],
            )
            for r in rows
        ]
