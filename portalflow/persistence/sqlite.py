"""SQLite implementation of the run history store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import UnknownRun
from .models import AttemptRecord, RunRecord
from .repository import RunHistoryStore


class SQLiteRunHistoryStore(RunHistoryStore):
    """Persist run history using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                error TEXT,
                failed_step TEXT,
                current_step TEXT,
                payload TEXT,
                outputs TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS attempts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                attempt INTEGER NOT NULL,
                outcome TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                error TEXT,
                UNIQUE (run_id, step_name, attempt)
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _run_params(record: RunRecord) -> tuple:
        data = record.model_dump(mode="json")
        return (
            data["workflow_type"],
            data["status"],
            data["created_at"],
            data["updated_at"],
            data["error"],
            data["failed_step"],
            data["current_step"],
            json.dumps(data["payload"]),
            json.dumps(data["outputs"]),
        )

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            workflow_type=row["workflow_type"],
            status=row["status"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            error=row["error"],
            failed_step=row["failed_step"],
            current_step=row["current_step"],
            payload=json.loads(row["payload"]) if row["payload"] else None,
            outputs=json.loads(row["outputs"]) if row["outputs"] else {},
        )

    # ------------------------------------------------------------------
    # Store API
    async def create_run(self, record: RunRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO runs (workflow_type, status, created_at, updated_at, error,
                              failed_step, current_step, payload, outputs, run_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            *self._run_params(record),
            record.run_id,
        )

    async def save_run(self, record: RunRecord) -> None:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE runs
            SET workflow_type = ?, status = ?, created_at = ?, updated_at = ?, error = ?,
                failed_step = ?, current_step = ?, payload = ?, outputs = ?
            WHERE run_id = ?
            """,
            *self._run_params(record),
            record.run_id,
        )
        if not updated:
            raise UnknownRun(record.run_id)

    async def get_run(self, run_id: str) -> RunRecord:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT * FROM runs WHERE run_id = ?", run_id
        )
        if not row:
            raise UnknownRun(run_id)
        return self._row_to_run(row)

    async def list_runs(self) -> list[RunRecord]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT * FROM runs ORDER BY created_at"
        )
        return [self._row_to_run(row) for row in rows]

    async def append(self, attempt: AttemptRecord) -> bool:
        await self.get_run(attempt.run_id)
        inserted = await asyncio.to_thread(
            self._execute,
            """
            INSERT OR IGNORE INTO attempts
                (run_id, step_name, step_index, attempt, outcome, timestamp, error)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            attempt.run_id,
            attempt.step_name,
            attempt.step_index,
            attempt.attempt,
            attempt.outcome.value,
            attempt.timestamp.isoformat(),
            attempt.error,
        )
        return inserted == 1

    async def list_attempts(self, run_id: str) -> list[AttemptRecord]:
        await self.get_run(run_id)
        rows = await asyncio.to_thread(
            self._fetchall,
            """
            SELECT run_id, step_name, step_index, attempt, outcome, timestamp, error
            FROM attempts WHERE run_id = ? ORDER BY step_index, attempt
            """,
            run_id,
        )
        return [
            AttemptRecord(
                run_id=r["run_id"],
                step_name=r["step_name"],
                step_index=r["step_index"],
                attempt=r["attempt"],
                outcome=r["outcome"],
                timestamp=datetime.fromisoformat(r["timestamp"]),
                error=r["error"],
            )
            for r in rows
        ]
