"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from ..contracts import (
    ApprovalHistory,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStep,
)
from .repository import WorkflowRepository

_INSTANCE_COLUMNS = (
    "id, workflow_id, tenant_id, record_id, record_table, current_step_id, "
    "status, started_by, started_at, completed_at, data, version"
)
_HISTORY_COLUMNS = (
    "id, workflow_instance_id, step_id, action, actor_id, actor_name, "
    "actor_role, comment, created_at"
)


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                tenant_id TEXT,
                code TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                target_table TEXT NOT NULL,
                is_active INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                code TEXT NOT NULL,
                name TEXT NOT NULL,
                step_type TEXT NOT NULL,
                assignee_type TEXT NOT NULL,
                assignee_value TEXT,
                assignee_roles TEXT NOT NULL,
                actions TEXT NOT NULL,
                next_steps TEXT NOT NULL,
                sort_order INTEGER NOT NULL,
                is_active INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                tenant_id TEXT,
                record_id TEXT NOT NULL,
                record_table TEXT NOT NULL,
                current_step_id TEXT,
                status TEXT NOT NULL,
                started_by TEXT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                data TEXT,
                version INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_history (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                workflow_instance_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                action TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                actor_name TEXT,
                actor_role TEXT,
                comment TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _insert_history(self, cur: sqlite3.Cursor, entry: ApprovalHistory) -> None:
        cur.execute(
            f"INSERT INTO approval_history ({_HISTORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.id,
                entry.workflow_instance_id,
                entry.step_id,
                entry.action,
                entry.actor_id,
                entry.actor_name,
                entry.actor_role,
                entry.comment,
                _iso(entry.created_at),
            ),
        )

    def _save_definition(self, definition: WorkflowDefinition) -> None:
        with self._lock, self._conn:
            cur = self._conn.cursor()
            cur.execute(
                """
                INSERT OR REPLACE INTO workflow_definitions
                    (id, tenant_id, code, name, description, target_table, is_active)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    definition.id,
                    definition.tenant_id,
                    definition.code,
                    definition.name,
                    definition.description,
                    definition.target_table,
                    int(definition.is_active),
                ),
            )
            cur.execute(
                "DELETE FROM workflow_steps WHERE workflow_id = ?", (definition.id,)
            )
            for step in definition.steps:
                cur.execute(
                    """
                    INSERT INTO workflow_steps
                        (id, workflow_id, code, name, step_type, assignee_type,
                         assignee_value, assignee_roles, actions, next_steps,
                         sort_order, is_active)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        step.id,
                        definition.id,
                        step.code,
                        step.name,
                        step.step_type,
                        step.assignee_type,
                        step.assignee_value,
                        json.dumps(step.assignee_roles),
                        json.dumps(step.actions),
                        json.dumps(step.next_steps),
                        step.sort_order,
                        int(step.is_active),
                    ),
                )

    def _transition(
        self, entry: ApprovalHistory, instance: WorkflowInstance, expected_version: int
    ) -> bool:
        with self._lock, self._conn:
            cur = self._conn.cursor()
            cur.execute(
                """
                UPDATE workflow_instances
                SET current_step_id = ?, status = ?, completed_at = ?, data = ?, version = ?
                WHERE id = ? AND version = ?
                """,
                (
                    instance.current_step_id,
                    instance.status,
                    _iso(instance.completed_at),
                    json.dumps(instance.data) if instance.data is not None else None,
                    instance.version,
                    instance.id,
                    expected_version,
                ),
            )
            if cur.rowcount == 0:
                return False
            self._insert_history(cur, entry)
            return True

    def _append_history(self, entry: ApprovalHistory) -> None:
        with self._lock, self._conn:
            self._insert_history(self._conn.cursor(), entry)

    def _definition_from_row(self, row: sqlite3.Row) -> WorkflowDefinition:
        step_rows = self._fetchall(
            "SELECT * FROM workflow_steps WHERE workflow_id = ? ORDER BY sort_order",
            row["id"],
        )
        return WorkflowDefinition(
            **dict(row), steps=[WorkflowStep.model_validate(dict(r)) for r in step_rows]
        )

    # ------------------------------------------------------------------
    # Repository API
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        await asyncio.to_thread(self._save_definition, definition)

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM workflow_definitions WHERE id = ?",
            definition_id,
        )
        if not row:
            return None
        return await asyncio.to_thread(self._definition_from_row, row)

    async def find_definition(
        self,
        *,
        code: Optional[str] = None,
        target_table: Optional[str] = None,
        tenant_id: Optional[str] = None,
        active_only: bool = True,
    ) -> WorkflowDefinition | None:
        clauses, params = [], []
        if code is not None:
            clauses.append("code = ?")
            params.append(code)
        if target_table is not None:
            clauses.append("target_table = ?")
            params.append(target_table)
        if tenant_id is not None:
            clauses.append("tenant_id = ?")
            params.append(tenant_id)
        if active_only:
            clauses.append("is_active = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT * FROM workflow_definitions {where} ORDER BY rowid LIMIT 1",
            *params,
        )
        if not row:
            return None
        return await asyncio.to_thread(self._definition_from_row, row)

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        if tenant_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM workflow_definitions ORDER BY rowid"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT * FROM workflow_definitions WHERE tenant_id = ? ORDER BY rowid",
                tenant_id,
            )
        return [await asyncio.to_thread(self._definition_from_row, r) for r in rows]

    async def create_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_instances ({_INSTANCE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            instance.id,
            instance.workflow_id,
            instance.tenant_id,
            instance.record_id,
            instance.record_table,
            instance.current_step_id,
            instance.status,
            instance.started_by,
            _iso(instance.started_at),
            _iso(instance.completed_at),
            json.dumps(instance.data) if instance.data is not None else None,
            instance.version,
        )

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE id = ?",
            instance_id,
        )
        return WorkflowInstance.model_validate(dict(row)) if row else None

    async def find_latest_instance(
        self, record_id: str, record_table: str, status: Optional[str] = None
    ) -> WorkflowInstance | None:
        query = (
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances "
            "WHERE record_id = ? AND record_table = ?"
        )
        params: list[Any] = [record_id, record_table]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY started_at DESC, rowid DESC LIMIT 1"
        row = await asyncio.to_thread(self._fetchone, query, *params)
        return WorkflowInstance.model_validate(dict(row)) if row else None

    async def list_instances(
        self, tenant_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[WorkflowInstance]:
        clauses, params = [], []
        if tenant_id is not None:
            clauses.append("tenant_id = ?")
            params.append(tenant_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances {where} ORDER BY rowid",
            *params,
        )
        return [WorkflowInstance.model_validate(dict(r)) for r in rows]

    async def append_history(self, entry: ApprovalHistory) -> None:
        await asyncio.to_thread(self._append_history, entry)

    async def record_transition(
        self,
        entry: ApprovalHistory,
        instance: WorkflowInstance,
        expected_version: int,
    ) -> bool:
        return await asyncio.to_thread(
            self._transition, entry, instance, expected_version
        )

    async def list_history(
        self,
        instance_id: str,
        step_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[ApprovalHistory]:
        query = (
            f"SELECT {_HISTORY_COLUMNS} FROM approval_history "
            "WHERE workflow_instance_id = ?"
        )
        params: list[Any] = [instance_id]
        if step_id is not None:
            query += " AND step_id = ?"
            params.append(step_id)
        if action is not None:
            query += " AND action = ?"
            params.append(action)
        query += " ORDER BY seq"
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [ApprovalHistory.model_validate(dict(r)) for r in rows]
