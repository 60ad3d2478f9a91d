"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

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


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

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
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                tenant_id TEXT,
                code TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                target_table TEXT NOT NULL,
                is_active BOOLEAN NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL REFERENCES workflow_definitions(id) ON DELETE CASCADE,
                code TEXT NOT NULL,
                name TEXT NOT NULL,
                step_type TEXT NOT NULL,
                assignee_type TEXT NOT NULL,
                assignee_value TEXT,
                assignee_roles JSONB NOT NULL,
                actions JSONB NOT NULL,
                next_steps JSONB NOT NULL,
                sort_order INTEGER NOT NULL,
                is_active BOOLEAN NOT NULL
            )
            """
        )
        await conn.execute(
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
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                data JSONB,
                version INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS approval_history (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                workflow_instance_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                action TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                actor_name TEXT,
                actor_role TEXT,
                comment TEXT,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def _insert_history(
        self, conn: asyncpg.Connection, entry: ApprovalHistory
    ) -> None:
        await conn.execute(
            f"INSERT INTO approval_history ({_HISTORY_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)",
            entry.id,
            entry.workflow_instance_id,
            entry.step_id,
            entry.action,
            entry.actor_id,
            entry.actor_name,
            entry.actor_role,
            entry.comment,
            entry.created_at,
        )

    async def _load_definition(
        self, conn: asyncpg.Connection, row: asyncpg.Record
    ) -> WorkflowDefinition:
        step_rows = await conn.fetch(
            "SELECT * FROM workflow_steps WHERE workflow_id = $1 ORDER BY sort_order",
            row["id"],
        )
        data = {k: v for k, v in dict(row).items() if k != "created_at"}
        return WorkflowDefinition(
            **data, steps=[WorkflowStep.model_validate(dict(r)) for r in step_rows]
        )

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO workflow_definitions
                        (id, tenant_id, code, name, description, target_table, is_active)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    ON CONFLICT (id) DO UPDATE SET
                        tenant_id = EXCLUDED.tenant_id,
                        code = EXCLUDED.code,
                        name = EXCLUDED.name,
                        description = EXCLUDED.description,
                        target_table = EXCLUDED.target_table,
                        is_active = EXCLUDED.is_active
                    """,
                    definition.id,
                    definition.tenant_id,
                    definition.code,
                    definition.name,
                    definition.description,
                    definition.target_table,
                    definition.is_active,
                )
                await conn.execute(
                    "DELETE FROM workflow_steps WHERE workflow_id = $1", definition.id
                )
                for step in definition.steps:
                    await conn.execute(
                        """
                        INSERT INTO workflow_steps
                            (id, workflow_id, code, name, step_type, assignee_type,
                             assignee_value, assignee_roles, actions, next_steps,
                             sort_order, is_active)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                        """,
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
                        step.is_active,
                    )
        finally:
            await conn.close()

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM workflow_definitions WHERE id = $1", definition_id
            )
            if not row:
                return None
            return await self._load_definition(conn, row)
        finally:
            await conn.close()

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
            params.append(code)
            clauses.append(f"code = ${len(params)}")
        if target_table is not None:
            params.append(target_table)
            clauses.append(f"target_table = ${len(params)}")
        if tenant_id is not None:
            params.append(tenant_id)
            clauses.append(f"tenant_id = ${len(params)}")
        if active_only:
            clauses.append("is_active")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT * FROM workflow_definitions {where} ORDER BY created_at LIMIT 1",
                *params,
            )
            if not row:
                return None
            return await self._load_definition(conn, row)
        finally:
            await conn.close()

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        conn = await self._connect()
        try:
            if tenant_id is None:
                rows = await conn.fetch(
                    "SELECT * FROM workflow_definitions ORDER BY created_at"
                )
            else:
                rows = await conn.fetch(
                    "SELECT * FROM workflow_definitions WHERE tenant_id = $1 ORDER BY created_at",
                    tenant_id,
                )
            return [await self._load_definition(conn, r) for r in rows]
        finally:
            await conn.close()

    async def create_instance(self, instance: WorkflowInstance) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO workflow_instances ({_INSTANCE_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)",
                instance.id,
                instance.workflow_id,
                instance.tenant_id,
                instance.record_id,
                instance.record_table,
                instance.current_step_id,
                instance.status,
                instance.started_by,
                instance.started_at,
                instance.completed_at,
                json.dumps(instance.data) if instance.data is not None else None,
                instance.version,
            )
        finally:
            await conn.close()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE id = $1",
                instance_id,
            )
        finally:
            await conn.close()
        return WorkflowInstance.model_validate(dict(row)) if row else None

    async def find_latest_instance(
        self, record_id: str, record_table: str, status: Optional[str] = None
    ) -> WorkflowInstance | None:
        query = (
            f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances "
            "WHERE record_id = $1 AND record_table = $2"
        )
        params: list[Any] = [record_id, record_table]
        if status is not None:
            query += " AND status = $3"
            params.append(status)
        query += " ORDER BY started_at DESC LIMIT 1"
        conn = await self._connect()
        try:
            row = await conn.fetchrow(query, *params)
        finally:
            await conn.close()
        return WorkflowInstance.model_validate(dict(row)) if row else None

    async def list_instances(
        self, tenant_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[WorkflowInstance]:
        clauses, params = [], []
        if tenant_id is not None:
            params.append(tenant_id)
            clauses.append(f"tenant_id = ${len(params)}")
        if status is not None:
            params.append(status)
            clauses.append(f"status = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances {where} ORDER BY started_at",
                *params,
            )
        finally:
            await conn.close()
        return [WorkflowInstance.model_validate(dict(r)) for r in rows]

    async def append_history(self, entry: ApprovalHistory) -> None:
        conn = await self._connect()
        try:
            await self._insert_history(conn, entry)
        finally:
            await conn.close()

    async def record_transition(
        self,
        entry: ApprovalHistory,
        instance: WorkflowInstance,
        expected_version: int,
    ) -> bool:
        conn = await self._connect()
        try:
            async with conn.transaction():
                status = await conn.execute(
                    """
                    UPDATE workflow_instances
                    SET current_step_id = $1, status = $2, completed_at = $3,
                        data = $4, version = $5
                    WHERE id = $6 AND version = $7
                    """,
                    instance.current_step_id,
                    instance.status,
                    instance.completed_at,
                    json.dumps(instance.data) if instance.data is not None else None,
                    instance.version,
                    instance.id,
                    expected_version,
                )
                # asyncpg returns the command tag, e.g. "UPDATE 1"
                if status.split()[-1] == "0":
                    return False
                await self._insert_history(conn, entry)
                return True
        finally:
            await conn.close()

    async def list_history(
        self,
        instance_id: str,
        step_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[ApprovalHistory]:
        query = (
            f"SELECT {_HISTORY_COLUMNS} FROM approval_history "
            "WHERE workflow_instance_id = $1"
        )
        params: list[Any] = [instance_id]
        if step_id is not None:
            params.append(step_id)
            query += f" AND step_id = ${len(params)}"
        if action is not None:
            params.append(action)
            query += f" AND action = ${len(params)}"
        query += " ORDER BY seq"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [ApprovalHistory.model_validate(dict(r)) for r in rows]
