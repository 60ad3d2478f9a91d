"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..contracts import ApprovalHistory, WorkflowDefinition, WorkflowInstance
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Models are copied in and out so
    callers never hold a reference to stored state.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._history: List[ApprovalHistory] = []

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition.model_copy(deep=True)

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        definition = self._definitions.get(definition_id)
        return definition.model_copy(deep=True) if definition else None

    async def find_definition(
        self,
        *,
        code: Optional[str] = None,
        target_table: Optional[str] = None,
        tenant_id: Optional[str] = None,
        active_only: bool = True,
    ) -> WorkflowDefinition | None:
        for definition in self._definitions.values():
            if code is not None and definition.code != code:
                continue
            if target_table is not None and definition.target_table != target_table:
                continue
            if tenant_id is not None and definition.tenant_id != tenant_id:
                continue
            if active_only and not definition.is_active:
                continue
            return definition.model_copy(deep=True)
        return None

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        return [
            d.model_copy(deep=True)
            for d in self._definitions.values()
            if tenant_id is None or d.tenant_id == tenant_id
        ]

    async def create_instance(self, instance: WorkflowInstance) -> None:
        if instance.id in self._instances:
            raise ValueError(f"Instance {instance.id} already exists")
        self._instances[instance.id] = instance.model_copy()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy() if instance else None

    async def find_latest_instance(
        self, record_id: str, record_table: str, status: Optional[str] = None
    ) -> WorkflowInstance | None:
        matches = [
            i
            for i in self._instances.values()
            if i.record_id == record_id
            and i.record_table == record_table
            and (status is None or i.status == status)
        ]
        if not matches:
            return None
        # dicts keep insertion order, so the last match wins ties
        latest = max(reversed(matches), key=lambda i: i.started_at)
        return latest.model_copy()

    async def list_instances(
        self, tenant_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[WorkflowInstance]:
        return [
            i.model_copy()
            for i in self._instances.values()
            if (tenant_id is None or i.tenant_id == tenant_id)
            and (status is None or i.status == status)
        ]

    async def append_history(self, entry: ApprovalHistory) -> None:
        self._history.append(entry)

    async def record_transition(
        self,
        entry: ApprovalHistory,
        instance: WorkflowInstance,
        expected_version: int,
    ) -> bool:
        stored = self._instances.get(instance.id)
        if stored is None or stored.version != expected_version:
            return False
        self._history.append(entry)
        self._instances[instance.id] = instance.model_copy()
        return True

    async def list_history(
        self,
        instance_id: str,
        step_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[ApprovalHistory]:
        return [
            h
            for h in self._history
            if h.workflow_instance_id == instance_id
            and (step_id is None or h.step_id == step_id)
            and (action is None or h.action == action)
        ]
