"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import ApprovalHistory, WorkflowDefinition, WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Definitions are authored outside the engine; the engine only reads them.
    History is append-only. ``record_transition`` must apply the history
    append and the instance update atomically, and only if the stored
    instance still carries ``expected_version``.
    """

    async def save_definition(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a definition together with its steps."""

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        """Retrieve a definition by id, including all of its steps."""

    async def find_definition(
        self,
        *,
        code: Optional[str] = None,
        target_table: Optional[str] = None,
        tenant_id: Optional[str] = None,
        active_only: bool = True,
    ) -> WorkflowDefinition | None:
        """Retrieve the first definition matching ``code`` and/or ``target_table``.

        When ``tenant_id`` is given only that tenant's definitions match.
        """

    async def list_definitions(
        self, tenant_id: Optional[str] = None
    ) -> list[WorkflowDefinition]:
        """Return all definitions, optionally scoped to a tenant."""

    async def create_instance(self, instance: WorkflowInstance) -> None:
        """Persist a freshly started instance."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def find_latest_instance(
        self, record_id: str, record_table: str, status: Optional[str] = None
    ) -> WorkflowInstance | None:
        """Most recently started instance for a business record."""

    async def list_instances(
        self, tenant_id: Optional[str] = None, status: Optional[str] = None
    ) -> list[WorkflowInstance]:
        """Return instances, optionally filtered by tenant and status."""

    async def append_history(self, entry: ApprovalHistory) -> None:
        """Append a history entry without touching the instance."""

    async def record_transition(
        self,
        entry: ApprovalHistory,
        instance: WorkflowInstance,
        expected_version: int,
    ) -> bool:
        """Append ``entry`` and store ``instance`` in one atomic step.

        Returns ``False`` without writing anything when the stored version
        no longer equals ``expected_version``.
        """

    async def list_history(
        self,
        instance_id: str,
        step_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[ApprovalHistory]:
        """History of an instance ordered by creation time."""
