"""Caller-side wiring between workflow instances and the records they govern.

The engine never touches business records. Callers register one status-sync
hook per record table and invoke it after a successful action, which keeps
each record's denormalised status in line with its workflow instance.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Dict, Optional

from .contracts import (
    COMPLETED,
    REJECTED,
    ActionResult,
    WorkflowInstance,
    WorkflowStep,
)
from .engine import WorkflowEngine
from .errors import DefinitionNotFound

logger = logging.getLogger(__name__)

StatusSyncHook = Callable[[WorkflowInstance, Optional[WorkflowStep]], Awaitable[None]]

CONTRACT_REQUEST_WORKFLOW = "contract_request_approval"
CONTRACT_REQUEST_TABLE = "contract_requests"
CONTRACT_REQUEST_STATUSES = frozenset(
    {"draft", "pending_leader", "pending_managers", "revision", "approved", "rejected"}
)


class StatusSyncRegistry:
    """Status-sync hooks keyed by the record table they keep up to date."""

    def __init__(self) -> None:
        self._hooks: Dict[str, StatusSyncHook] = {}

    def register(self, record_table: str, hook: StatusSyncHook) -> None:
        self._hooks[record_table] = hook

    def get(self, record_table: str) -> Optional[StatusSyncHook]:
        return self._hooks.get(record_table)

    async def sync(
        self, instance: WorkflowInstance, step: Optional[WorkflowStep]
    ) -> bool:
        """Run the hook registered for ``instance.record_table``.

        Returns ``False`` when no hook is registered for that table.
        """
        hook = self._hooks.get(instance.record_table)
        if hook is None:
            logger.debug(f"No status hook registered for {instance.record_table}")
            return False
        await hook(instance, step)
        return True


async def execute_and_sync(
    engine: WorkflowEngine,
    registry: StatusSyncRegistry,
    instance_id: str,
    action: str,
    actor_id: str,
    actor_name: Optional[str] = None,
    comment: Optional[str] = None,
    actor_role: Optional[str] = None,
) -> ActionResult:
    """Execute an action and then bring the governed record's status in line."""
    result = await engine.execute_action(
        instance_id, action, actor_id, actor_name, comment, actor_role
    )
    if result.advanced:
        await registry.sync(result.instance, result.next_step)
    return result


def contract_request_status(
    instance: WorkflowInstance, step: Optional[WorkflowStep]
) -> Optional[str]:
    """Contract request status matching an instance's position.

    Steps of the contract request workflow share their codes with the
    request statuses; ``None`` means the position has no matching status.
    """
    if instance.status == COMPLETED:
        return "approved"
    if instance.status == REJECTED:
        return "rejected"
    if step is not None and step.code in CONTRACT_REQUEST_STATUSES:
        return step.code
    return None


async def start_contract_request_workflow(
    engine: WorkflowEngine,
    contract_request_id: str,
    started_by: str,
    tenant_id: Optional[str] = None,
) -> WorkflowInstance:
    """Start the contract request approval workflow for one request.

    ``tenant_id`` selects the tenant's own definition; the started instance
    inherits that tenant.

    Raises:
        DefinitionNotFound: The ``contract_request_approval`` definition is
            not installed or not active for the tenant.
    """
    definition = await engine.get_definition_by_code(
        CONTRACT_REQUEST_WORKFLOW, tenant_id=tenant_id
    )
    if definition is None:
        logger.error(f"Contract request workflow not found for tenant {tenant_id}")
        raise DefinitionNotFound(
            f"Workflow definition {CONTRACT_REQUEST_WORKFLOW} not found",
            tenant_id=tenant_id,
        )
    return await engine.start(
        definition.id, contract_request_id, CONTRACT_REQUEST_TABLE, started_by
    )
