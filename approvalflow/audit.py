"""Append-only access to the approval history of workflow instances."""

from __future__ import annotations

import logging
from typing import List, Optional

from .contracts import ApprovalHistory
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class AuditLog:
    """Records every action executed against an instance.

    Entries are immutable; there is no update or delete path.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def append(self, entry: ApprovalHistory) -> None:
        """Persist a history entry on its own."""
        await self._repository.append_history(entry)
        logger.debug(
            f"Recorded {entry.action!r} by {entry.actor_id} on step {entry.step_id} "
            f"of instance {entry.workflow_instance_id}"
        )

    async def list_for_instance(self, instance_id: str) -> List[ApprovalHistory]:
        """Full history of an instance ordered by creation time."""
        return await self._repository.list_history(instance_id)

    async def list_for_step(
        self, instance_id: str, step_id: str, action: Optional[str] = None
    ) -> List[ApprovalHistory]:
        return await self._repository.list_history(
            instance_id, step_id=step_id, action=action
        )
