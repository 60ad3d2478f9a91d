"""Creation and lookup of workflow instances."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .contracts import IN_PROGRESS, WorkflowInstance
from .definitions import DefinitionRepository
from .errors import (
    ConcurrentInstanceExists,
    DefinitionHasNoSteps,
    DefinitionInactive,
    InstanceNotFound,
)
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class InstanceLifecycleManager:
    """Starts instances and answers questions about existing ones.

    Instances are only ever inserted here; moving them along is the job of
    the transition engine.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        definitions: DefinitionRepository,
        allow_concurrent_instances: bool = True,
    ) -> None:
        self._repository = repository
        self._definitions = definitions
        self.allow_concurrent_instances = allow_concurrent_instances

    async def start(
        self,
        definition_id: str,
        record_id: str,
        record_table: str,
        started_by: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        """Start a new instance positioned on the definition's first step.

        Raises:
            DefinitionNotFound: No definition with ``definition_id``.
            DefinitionInactive: The definition is switched off.
            DefinitionHasNoSteps: The definition has no active steps.
            ConcurrentInstanceExists: Concurrent instances are disabled and
                the record already has one in progress.
        """
        definition = await self._definitions.require(definition_id)
        if not definition.is_active:
            raise DefinitionInactive(
                f"Workflow definition {definition.code} is not active",
                definition_id=definition_id,
            )
        first_step = definition.first_step()
        if first_step is None:
            raise DefinitionHasNoSteps(
                f"Workflow definition {definition.code} has no active steps",
                definition_id=definition_id,
            )

        if not self.allow_concurrent_instances:
            running = await self._repository.find_latest_instance(
                record_id, record_table, status=IN_PROGRESS
            )
            if running is not None:
                raise ConcurrentInstanceExists(
                    f"Record {record_table}/{record_id} already has instance {running.id} in progress",
                    instance_id=running.id,
                )

        instance = WorkflowInstance(
            workflow_id=definition.id,
            tenant_id=definition.tenant_id,
            record_id=record_id,
            record_table=record_table,
            current_step_id=first_step.id,
            status=IN_PROGRESS,
            started_by=started_by,
            data=payload,
        )
        await self._repository.create_instance(instance)
        logger.info(
            f"Started workflow {definition.code} instance={instance.id} "
            f"for {record_table}/{record_id} at step {first_step.code}"
        )
        return instance

    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return await self._repository.get_instance(instance_id)

    async def require_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFound(
                f"Workflow instance {instance_id} not found", instance_id=instance_id
            )
        return instance

    async def get_instance_by_record(
        self, record_id: str, record_table: str
    ) -> Optional[WorkflowInstance]:
        """Most recently started instance for a business record."""
        return await self._repository.find_latest_instance(record_id, record_table)

    async def list_instances(
        self, tenant_id: Optional[str] = None, status: Optional[str] = None
    ) -> List[WorkflowInstance]:
        return await self._repository.list_instances(tenant_id=tenant_id, status=status)
