"""Resolution of who may act on an instance's current step."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .contracts import (
    ApprovalHistory,
    StepPermission,
    WorkflowInstance,
    WorkflowStep,
)
from .definitions import DefinitionRepository
from .lifecycle import InstanceLifecycleManager
from .parallel import ParallelApprovalCoordinator, current_visit

logger = logging.getLogger(__name__)


def is_actor_permitted(
    step: WorkflowStep,
    instance: WorkflowInstance,
    actor_id: str,
    actor_role: Optional[str],
    step_history: Iterable[ApprovalHistory] = (),
    approve_action: str = "approve",
) -> bool:
    """Single predicate deciding whether an actor may act on ``step``.

    ``step_history`` only matters for parallel steps, where an actor who
    already approved during the current visit to the step may not act again.
    Approvals from earlier visits, before the workflow looped back, do not
    count.
    """
    if step.is_parallel:
        if actor_role is None or actor_role not in step.assignee_roles:
            return False
        return not any(
            h.action == approve_action and h.actor_id == actor_id
            for h in current_visit(step, step_history)
        )
    if step.assignee_type == "role":
        return actor_role is not None and actor_role == step.assignee_value
    if step.assignee_type == "user":
        return actor_id == step.assignee_value
    if step.assignee_type == "creator":
        return instance.started_by is not None and actor_id == instance.started_by
    return False


class AuthorizationResolver:
    """Answers "what may this user do right now" for an instance.

    The answer is advisory; :class:`~approvalflow.engine.TransitionEngine`
    enforces the same predicate on every action.
    """

    def __init__(
        self,
        lifecycle: InstanceLifecycleManager,
        definitions: DefinitionRepository,
        parallel: ParallelApprovalCoordinator,
        approve_action: str = "approve",
    ) -> None:
        self._lifecycle = lifecycle
        self._definitions = definitions
        self._parallel = parallel
        self._approve_action = approve_action

    async def permits(
        self,
        step: WorkflowStep,
        instance: WorkflowInstance,
        actor_id: str,
        actor_role: Optional[str],
    ) -> bool:
        history: list[ApprovalHistory] = []
        if step.is_parallel:
            history = await self._parallel.approvals(instance.id, step)
        return is_actor_permitted(
            step, instance, actor_id, actor_role, history, self._approve_action
        )

    async def can_act_on_step(
        self, instance_id: str, user_role: Optional[str], user_id: str
    ) -> StepPermission:
        instance = await self._lifecycle.get_instance(instance_id)
        if instance is None or instance.is_terminal:
            return StepPermission()
        definition = await self._definitions.get_definition(instance.workflow_id)
        step = definition.step_by_id(instance.current_step_id) if definition else None
        if step is None:
            logger.warning(
                f"Current step {instance.current_step_id} of instance {instance_id} does not resolve"
            )
            return StepPermission()
        if not await self.permits(step, instance, user_id, user_role):
            return StepPermission()
        return StepPermission(can_act=True, available_actions=list(step.actions))
