"""Transition engine and the public facade of the approval workflow."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .audit import AuditLog
from .authorization import AuthorizationResolver, is_actor_permitted
from .config import ApprovalflowConfig, load_config
from .contracts import (
    COMPLETED,
    REJECTED,
    ActionResult,
    ApprovalHistory,
    ParallelApprovalStatus,
    StepPermission,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStep,
    utcnow,
)
from .definitions import DefinitionRepository
from .errors import (
    ActionNotAllowed,
    ConcurrentModification,
    InstanceTerminal,
    NextStepNotFound,
    StepNotFound,
    Unauthorized,
)
from .lifecycle import InstanceLifecycleManager
from .parallel import ParallelApprovalCoordinator, evaluate
from .persistence import WorkflowRepository, get_repository
from .progress import StepProgress, build_progress

logger = logging.getLogger(__name__)


def _advance(instance: WorkflowInstance, **changes: Any) -> WorkflowInstance:
    """Copy of ``instance`` with ``changes`` applied and the version bumped."""
    data = instance.model_dump()
    data.update(changes)
    data["version"] = instance.version + 1
    return WorkflowInstance.model_validate(data)


class TransitionEngine:
    """Validates and applies actions against an instance's current step."""

    def __init__(
        self,
        repository: WorkflowRepository,
        lifecycle: InstanceLifecycleManager,
        definitions: DefinitionRepository,
        audit: AuditLog,
        parallel: ParallelApprovalCoordinator,
        approve_action: str = "approve",
        reject_action: str = "reject",
    ) -> None:
        self._repository = repository
        self._lifecycle = lifecycle
        self._definitions = definitions
        self._audit = audit
        self._parallel = parallel
        self.approve_action = approve_action
        self.reject_action = reject_action

    async def _locate(
        self, instance: WorkflowInstance
    ) -> tuple[WorkflowDefinition, WorkflowStep]:
        definition = await self._definitions.get_definition(instance.workflow_id)
        step = definition.step_by_id(instance.current_step_id) if definition else None
        if step is None:
            logger.error(
                f"Instance {instance.id} points at step {instance.current_step_id} "
                f"which does not exist in workflow {instance.workflow_id}"
            )
            raise StepNotFound(
                f"Current step {instance.current_step_id} of instance {instance.id} not found",
                instance_id=instance.id,
                step_id=instance.current_step_id,
            )
        return definition, step

    async def current_step(self, instance_id: str) -> Optional[WorkflowStep]:
        """Step the instance waits on, or ``None`` once it has finished."""
        instance = await self._lifecycle.require_instance(instance_id)
        if instance.is_terminal:
            return None
        _, step = await self._locate(instance)
        return step

    async def _commit(
        self, entry: ApprovalHistory, updated: WorkflowInstance, expected_version: int
    ) -> None:
        if not await self._repository.record_transition(entry, updated, expected_version):
            logger.warning(
                f"Instance {updated.id} changed while {entry.action!r} by {entry.actor_id} was applied"
            )
            raise ConcurrentModification(
                f"Workflow instance {updated.id} was modified concurrently; reload and retry",
                instance_id=updated.id,
            )

    def _conclude(self, instance: WorkflowInstance, action: str) -> WorkflowInstance:
        status = REJECTED if action == self.reject_action else COMPLETED
        return _advance(
            instance, status=status, current_step_id=None, completed_at=utcnow()
        )

    async def execute_action(
        self,
        instance_id: str,
        action: str,
        actor_id: str,
        actor_name: Optional[str] = None,
        comment: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> ActionResult:
        """Apply ``action`` by ``actor_id`` to the instance's current step.

        Failures detected before the action is accepted leave no trace. Once
        accepted, a history entry is always written, even when the step's
        transition turns out to point at a step that does not exist.

        Raises:
            InstanceNotFound: No instance with ``instance_id``.
            InstanceTerminal: The instance already completed or was rejected.
            StepNotFound: The instance's current step no longer resolves.
            ActionNotAllowed: ``action`` is not legal at the current step.
            Unauthorized: The actor may not act on the current step.
            NextStepNotFound: The transition names a step that does not exist.
            ConcurrentModification: Another action won the race for the
                instance; nothing was written.
        """
        instance = await self._lifecycle.require_instance(instance_id)
        if instance.is_terminal:
            raise InstanceTerminal(
                f"Workflow instance {instance_id} is already {instance.status}",
                instance_id=instance_id,
            )
        definition, step = await self._locate(instance)

        if not step.allows(action):
            logger.warning(
                f"Refused {action!r} on step {step.code} of instance {instance_id}"
            )
            raise ActionNotAllowed(
                f"Action {action!r} is not allowed at step {step.code}",
                instance_id=instance_id,
                step_id=step.id,
            )

        step_history: List[ApprovalHistory] = []
        if step.is_parallel:
            step_history = await self._parallel.approvals(instance.id, step)
        if not is_actor_permitted(
            step, instance, actor_id, actor_role, step_history, self.approve_action
        ):
            logger.warning(
                f"Refused {action!r} by {actor_id} (role={actor_role}) on step {step.code} "
                f"of instance {instance_id}"
            )
            raise Unauthorized(
                f"{actor_id} may not act on step {step.code}",
                instance_id=instance_id,
                step_id=step.id,
            )

        entry = ApprovalHistory(
            workflow_instance_id=instance.id,
            step_id=step.id,
            action=action,
            actor_id=actor_id,
            actor_name=actor_name,
            actor_role=actor_role,
            comment=comment,
        )

        if step.is_parallel and action == self.approve_action:
            status = evaluate(step, [*step_history, entry], self.approve_action)
            if not status.all_approved:
                updated = _advance(instance)
                await self._commit(entry, updated, instance.version)
                logger.info(
                    f"Instance {instance_id} step {step.code} approved by {actor_id}; "
                    f"waiting for {', '.join(status.missing_roles)}"
                )
                return ActionResult(
                    instance=updated, entry=entry, next_step=step, advanced=False
                )

        next_step: Optional[WorkflowStep] = None
        next_code = step.next_step_code(action)
        if next_code is None:
            updated = self._conclude(instance, action)
        else:
            target = definition.find_step(next_code)
            if target is None:
                await self._audit.append(entry)
                logger.error(
                    f"Step {step.code} of workflow {definition.code} maps {action!r} "
                    f"to unknown step {next_code!r}; instance {instance_id} left in place"
                )
                raise NextStepNotFound(
                    f"Next step {next_code!r} not found in workflow {definition.code}",
                    instance_id=instance_id,
                    step_id=step.id,
                )
            if target.is_terminal:
                updated = self._conclude(instance, action)
            else:
                updated = _advance(instance, current_step_id=target.id)
                next_step = target

        await self._commit(entry, updated, instance.version)
        logger.info(
            f"Instance {instance_id}: {action!r} by {actor_id} at {step.code} -> "
            + (next_step.code if next_step else updated.status)
        )
        return ActionResult(instance=updated, entry=entry, next_step=next_step)


class WorkflowEngine:
    """Entry point used by request handlers and jobs.

    Wires the definition repository, lifecycle manager, audit log, parallel
    coordinator, authorization resolver and transition engine over a single
    persistence backend.
    """

    def __init__(
        self,
        repository: Optional[WorkflowRepository] = None,
        config: Optional[ApprovalflowConfig] = None,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        engine_conf = self.config.engine

        self.definitions = DefinitionRepository(self.repository)
        self.audit = AuditLog(self.repository)
        self.lifecycle = InstanceLifecycleManager(
            self.repository,
            self.definitions,
            allow_concurrent_instances=engine_conf.allow_concurrent_instances,
        )
        self.parallel = ParallelApprovalCoordinator(
            self.audit, approve_action=engine_conf.approve_action
        )
        self.authorization = AuthorizationResolver(
            self.lifecycle,
            self.definitions,
            self.parallel,
            approve_action=engine_conf.approve_action,
        )
        self.transitions = TransitionEngine(
            self.repository,
            self.lifecycle,
            self.definitions,
            self.audit,
            self.parallel,
            approve_action=engine_conf.approve_action,
            reject_action=engine_conf.reject_action,
        )

    # Definitions -------------------------------------------------------
    async def get_definition(self, definition_id: str) -> Optional[WorkflowDefinition]:
        return await self.definitions.get_definition(definition_id)

    async def get_definition_by_record_type(
        self, record_type: str, tenant_id: Optional[str] = None
    ) -> Optional[WorkflowDefinition]:
        return await self.definitions.get_definition_by_record_type(
            record_type, tenant_id=tenant_id
        )

    async def get_definition_by_code(
        self, code: str, tenant_id: Optional[str] = None
    ) -> Optional[WorkflowDefinition]:
        return await self.definitions.get_definition_by_code(code, tenant_id=tenant_id)

    # Instances ---------------------------------------------------------
    async def start(
        self,
        definition_id: str,
        record_id: str,
        record_table: str,
        started_by: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        return await self.lifecycle.start(
            definition_id, record_id, record_table, started_by, payload
        )

    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return await self.lifecycle.get_instance(instance_id)

    async def get_instance_by_record(
        self, record_id: str, record_table: str
    ) -> Optional[WorkflowInstance]:
        return await self.lifecycle.get_instance_by_record(record_id, record_table)

    async def list_instances(
        self, tenant_id: Optional[str] = None, status: Optional[str] = None
    ) -> List[WorkflowInstance]:
        return await self.lifecycle.list_instances(tenant_id=tenant_id, status=status)

    # Transitions -------------------------------------------------------
    async def execute_action(
        self,
        instance_id: str,
        action: str,
        actor_id: str,
        actor_name: Optional[str] = None,
        comment: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> ActionResult:
        return await self.transitions.execute_action(
            instance_id, action, actor_id, actor_name, comment, actor_role
        )

    async def get_current_step(self, instance_id: str) -> Optional[WorkflowStep]:
        return await self.transitions.current_step(instance_id)

    # History and authorization ----------------------------------------
    async def get_approval_history(self, instance_id: str) -> List[ApprovalHistory]:
        return await self.audit.list_for_instance(instance_id)

    async def check_parallel_approval(
        self, instance_id: str, step_id: str
    ) -> ParallelApprovalStatus:
        instance = await self.lifecycle.require_instance(instance_id)
        definition = await self.definitions.require(instance.workflow_id)
        step = definition.step_by_id(step_id)
        if step is None:
            raise StepNotFound(
                f"Step {step_id} not found in workflow {definition.code}",
                instance_id=instance_id,
                step_id=step_id,
            )
        return await self.parallel.check(instance_id, step)

    async def can_act_on_step(
        self, instance_id: str, user_role: Optional[str], user_id: str
    ) -> StepPermission:
        return await self.authorization.can_act_on_step(instance_id, user_role, user_id)

    async def get_progress(self, instance_id: str) -> List[StepProgress]:
        instance = await self.lifecycle.require_instance(instance_id)
        definition = await self.definitions.require(instance.workflow_id)
        history = await self.audit.list_for_instance(instance_id)
        return build_progress(
            definition, instance, history, reject_action=self.config.engine.reject_action
        )
