"""Completion tracking for steps that need several independent approvals."""

from __future__ import annotations

from typing import Iterable, List

from .audit import AuditLog
from .contracts import ApprovalHistory, ParallelApprovalStatus, WorkflowStep


def current_visit(
    step: WorkflowStep, history: Iterable[ApprovalHistory]
) -> List[ApprovalHistory]:
    """Entries written on ``step`` since the instance last entered it.

    ``history`` is an instance's history in creation order. Any entry on a
    different step means the instance was elsewhere, so everything recorded
    on ``step`` before it belongs to an earlier visit.
    """
    visit: List[ApprovalHistory] = []
    for entry in history:
        if entry.step_id != step.id:
            visit = []
        else:
            visit.append(entry)
    return visit


def evaluate(
    step: WorkflowStep,
    entries: Iterable[ApprovalHistory],
    approve_action: str = "approve",
) -> ParallelApprovalStatus:
    """Work out whether every required role of ``step`` has approved.

    Only approvals from the current visit to the step count, each actor is
    counted once, and its role is the one stored on the history entry when
    it was written.
    """
    approvers: list[str] = []
    roles: set[str] = set()
    for entry in current_visit(step, entries):
        if entry.action != approve_action or entry.actor_id in approvers:
            continue
        approvers.append(entry.actor_id)
        if entry.actor_role:
            roles.add(entry.actor_role)

    approved = [r for r in step.assignee_roles if r in roles]
    missing = [r for r in step.assignee_roles if r not in roles]
    return ParallelApprovalStatus(
        all_approved=not missing,
        approvers=approvers,
        approved_roles=approved,
        missing_roles=missing,
    )


class ParallelApprovalCoordinator:
    """Reads the audit log to decide if a parallel step is complete."""

    def __init__(self, audit: AuditLog, approve_action: str = "approve") -> None:
        self._audit = audit
        self._approve_action = approve_action

    async def approvals(
        self, instance_id: str, step: WorkflowStep
    ) -> List[ApprovalHistory]:
        """Approvals given on ``step`` since the instance last entered it."""
        history = await self._audit.list_for_instance(instance_id)
        return [
            h for h in current_visit(step, history) if h.action == self._approve_action
        ]

    async def check(
        self, instance_id: str, step: WorkflowStep
    ) -> ParallelApprovalStatus:
        entries = await self.approvals(instance_id, step)
        return evaluate(step, entries, self._approve_action)
