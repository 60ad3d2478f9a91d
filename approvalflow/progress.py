"""Per-step progress view of an instance, as shown on a record's status panel."""

from __future__ import annotations

from typing import List, Literal, Sequence

from pydantic import BaseModel, Field

from .contracts import (
    COMPLETED,
    ApprovalHistory,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStep,
)

StepState = Literal["pending", "current", "completed", "rejected"]


class StepProgress(BaseModel):
    step: WorkflowStep
    state: StepState = "pending"
    history: List[ApprovalHistory] = Field(default_factory=list)


def _state_for(
    step: WorkflowStep,
    instance: WorkflowInstance,
    entries: Sequence[ApprovalHistory],
    reject_action: str,
) -> StepState:
    if instance.status == COMPLETED:
        return "completed"
    if instance.current_step_id == step.id:
        return "current"
    if not entries:
        return "pending"
    # a step sent back and later passed again counts as completed
    if entries[-1].action == reject_action:
        return "rejected"
    return "completed"


def build_progress(
    definition: WorkflowDefinition,
    instance: WorkflowInstance,
    history: Sequence[ApprovalHistory],
    reject_action: str = "reject",
) -> List[StepProgress]:
    """Pair every active step of ``definition`` with its state and history."""
    progress = []
    for step in definition.active_steps():
        entries = [h for h in history if h.step_id == step.id]
        state = _state_for(step, instance, entries, reject_action)
        progress.append(StepProgress(step=step, state=state, history=entries))
    return progress
