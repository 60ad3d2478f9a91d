"""Core data contracts for the approval workflow engine."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

StepType = Literal[
    "approval", "parallel_approval", "revision", "notify", "auto", "terminal"
]
AssigneeType = Literal["role", "user", "creator"]
InstanceStatus = Literal["in_progress", "completed", "rejected"]

IN_PROGRESS: InstanceStatus = "in_progress"
COMPLETED: InstanceStatus = "completed"
REJECTED: InstanceStatus = "rejected"

# Landing on one of these concludes the instance.
TERMINAL_STEP_TYPES = frozenset({"terminal", "notify"})


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decode_json(value: Any) -> Any:
    """Accept columns that arrive JSON-encoded from the backing store."""
    if isinstance(value, str):
        return json.loads(value)
    return value


class WorkflowStep(BaseModel):
    """One stage of a workflow definition."""

    id: str = Field(default_factory=_new_id)
    workflow_id: Optional[str] = None
    code: str
    name: str = ""
    step_type: StepType = "approval"
    assignee_type: AssigneeType = "role"
    assignee_value: Optional[str] = Field(
        default=None, description="Role name or user id, depending on assignee_type"
    )
    assignee_roles: List[str] = Field(
        default_factory=list, description="Required roles of a parallel step"
    )
    actions: List[str] = Field(default_factory=list)
    next_steps: Dict[str, str] = Field(
        default_factory=dict, description="Action name -> next step code"
    )
    sort_order: int = 0
    is_active: bool = True

    @field_validator("step_type", mode="before")
    @classmethod
    def _normalise_step_type(cls, v: Any) -> Any:
        return "approval" if v == "single_approval" else v

    @field_validator("actions", "assignee_roles", mode="before")
    @classmethod
    def _decode_list(cls, v: Any) -> Any:
        v = _decode_json(v)
        return [] if v is None else v

    @field_validator("next_steps", mode="before")
    @classmethod
    def _decode_mapping(cls, v: Any) -> Any:
        v = _decode_json(v)
        return {} if v is None else v

    @property
    def is_parallel(self) -> bool:
        return self.step_type == "parallel_approval"

    @property
    def is_terminal(self) -> bool:
        return self.step_type in TERMINAL_STEP_TYPES

    def allows(self, action: str) -> bool:
        """Return ``True`` if ``action`` is legal at this step."""
        return action in self.actions

    def next_step_code(self, action: str) -> Optional[str]:
        """Code of the step ``action`` leads to, or ``None`` if it terminates."""
        return self.next_steps.get(action) or None


class WorkflowDefinition(BaseModel):
    """Externally authored template governing one kind of business record."""

    id: str = Field(default_factory=_new_id)
    tenant_id: Optional[str] = None
    code: str
    name: str = ""
    description: Optional[str] = None
    target_table: str
    is_active: bool = True
    steps: List[WorkflowStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _bind_steps(self) -> "WorkflowDefinition":
        for step in self.steps:
            if step.workflow_id is None:
                step.workflow_id = self.id
        return self

    def active_steps(self) -> List[WorkflowStep]:
        """Active steps ordered by sort position."""
        return sorted(
            (s for s in self.steps if s.is_active), key=lambda s: s.sort_order
        )

    def first_step(self) -> Optional[WorkflowStep]:
        steps = self.active_steps()
        return steps[0] if steps else None

    def find_step(self, code: str) -> Optional[WorkflowStep]:
        """Resolve an active step by its code."""
        return next((s for s in self.active_steps() if s.code == code), None)

    def step_by_id(self, step_id: str) -> Optional[WorkflowStep]:
        """Resolve an active step by its id."""
        return next((s for s in self.active_steps() if s.id == step_id), None)


class WorkflowInstance(BaseModel):
    """One execution of a definition against a concrete business record."""

    id: str = Field(default_factory=_new_id)
    workflow_id: str
    tenant_id: Optional[str] = None
    record_id: str
    record_table: str
    current_step_id: Optional[str] = None
    status: InstanceStatus = IN_PROGRESS
    started_by: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    data: Optional[Dict[str, Any]] = None
    version: int = 1

    @field_validator("data", mode="before")
    @classmethod
    def _decode_data(cls, v: Any) -> Any:
        return _decode_json(v)

    @model_validator(mode="after")
    def _check_position(self) -> "WorkflowInstance":
        if (self.status == IN_PROGRESS) != (self.current_step_id is not None):
            raise ValueError(
                "an in-progress instance needs a current step and a "
                "terminal instance must not have one"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status != IN_PROGRESS


class ApprovalHistory(BaseModel):
    """Immutable record of one action executed against an instance."""

    id: str = Field(default_factory=_new_id)
    workflow_instance_id: str
    step_id: str
    action: str
    actor_id: str
    actor_name: Optional[str] = None
    actor_role: Optional[str] = None
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class ParallelApprovalStatus(BaseModel):
    """Completion state of a parallel approval step."""

    all_approved: bool
    approvers: List[str] = Field(default_factory=list)
    approved_roles: List[str] = Field(default_factory=list)
    missing_roles: List[str] = Field(default_factory=list)


class StepPermission(BaseModel):
    """What a user may do on an instance's current step."""

    can_act: bool = False
    available_actions: List[str] = Field(default_factory=list)


class ActionResult(BaseModel):
    """Outcome of an accepted action."""

    success: bool = True
    instance: WorkflowInstance
    entry: ApprovalHistory
    next_step: Optional[WorkflowStep] = None
    advanced: bool = Field(
        default=True, description="False while a parallel step awaits approvals"
    )

    @property
    def finished(self) -> bool:
        return self.instance.is_terminal


__all__ = [
    "StepType",
    "AssigneeType",
    "InstanceStatus",
    "IN_PROGRESS",
    "COMPLETED",
    "REJECTED",
    "TERMINAL_STEP_TYPES",
    "WorkflowStep",
    "WorkflowDefinition",
    "WorkflowInstance",
    "ApprovalHistory",
    "ParallelApprovalStatus",
    "StepPermission",
    "ActionResult",
    "utcnow",
]
