"""approvalflow: configurable, role-gated approval workflows for business records."""

from .contracts import (
    ActionResult,
    ApprovalHistory,
    ParallelApprovalStatus,
    StepPermission,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStep,
)
from .definitions import load_definitions, validate_definition
from .engine import TransitionEngine, WorkflowEngine
from .errors import WorkflowError, WorkflowIntegrityError, WorkflowUserError
from .hooks import StatusSyncRegistry, execute_and_sync
from .persistence import get_repository

__version__ = "0.1.0"
__all__ = [
    "ActionResult",
    "ApprovalHistory",
    "ParallelApprovalStatus",
    "StepPermission",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowStep",
    "WorkflowEngine",
    "TransitionEngine",
    "WorkflowError",
    "WorkflowUserError",
    "WorkflowIntegrityError",
    "StatusSyncRegistry",
    "execute_and_sync",
    "get_repository",
    "load_definitions",
    "validate_definition",
]
