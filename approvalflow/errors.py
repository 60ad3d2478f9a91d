"""Exception hierarchy raised by the approval engine."""

from __future__ import annotations

from typing import Optional


class WorkflowError(Exception):
    """Base class for workflow errors.

    ``code`` is a stable identifier callers can use to report the failure
    without parsing the message.
    """

    code = "workflow_error"

    def __init__(self, message: str, **context: Optional[str]) -> None:
        super().__init__(message)
        self.context = {k: v for k, v in context.items() if v is not None}


class WorkflowUserError(WorkflowError):
    """Recoverable caller error. No state was changed."""


class WorkflowIntegrityError(WorkflowError):
    """A workflow definition or instance is misconfigured or corrupted."""


class DefinitionNotFound(WorkflowUserError):
    code = "definition_not_found"


class DefinitionInactive(WorkflowUserError):
    code = "definition_inactive"


class DefinitionHasNoSteps(WorkflowUserError):
    code = "definition_has_no_steps"


class InstanceNotFound(WorkflowUserError):
    code = "instance_not_found"


class InstanceTerminal(WorkflowUserError):
    code = "instance_terminal"


class ActionNotAllowed(WorkflowUserError):
    code = "action_not_allowed"


class Unauthorized(WorkflowUserError):
    code = "unauthorized"


class ConcurrentInstanceExists(WorkflowUserError):
    code = "concurrent_instance_exists"


class ConcurrentModification(WorkflowUserError):
    """Another action was applied to the instance since it was read."""

    code = "concurrent_modification"


class StepNotFound(WorkflowIntegrityError):
    code = "step_not_found"


class NextStepNotFound(WorkflowIntegrityError):
    code = "next_step_not_found"


class InvalidDefinition(WorkflowIntegrityError):
    code = "invalid_definition"


__all__ = [
    "WorkflowError",
    "WorkflowUserError",
    "WorkflowIntegrityError",
    "DefinitionNotFound",
    "DefinitionInactive",
    "DefinitionHasNoSteps",
    "InstanceNotFound",
    "InstanceTerminal",
    "ActionNotAllowed",
    "Unauthorized",
    "ConcurrentInstanceExists",
    "ConcurrentModification",
    "StepNotFound",
    "NextStepNotFound",
    "InvalidDefinition",
]
