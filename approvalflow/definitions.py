"""Read access to workflow definitions and loading of definition files."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Any, Iterable, List, Optional

import yaml
from pydantic import ValidationError

from .contracts import WorkflowDefinition
from .errors import DefinitionNotFound, InvalidDefinition
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)

_ID_NAMESPACE = uuid.UUID("5b0f3c1e-7d4a-4f3e-9a52-2f1d8e6c9b70")


def _only_active_steps(definition: WorkflowDefinition) -> WorkflowDefinition:
    return definition.model_copy(update={"steps": definition.active_steps()})


class DefinitionRepository:
    """Read-only view over externally authored workflow definitions.

    Every definition returned here carries only its active steps, ordered by
    sort position. Storage errors propagate unchanged.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def get_definition(self, definition_id: str) -> Optional[WorkflowDefinition]:
        definition = await self._repository.get_definition(definition_id)
        return _only_active_steps(definition) if definition else None

    async def get_definition_by_record_type(
        self, record_type: str, tenant_id: Optional[str] = None
    ) -> Optional[WorkflowDefinition]:
        """Active definition governing records of ``record_type``.

        Pass ``tenant_id`` whenever several tenants may define a workflow for
        the same record type.
        """
        definition = await self._repository.find_definition(
            target_table=record_type, tenant_id=tenant_id
        )
        return _only_active_steps(definition) if definition else None

    async def get_definition_by_code(
        self, code: str, tenant_id: Optional[str] = None
    ) -> Optional[WorkflowDefinition]:
        """Active definition with business code ``code``, optionally per tenant."""
        definition = await self._repository.find_definition(code=code, tenant_id=tenant_id)
        return _only_active_steps(definition) if definition else None

    async def require(self, definition_id: str) -> WorkflowDefinition:
        definition = await self.get_definition(definition_id)
        if definition is None:
            raise DefinitionNotFound(
                f"Workflow definition {definition_id} not found",
                definition_id=definition_id,
            )
        return definition


def validate_definition(definition: WorkflowDefinition) -> None:
    """Check that a definition's transition maps are internally consistent.

    Raises:
        InvalidDefinition: listing every problem found.
    """
    problems: List[str] = []
    steps = definition.active_steps()
    codes = [s.code for s in steps]
    duplicates = sorted({c for c in codes if codes.count(c) > 1})
    if duplicates:
        problems.append(f"duplicate step codes: {', '.join(duplicates)}")

    for step in steps:
        for action, target in step.next_steps.items():
            if action not in step.actions:
                problems.append(
                    f"step {step.code}: transition for undeclared action {action!r}"
                )
            if target and target not in codes:
                problems.append(
                    f"step {step.code}: action {action!r} leads to unknown step {target!r}"
                )
        if step.is_parallel and not step.assignee_roles:
            problems.append(f"step {step.code}: parallel step without required roles")
        if step.assignee_type in ("role", "user") and not step.is_parallel:
            if not step.assignee_value and not step.is_terminal:
                problems.append(
                    f"step {step.code}: {step.assignee_type} assignee without a value"
                )

    if problems:
        raise InvalidDefinition(
            f"Workflow definition {definition.code} is invalid: " + "; ".join(problems),
            definition_id=definition.id,
        )


def _stable_id(*parts: Any) -> str:
    return str(uuid.uuid5(_ID_NAMESPACE, ":".join("" if p is None else str(p) for p in parts)))


def _build_definition(data: Any, position: int) -> WorkflowDefinition:
    if not isinstance(data, dict):
        raise InvalidDefinition(f"Definition #{position} must be a mapping")
    data = dict(data)
    if not isinstance(data.get("steps") or [], list):
        raise InvalidDefinition(f"Definition #{position}: steps must be a list")
    data.setdefault("id", _stable_id(data.get("tenant_id"), data.get("code")))
    steps = []
    for order, raw_step in enumerate(data.get("steps") or []):
        if not isinstance(raw_step, dict):
            raise InvalidDefinition(
                f"Definition #{position}: step #{order} must be a mapping"
            )
        step = dict(raw_step)
        step.setdefault("sort_order", order)
        step.setdefault("id", _stable_id(data["id"], step.get("code")))
        steps.append(step)
    data["steps"] = steps
    try:
        return WorkflowDefinition.model_validate(data)
    except ValidationError as exc:
        raise InvalidDefinition(
            f"Definition #{position} ({data.get('code')}) is malformed: {exc}"
        ) from exc


def parse_definitions(document: Any) -> List[WorkflowDefinition]:
    """Build definitions from a parsed YAML document.

    The document may be a list of definitions or a mapping holding one under
    ``definitions``. Definitions and steps without an explicit ``id`` get one
    derived from their codes, so reloading a file replaces earlier copies.
    """
    if document is None:
        return []
    if isinstance(document, dict):
        document = document.get("definitions", [])
    if not isinstance(document, list):
        raise InvalidDefinition("Definition document must be a list of definitions")
    definitions = [_build_definition(item, n) for n, item in enumerate(document)]
    for definition in definitions:
        validate_definition(definition)
    return definitions


def load_definitions(path: str | Path) -> List[WorkflowDefinition]:
    """Parse and validate the workflow definitions stored in a YAML file."""
    with open(path) as f:
        try:
            document = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise InvalidDefinition(f"Cannot parse definition file {path}: {exc}") from exc
    definitions = parse_definitions(document)
    logger.info(f"Loaded {len(definitions)} workflow definition(s) from {path}")
    return definitions


async def install_definitions(
    repository: WorkflowRepository, definitions: Iterable[WorkflowDefinition]
) -> int:
    """Store ``definitions`` in ``repository``; returns how many were saved."""
    count = 0
    for definition in definitions:
        await repository.save_definition(definition)
        count += 1
    return count


__all__ = [
    "DefinitionRepository",
    "validate_definition",
    "parse_definitions",
    "load_definitions",
    "install_definitions",
]
