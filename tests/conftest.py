"""Shared workflow definitions and engine factory for the test-suite."""

import pytest

from approvalflow import WorkflowEngine
from approvalflow.config import ApprovalflowConfig, EngineConfig
from approvalflow.contracts import WorkflowDefinition, WorkflowStep
from approvalflow.persistence import InMemoryWorkflowRepository


def build_linear_definition(**overrides) -> WorkflowDefinition:
    """draft --submit--> review --approve--> done."""
    data = dict(
        code="document_review",
        name="Document review",
        tenant_id="t1",
        target_table="documents",
        steps=[
            WorkflowStep(
                code="draft",
                assignee_type="creator",
                actions=["submit", "reject"],
                next_steps={"submit": "review"},
                sort_order=1,
            ),
            WorkflowStep(
                code="review",
                assignee_type="role",
                assignee_value="reviewer",
                actions=["approve", "reject"],
                next_steps={"approve": "done"},
                sort_order=2,
            ),
            WorkflowStep(code="done", step_type="terminal", sort_order=3),
        ],
    )
    data.update(overrides)
    return WorkflowDefinition(**data)


def build_contract_definition(tenant_id: str = "t1") -> WorkflowDefinition:
    """The contract request approval flow with a parallel manager step."""
    return WorkflowDefinition(
        code="contract_request_approval",
        name="Contract request approval",
        tenant_id=tenant_id,
        target_table="contract_requests",
        steps=[
            WorkflowStep(
                code="draft",
                assignee_type="creator",
                actions=["submit", "reject"],
                next_steps={"submit": "pending_leader"},
                sort_order=1,
            ),
            WorkflowStep(
                code="pending_leader",
                assignee_type="role",
                assignee_value="sales_leader",
                actions=["approve", "reject"],
                next_steps={"approve": "pending_managers"},
                sort_order=2,
            ),
            WorkflowStep(
                code="pending_managers",
                step_type="parallel_approval",
                assignee_roles=["design_manager", "construction_manager"],
                actions=["approve", "reject"],
                next_steps={"approve": "approved"},
                sort_order=3,
            ),
            WorkflowStep(code="approved", step_type="terminal", sort_order=4),
        ],
    )


@pytest.fixture
def linear_definition() -> WorkflowDefinition:
    return build_linear_definition()


@pytest.fixture
def contract_definition() -> WorkflowDefinition:
    return build_contract_definition()


@pytest.fixture
def make_engine():
    """Return a coroutine building an engine over the given definitions."""

    async def _make(*definitions, repository=None, **engine_options) -> WorkflowEngine:
        repository = repository or InMemoryWorkflowRepository()
        for definition in definitions:
            await repository.save_definition(definition)
        config = ApprovalflowConfig(engine=EngineConfig(**engine_options))
        return WorkflowEngine(repository=repository, config=config)

    return _make


@pytest.fixture
def linear_definition_factory():
    return build_linear_definition


@pytest.fixture
def contract_definition_factory():
    return build_contract_definition
