import pytest

from approvalflow.authorization import is_actor_permitted
from approvalflow.contracts import (
    ApprovalHistory,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStep,
)

ROLES = [
    "sales",
    "sales_leader",
    "sales_office",
    "design_manager",
    "construction_manager",
    "design",
    "admin",
]


def _instance(started_by="u-creator"):
    return WorkflowInstance(
        workflow_id="wf",
        record_id="r-1",
        record_table="records",
        current_step_id="s-1",
        started_by=started_by,
    )


def test_predicate_per_assignee_kind():
    instance = _instance()
    role_step = WorkflowStep(code="r", assignee_type="role", assignee_value="admin")
    user_step = WorkflowStep(code="u", assignee_type="user", assignee_value="u-7")
    creator_step = WorkflowStep(code="c", assignee_type="creator")

    assert is_actor_permitted(role_step, instance, "anyone", "admin")
    assert not is_actor_permitted(role_step, instance, "anyone", "sales")
    assert not is_actor_permitted(role_step, instance, "anyone", None)
    assert is_actor_permitted(user_step, instance, "u-7", None)
    assert not is_actor_permitted(user_step, instance, "u-8", "admin")
    assert is_actor_permitted(creator_step, instance, "u-creator", None)
    assert not is_actor_permitted(creator_step, instance, "u-other", "admin")
    assert not is_actor_permitted(creator_step, _instance(started_by=None), "u-creator", None)


def test_predicate_parallel_step_uses_history():
    step = WorkflowStep(
        id="s-par",
        code="p",
        step_type="parallel_approval",
        assignee_roles=["design_manager", "construction_manager"],
    )
    approved = ApprovalHistory(
        workflow_instance_id="i",
        step_id="s-par",
        action="approve",
        actor_id="u-d",
        actor_role="design_manager",
    )

    assert is_actor_permitted(step, _instance(), "u-d", "design_manager")
    assert not is_actor_permitted(step, _instance(), "u-d", "design_manager", [approved])
    assert is_actor_permitted(
        step, _instance(), "u-c", "construction_manager", [approved]
    )
    assert not is_actor_permitted(step, _instance(), "u-s", "sales")

    resubmitted = ApprovalHistory(
        workflow_instance_id="i", step_id="s-draft", action="submit", actor_id="u-creator"
    )
    assert is_actor_permitted(
        step, _instance(), "u-d", "design_manager", [approved, resubmitted]
    )


@pytest.mark.asyncio
async def test_role_step_only_configured_role_can_act(make_engine, linear_definition):
    engine = await make_engine(linear_definition)
    instance = await engine.start(linear_definition.id, "d-1", "documents", "u-author")
    await engine.execute_action(instance.id, "submit", "u-author")

    for role in ROLES:
        permission = await engine.can_act_on_step(instance.id, role, "u-x")
        assert not permission.can_act
        assert permission.available_actions == []

    permission = await engine.can_act_on_step(instance.id, "reviewer", "u-x")
    assert permission.can_act
    assert permission.available_actions == ["approve", "reject"]


@pytest.mark.asyncio
async def test_creator_and_user_steps(make_engine):
    definition = WorkflowDefinition(
        code="handover",
        target_table="handovers",
        steps=[
            WorkflowStep(
                code="prepare",
                assignee_type="creator",
                actions=["submit"],
                next_steps={"submit": "sign"},
                sort_order=1,
            ),
            WorkflowStep(
                code="sign",
                assignee_type="user",
                assignee_value="u-owner",
                actions=["sign"],
                sort_order=2,
            ),
        ],
    )
    engine = await make_engine(definition)
    instance = await engine.start(definition.id, "h-1", "handovers", "u-creator")

    assert (await engine.can_act_on_step(instance.id, "admin", "u-creator")).can_act
    assert not (await engine.can_act_on_step(instance.id, "admin", "u-owner")).can_act

    await engine.execute_action(instance.id, "submit", "u-creator")

    assert (await engine.can_act_on_step(instance.id, None, "u-owner")).can_act
    assert not (await engine.can_act_on_step(instance.id, "admin", "u-creator")).can_act


@pytest.mark.asyncio
async def test_parallel_step_not_offered_after_own_approval(
    make_engine, contract_definition
):
    engine = await make_engine(contract_definition)
    instance = await engine.start(
        contract_definition.id, "cr-1", "contract_requests", "u-sales"
    )
    await engine.execute_action(instance.id, "submit", "u-sales")
    await engine.execute_action(instance.id, "approve", "u-lead", actor_role="sales_leader")

    before = await engine.can_act_on_step(instance.id, "design_manager", "u-design")
    assert before.can_act
    assert before.available_actions == ["approve", "reject"]

    await engine.execute_action(
        instance.id, "approve", "u-design", actor_role="design_manager"
    )

    after = await engine.can_act_on_step(instance.id, "design_manager", "u-design")
    assert not after.can_act
    assert after.available_actions == []
    other = await engine.can_act_on_step(instance.id, "construction_manager", "u-build")
    assert other.can_act


@pytest.mark.asyncio
async def test_nobody_can_act_on_finished_or_missing_instance(
    make_engine, linear_definition
):
    engine = await make_engine(linear_definition)
    instance = await engine.start(linear_definition.id, "d-1", "documents", "u-author")
    await engine.execute_action(instance.id, "reject", "u-author")

    assert not (await engine.can_act_on_step(instance.id, "reviewer", "u-author")).can_act
    assert not (await engine.can_act_on_step("missing", "reviewer", "u-author")).can_act
