import pytest

from approvalflow.contracts import ApprovalHistory, WorkflowDefinition, WorkflowStep
from approvalflow.errors import Unauthorized
from approvalflow.parallel import current_visit, evaluate


def _entry(actor, role, action="approve", step_id="s-par"):
    return ApprovalHistory(
        workflow_instance_id="i-1",
        step_id=step_id,
        action=action,
        actor_id=actor,
        actor_role=role,
    )


def _parallel_step():
    return WorkflowStep(
        id="s-par",
        code="managers",
        step_type="parallel_approval",
        assignee_roles=["A", "B"],
        actions=["approve", "reject"],
    )


def test_evaluate_counts_each_actor_once():
    step = _parallel_step()
    status = evaluate(step, [_entry("u-a", "A"), _entry("u-a", "A")])

    assert status.approvers == ["u-a"]
    assert status.approved_roles == ["A"]
    assert status.missing_roles == ["B"]
    assert not status.all_approved


def test_evaluate_ignores_other_steps_and_actions():
    step = _parallel_step()
    entries = [
        _entry("u-c", "B", step_id="other"),
        _entry("u-a", "A"),
        _entry("u-b", "B", action="reject"),
    ]

    status = evaluate(step, entries)

    assert status.approvers == ["u-a"]
    assert not status.all_approved


def test_evaluate_all_roles_present():
    status = evaluate(_parallel_step(), [_entry("u-b", "B"), _entry("u-a", "A")])

    assert status.all_approved
    assert status.approvers == ["u-b", "u-a"]
    assert status.approved_roles == ["A", "B"]


def test_current_visit_starts_after_last_entry_elsewhere():
    step = _parallel_step()
    history = [
        _entry("u-a", "A"),
        _entry("u-b", "B", action="send_back"),
        _entry("u-1", None, action="submit", step_id="draft"),
        _entry("u-b", "B"),
    ]

    assert [h.actor_id for h in current_visit(step, history)] == ["u-b"]
    assert current_visit(step, history[:3]) == []

    status = evaluate(step, history)
    assert status.approvers == ["u-b"]
    assert status.missing_roles == ["A"]
    assert not status.all_approved


async def _at_managers(make_engine, contract_definition):
    engine = await make_engine(contract_definition)
    instance = await engine.start(
        contract_definition.id, "cr-1", "contract_requests", "u-sales"
    )
    await engine.execute_action(instance.id, "submit", "u-sales")
    await engine.execute_action(
        instance.id, "approve", "u-lead", actor_role="sales_leader"
    )
    step = await engine.get_current_step(instance.id)
    assert step.code == "pending_managers"
    return engine, instance, step


@pytest.mark.asyncio
async def test_parallel_step_waits_for_every_role(make_engine, contract_definition):
    engine, instance, step = await _at_managers(make_engine, contract_definition)

    result = await engine.execute_action(
        instance.id, "approve", "u-design", actor_role="design_manager"
    )
    assert not result.advanced
    assert result.next_step.id == step.id
    assert (await engine.get_current_step(instance.id)).id == step.id

    status = await engine.check_parallel_approval(instance.id, step.id)
    assert not status.all_approved
    assert status.approvers == ["u-design"]
    assert status.missing_roles == ["construction_manager"]

    result = await engine.execute_action(
        instance.id, "approve", "u-build", actor_role="construction_manager"
    )
    assert result.advanced
    assert result.instance.status == "completed"

    status = await engine.check_parallel_approval(instance.id, step.id)
    assert status.all_approved
    assert status.approvers == ["u-design", "u-build"]


@pytest.mark.asyncio
async def test_repeat_approval_by_same_actor_is_refused(make_engine, contract_definition):
    engine, instance, step = await _at_managers(make_engine, contract_definition)
    await engine.execute_action(
        instance.id, "approve", "u-design", actor_role="design_manager"
    )

    with pytest.raises(Unauthorized):
        await engine.execute_action(
            instance.id, "approve", "u-design", actor_role="design_manager"
        )

    status = await engine.check_parallel_approval(instance.id, step.id)
    assert status.approvers == ["u-design"]
    assert len(await engine.get_approval_history(instance.id)) == 3


@pytest.mark.asyncio
async def test_second_member_of_same_role_does_not_complete(
    make_engine, contract_definition
):
    engine, instance, step = await _at_managers(make_engine, contract_definition)
    await engine.execute_action(
        instance.id, "approve", "u-design-1", actor_role="design_manager"
    )
    result = await engine.execute_action(
        instance.id, "approve", "u-design-2", actor_role="design_manager"
    )

    assert not result.advanced
    status = await engine.check_parallel_approval(instance.id, step.id)
    assert status.approvers == ["u-design-1", "u-design-2"]
    assert not status.all_approved


@pytest.mark.asyncio
async def test_reject_on_parallel_step_ends_workflow(make_engine, contract_definition):
    engine, instance, _ = await _at_managers(make_engine, contract_definition)
    await engine.execute_action(
        instance.id, "approve", "u-design", actor_role="design_manager"
    )

    result = await engine.execute_action(
        instance.id, "reject", "u-build", "Builder", "budget", actor_role="construction_manager"
    )

    assert result.instance.status == "rejected"
    assert result.instance.current_step_id is None


@pytest.mark.asyncio
async def test_role_outside_required_set_is_refused(make_engine, contract_definition):
    engine, instance, _ = await _at_managers(make_engine, contract_definition)

    with pytest.raises(Unauthorized):
        await engine.execute_action(instance.id, "approve", "u-lead", actor_role="sales_leader")


def _send_back_definition():
    """draft --submit--> managers (A and B) --send_back--> draft."""
    return WorkflowDefinition(
        code="send_back_review",
        tenant_id="t1",
        target_table="documents",
        steps=[
            WorkflowStep(
                code="draft",
                assignee_type="creator",
                actions=["submit"],
                next_steps={"submit": "managers"},
                sort_order=1,
            ),
            WorkflowStep(
                code="managers",
                step_type="parallel_approval",
                assignee_roles=["A", "B"],
                actions=["approve", "send_back"],
                next_steps={"approve": "done", "send_back": "draft"},
                sort_order=2,
            ),
            WorkflowStep(code="done", step_type="terminal", sort_order=3),
        ],
    )


@pytest.mark.asyncio
async def test_approvals_reset_when_step_is_entered_again(make_engine):
    definition = _send_back_definition()
    engine = await make_engine(definition)
    instance = await engine.start(definition.id, "doc-1", "documents", "u-author")
    managers = definition.find_step("managers")

    await engine.execute_action(instance.id, "submit", "u-author")
    await engine.execute_action(instance.id, "approve", "u-a", actor_role="A")
    sent_back = await engine.execute_action(
        instance.id, "send_back", "u-b", comment="fix terms", actor_role="B"
    )
    assert sent_back.next_step.code == "draft"
    await engine.execute_action(instance.id, "submit", "u-author")

    status = await engine.check_parallel_approval(instance.id, managers.id)
    assert status.approvers == []
    assert status.missing_roles == ["A", "B"]
    permission = await engine.can_act_on_step(instance.id, "A", "u-a")
    assert permission.can_act
    assert permission.available_actions == ["approve", "send_back"]

    result = await engine.execute_action(instance.id, "approve", "u-b", actor_role="B")
    assert not result.advanced
    assert result.instance.status == "in_progress"
    assert result.next_step.id == managers.id

    result = await engine.execute_action(instance.id, "approve", "u-a", actor_role="A")
    assert result.advanced
    assert result.instance.status == "completed"
    status = await engine.check_parallel_approval(instance.id, managers.id)
    assert status.approvers == ["u-b", "u-a"]
    assert len(await engine.get_approval_history(instance.id)) == 7
