import pytest

from approvalflow.contracts import ApprovalHistory, WorkflowInstance
from approvalflow.persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    get_repository,
    reset_repository,
)
import approvalflow.persistence as persistence


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteWorkflowRepository(tmp_path / "wf.db")
    return InMemoryWorkflowRepository()


def _instance(definition, step, **kwargs):
    return WorkflowInstance(
        workflow_id=definition.id,
        tenant_id=definition.tenant_id,
        record_id=kwargs.pop("record_id", "doc-1"),
        record_table="documents",
        current_step_id=step.id,
        started_by="u-1",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_definition_roundtrip(repo, contract_definition):
    await repo.save_definition(contract_definition)

    loaded = await repo.get_definition(contract_definition.id)

    assert loaded == contract_definition
    managers = loaded.find_step("pending_managers")
    assert managers.assignee_roles == ["design_manager", "construction_manager"]
    assert managers.next_steps == {"approve": "approved"}
    assert (await repo.find_definition(code="contract_request_approval")).id == loaded.id
    assert (await repo.find_definition(target_table="contract_requests")).id == loaded.id
    assert await repo.find_definition(code="other") is None
    assert [d.id for d in await repo.list_definitions(tenant_id="t1")] == [loaded.id]
    assert await repo.list_definitions(tenant_id="t2") == []


@pytest.mark.asyncio
async def test_save_definition_replaces_steps(repo, linear_definition):
    await repo.save_definition(linear_definition)
    linear_definition.steps = linear_definition.steps[:2]
    linear_definition.is_active = False
    await repo.save_definition(linear_definition)

    loaded = await repo.get_definition(linear_definition.id)

    assert [s.code for s in loaded.steps] == ["draft", "review"]
    assert await repo.find_definition(code="document_review") is None
    assert await repo.find_definition(code="document_review", active_only=False)


@pytest.mark.asyncio
async def test_instance_and_history_roundtrip(repo, linear_definition):
    draft, review = linear_definition.steps[0], linear_definition.steps[1]
    instance = _instance(linear_definition, draft, data={"amount": 1200})
    await repo.create_instance(instance)

    assert await repo.get_instance(instance.id) == instance
    assert await repo.get_instance("missing") is None

    entry = ApprovalHistory(
        workflow_instance_id=instance.id,
        step_id=draft.id,
        action="submit",
        actor_id="u-1",
        actor_name="Author",
        actor_role="sales",
        comment="ready",
    )
    moved = instance.model_copy(update={"current_step_id": review.id, "version": 2})
    assert await repo.record_transition(entry, moved, expected_version=1)

    stored = await repo.get_instance(instance.id)
    assert stored.current_step_id == review.id
    assert stored.version == 2
    assert stored.data == {"amount": 1200}
    assert await repo.list_history(instance.id) == [entry]
    assert await repo.list_history(instance.id, step_id=review.id) == []
    assert await repo.list_history(instance.id, action="submit") == [entry]


@pytest.mark.asyncio
async def test_stale_transition_writes_nothing(repo, linear_definition):
    draft, review = linear_definition.steps[0], linear_definition.steps[1]
    instance = _instance(linear_definition, draft)
    await repo.create_instance(instance)
    entry = ApprovalHistory(
        workflow_instance_id=instance.id, step_id=draft.id, action="submit", actor_id="u-1"
    )
    moved = instance.model_copy(update={"current_step_id": review.id, "version": 2})

    assert not await repo.record_transition(entry, moved, expected_version=7)

    assert await repo.get_instance(instance.id) == instance
    assert await repo.list_history(instance.id) == []


@pytest.mark.asyncio
async def test_history_keeps_append_order(repo, linear_definition):
    draft = linear_definition.steps[0]
    instance = _instance(linear_definition, draft)
    await repo.create_instance(instance)
    for n in range(5):
        await repo.append_history(
            ApprovalHistory(
                workflow_instance_id=instance.id,
                step_id=draft.id,
                action=f"note-{n}",
                actor_id="u-1",
            )
        )

    history = await repo.list_history(instance.id)

    assert [h.action for h in history] == [f"note-{n}" for n in range(5)]


@pytest.mark.asyncio
async def test_latest_instance_and_listing(repo, linear_definition):
    draft = linear_definition.steps[0]
    older = _instance(linear_definition, draft)
    newer = _instance(linear_definition, draft)
    other = _instance(linear_definition, draft, record_id="doc-2")
    for inst in (older, newer, other):
        await repo.create_instance(inst)

    latest = await repo.find_latest_instance("doc-1", "documents")
    assert latest.id == newer.id
    assert await repo.find_latest_instance("doc-1", "documents", status="completed") is None
    assert len(await repo.list_instances()) == 3
    assert len(await repo.list_instances(tenant_id="t1", status="in_progress")) == 3


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("APPROVALFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("APPROVALFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setattr(persistence, "_repository_instance", None)

    repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}")
    assert isinstance(repo, SQLiteWorkflowRepository)
    assert repo.db_path == str(tmp_path / "wf.db")
    assert get_repository() is repo
    assert get_repository("sqlite://").db_path == ":memory:"

    with pytest.raises(ValueError):
        get_repository("mysql://nope")

    reset_repository()
    in_memory = get_repository()
    assert isinstance(in_memory, InMemoryWorkflowRepository)
    assert get_repository() is in_memory


@pytest.mark.asyncio
async def test_find_definition_scoped_by_tenant(repo, contract_definition):
    other = contract_definition.model_copy(deep=True)
    other.id = "def-b"
    other.tenant_id = "t2"
    for step in other.steps:
        step.id = f"b-{step.code}"
        step.workflow_id = other.id
    await repo.save_definition(contract_definition)
    await repo.save_definition(other)

    by_code = await repo.find_definition(code="contract_request_approval", tenant_id="t2")
    by_table = await repo.find_definition(target_table="contract_requests", tenant_id="t2")

    assert by_code.id == "def-b"
    assert by_table.id == "def-b"
    assert {s.id for s in by_code.steps} == {f"b-{s.code}" for s in other.steps}
    assert (await repo.find_definition(code="contract_request_approval", tenant_id="t1")).id == contract_definition.id
    assert await repo.find_definition(code="contract_request_approval", tenant_id="t3") is None
