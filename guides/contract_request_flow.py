"""Walk a contract request through its approval workflow."""

import asyncio
from pathlib import Path

from approvalflow import StatusSyncRegistry, WorkflowEngine, execute_and_sync
from approvalflow.definitions import install_definitions, load_definitions
from approvalflow.hooks import contract_request_status, start_contract_request_workflow
from approvalflow.persistence import InMemoryWorkflowRepository

CONTRACT_REQUESTS = {"cr-001": {"status": "draft"}}


async def sync_contract_request(instance, step):
    status = contract_request_status(instance, step)
    if status is not None:
        CONTRACT_REQUESTS[instance.record_id]["status"] = status
        print(f"   contract request {instance.record_id} -> {status}")


async def main():
    """Submit, review and approve one contract request."""
    repository = InMemoryWorkflowRepository()
    definitions = load_definitions(Path(__file__).with_name("contract_request_approval.yaml"))
    await install_definitions(repository, definitions)

    engine = WorkflowEngine(repository=repository)
    registry = StatusSyncRegistry()
    registry.register("contract_requests", sync_contract_request)

    instance = await start_contract_request_workflow(engine, "cr-001", started_by="u-sales")
    print(f"Started instance {instance.id}")

    actions = [
        ("submit", "u-sales", "sales"),
        ("approve", "u-leader", "sales_leader"),
        ("approve", "u-design", "design_manager"),
        ("approve", "u-build", "construction_manager"),
    ]
    for action, actor, role in actions:
        permission = await engine.can_act_on_step(instance.id, role, actor)
        print(f"{actor} ({role}) may {permission.available_actions}")
        await execute_and_sync(
            engine, registry, instance.id, action, actor, actor_role=role
        )

    for entry in await engine.get_approval_history(instance.id):
        print(f"- {entry.action} by {entry.actor_id} ({entry.actor_role})")
    print(f"Final status: {CONTRACT_REQUESTS['cr-001']['status']}")


if __name__ == "__main__":
    asyncio.run(main())
