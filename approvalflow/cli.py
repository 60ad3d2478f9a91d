"""Command line interface for inspecting and driving approval workflows."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from approvalflow import WorkflowEngine, get_repository
from approvalflow.config import load_config
from approvalflow.definitions import install_definitions, load_definitions
from approvalflow.errors import WorkflowError

app = typer.Typer(help="CLI for approvalflow workflows")

# Command groups
definition_app = typer.Typer(help="Commands for managing workflow definitions")
instance_app = typer.Typer(help="Commands for managing workflow instances")

app.add_typer(definition_app, name="definition")
app.add_typer(instance_app, name="instance")


def _engine() -> WorkflowEngine:
    return WorkflowEngine(repository=get_repository(), config=load_config())


def _fail(exc: WorkflowError) -> None:
    typer.secho(f"Error ({exc.code}): {exc}", fg=typer.colors.RED)
    raise typer.Exit(code=1)


@app.callback()
def main() -> None:
    """approvalflow CLI entry point."""
    pass


@definition_app.command("load")
def definition_load(path: Optional[Path] = typer.Argument(None)) -> None:
    """
    Validate and install workflow definitions from a YAML file.

    Without a path the configured ``definitions_path`` is loaded. Definitions
    without an explicit id get one derived from their code, so loading the
    same file twice replaces the earlier copy.

    Example:
        approvalflow definition load ./workflows/contract_requests.yaml
    """
    if path is None:
        configured = load_config().definitions_path
        if not configured:
            typer.secho("No path given and no definitions_path configured", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        path = Path(configured)
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        definitions = load_definitions(path)
    except WorkflowError as exc:
        _fail(exc)
    repo = get_repository()
    count = asyncio.run(install_definitions(repo, definitions))
    typer.echo(f"Installed {count} workflow definition(s)")
    for definition in definitions:
        typer.echo(f"{definition.id}\t{definition.code}\t{definition.target_table}")


@definition_app.command("list")
def definition_list(tenant: Optional[str] = None) -> None:
    """List installed workflow definitions."""
    repo = get_repository()
    definitions = asyncio.run(repo.list_definitions(tenant_id=tenant))
    if not definitions:
        typer.echo("No definitions found")
        return
    for d in definitions:
        state = "active" if d.is_active else "inactive"
        typer.echo(f"{d.id}\t{d.code}\t{d.target_table}\t{state}")


@definition_app.command("show")
def definition_show(
    code: str, tenant: Optional[str] = typer.Option(None, help="Owning tenant")
) -> None:
    """
    Show the steps and transitions of a definition.

    Example:
        approvalflow definition show contract_request_approval
        # Output: contract_request_approval (contract_requests)
        #         1. draft [approval, creator] submit->pending_leader
    """
    definition = asyncio.run(_engine().get_definition_by_code(code, tenant_id=tenant))
    if definition is None:
        typer.echo("Definition not found")
        raise typer.Exit(code=1)
    typer.echo(f"{definition.code} ({definition.target_table})")
    for position, step in enumerate(definition.steps, start=1):
        assignee = (
            ",".join(step.assignee_roles)
            if step.is_parallel
            else step.assignee_value or step.assignee_type
        )
        transitions = " ".join(
            f"{action}->{step.next_steps.get(action) or 'end'}" for action in step.actions
        )
        typer.echo(f"{position}. {step.code} [{step.step_type}, {assignee}] {transitions}")


@instance_app.command("start")
def instance_start(
    definition: str,
    record_id: str,
    table: Optional[str] = typer.Option(None, help="Record table (default: definition target)"),
    by: str = typer.Option(..., help="User starting the workflow"),
    payload: Optional[str] = typer.Option(None, help="JSON payload for the instance"),
    tenant: Optional[str] = typer.Option(None, help="Tenant owning the definition code"),
) -> None:
    """Start a workflow instance from a definition id or code."""
    data = None
    if payload:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            typer.secho(f"Invalid JSON payload: {exc}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        if not isinstance(data, dict):
            typer.secho("Payload must be a JSON object", fg=typer.colors.RED)
            raise typer.Exit(code=1)
    engine = _engine()

    async def _start():
        found = await engine.get_definition(definition)
        if found is None:
            found = await engine.get_definition_by_code(definition, tenant_id=tenant)
        if found is None:
            return None
        return await engine.start(
            found.id, record_id, table or found.target_table, by, data
        )

    try:
        instance = asyncio.run(_start())
    except WorkflowError as exc:
        _fail(exc)
    if instance is None:
        typer.echo("Definition not found")
        raise typer.Exit(code=1)
    typer.echo(f"Started instance {instance.id}")


@instance_app.command("list")
def instance_list(
    status: Optional[str] = None, tenant: Optional[str] = None
) -> None:
    """
    List workflow instances with their status.

    Example:
        approvalflow instance list --status in_progress
    """
    instances = asyncio.run(_engine().list_instances(tenant_id=tenant, status=status))
    if not instances:
        typer.echo("No instances found")
        return
    for inst in instances:
        typer.echo(f"{inst.id}\t{inst.record_table}/{inst.record_id}\t{inst.status}")


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """Show an instance, its current step and its history."""
    engine = _engine()
    inst = asyncio.run(engine.get_instance(instance_id))
    if inst is None:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    typer.echo(f"Instance {inst.id}: {inst.status}")
    typer.echo(f"Record: {inst.record_table}/{inst.record_id}")
    try:
        step = asyncio.run(engine.get_current_step(instance_id))
    except WorkflowError as exc:
        _fail(exc)
    if step is not None:
        typer.echo(f"Current step: {step.code} (actions: {', '.join(step.actions)})")
    if inst.data:
        typer.echo(f"Payload: {inst.data}")
    for entry in asyncio.run(engine.get_approval_history(instance_id)):
        typer.echo(f"- {entry.created_at:%Y-%m-%d %H:%M} {entry.action} by {entry.actor_id}")


@instance_app.command("act")
def instance_act(
    instance_id: str,
    action: str,
    actor: str = typer.Option(..., help="Acting user id"),
    role: Optional[str] = typer.Option(None, help="Role of the acting user"),
    name: Optional[str] = typer.Option(None, help="Display name of the acting user"),
    comment: Optional[str] = None,
) -> None:
    """
    Execute an action on an instance's current step.

    Example:
        approvalflow instance act 2f1c... approve --actor u-42 --role sales_leader
        # Output: approve accepted; now at pending_managers
    """
    try:
        result = asyncio.run(
            _engine().execute_action(instance_id, action, actor, name, comment, role)
        )
    except WorkflowError as exc:
        _fail(exc)
    if result.finished:
        typer.echo(f"{action} accepted; workflow {result.instance.status}")
    elif not result.advanced:
        typer.echo(f"{action} accepted; {result.next_step.code} awaits further approvals")
    else:
        typer.echo(f"{action} accepted; now at {result.next_step.code}")


@instance_app.command("history")
def instance_history(instance_id: str) -> None:
    """Print the approval history of an instance, oldest first."""
    entries = asyncio.run(_engine().get_approval_history(instance_id))
    if not entries:
        typer.echo("No history found")
        return
    for entry in entries:
        line = f"{entry.created_at.isoformat()}\t{entry.action}\t{entry.actor_name or entry.actor_id}"
        if entry.comment:
            line += f"\t{entry.comment}"
        typer.echo(line)


@instance_app.command("can-act")
def instance_can_act(
    instance_id: str,
    user: str = typer.Option(..., help="User id"),
    role: Optional[str] = typer.Option(None, help="Role of the user"),
) -> None:
    """Show whether a user may act on an instance's current step."""
    permission = asyncio.run(_engine().can_act_on_step(instance_id, role, user))
    if not permission.can_act:
        typer.echo("Not permitted")
        return
    typer.echo(f"Permitted actions: {', '.join(permission.available_actions)}")


@instance_app.command("progress")
def instance_progress(instance_id: str) -> None:
    """Show every step of an instance's workflow with its state."""
    try:
        progress = asyncio.run(_engine().get_progress(instance_id))
    except WorkflowError as exc:
        _fail(exc)
    for item in progress:
        typer.echo(f"{item.step.code}\t{item.state}\t{len(item.history)} action(s)")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
