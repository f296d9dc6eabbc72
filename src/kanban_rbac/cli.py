"""Command-line interface for roles, permission checks, workspaces, members and activity."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kanban_rbac.auth.guards import ForbiddenError
from kanban_rbac.auth.jwt import TokenExpiredError, TokenInvalidError, jwt_secret, verify_token
from kanban_rbac.auth.permissions import PermissionEvaluator
from kanban_rbac.auth.roles import Role
from kanban_rbac.config import Config
from kanban_rbac.core.members import MemberService
from kanban_rbac.events.bus import EventBus
from kanban_rbac.storage.membership_store import MembershipStore

T = TypeVar("T")

ROLE_CHOICE = click.Choice([r.value for r in Role])


def _fail(message: object) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _evaluator(ctx: click.Context) -> PermissionEvaluator:
    """The evaluator for the configured role table, loaded once per invocation."""
    if "evaluator" not in ctx.obj:
        config: Config = ctx.obj["config"]
        try:
            ctx.obj["evaluator"] = PermissionEvaluator(config.load_role_table())
        except (OSError, ValueError, yaml.YAMLError) as e:
            _fail(f"Could not load permissions file: {e}")
    return ctx.obj["evaluator"]


def _run_with_service(ctx: click.Context, fn: Callable[[MemberService], Awaitable[T]]) -> T:
    """Open the members database, run fn against a MemberService, and close it."""
    config: Config = ctx.obj["config"]
    evaluator = _evaluator(ctx)

    async def _run() -> T:
        store = MembershipStore(config.members_db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            service = MemberService(
                store, EventBus(history_size=config.activity_history), evaluator
            )
            return await fn(service)
        finally:
            await store.close()

    try:
        return asyncio.run(_run())
    except (ForbiddenError, LookupError, ValueError) as e:
        _fail(e)


def _actor(as_user: str | None, token: str | None) -> str:
    """The acting user: --as, or the subject of a verified --token."""
    if token:
        try:
            return verify_token(token, jwt_secret())["sub"]
        except (TokenExpiredError, TokenInvalidError) as e:
            click.echo(f"Authentication failed: {e}", err=True)
            sys.exit(1)
    if as_user:
        return as_user
    _fail("pass --as USER or --token TOKEN")


def actor_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    fn = click.option("--token", default=None, help="JWT identifying the acting user")(fn)
    fn = click.option("--as", "as_user", default=None, help="Acting user ID")(fn)
    return fn


@click.group()
@click.version_option(package_name="kanban-rbac")
@click.option(
    "--data-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Data directory (default ~/.kanban-rbac)",
)
@click.option("--log-level", default=None, help="Logging level (default from config)")
@click.pass_context
def main(ctx: click.Context, data_path: Path | None, log_level: str | None) -> None:
    """Workspace roles and permissions for kanban boards."""
    try:
        config = Config.load(data_path.expanduser().resolve() if data_path else None)
    except (OSError, ValueError, yaml.YAMLError) as e:
        _fail(f"Could not load config: {e}")
    if log_level:
        config.log_level = log_level
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"config": config}


@main.command()
@click.pass_context
def roles(ctx: click.Context) -> None:
    """Show the role hierarchy."""
    evaluator = _evaluator(ctx)
    table = Table(title="Roles")
    table.add_column("Rank", justify="right")
    table.add_column("Role")
    table.add_column("Capabilities", justify="right")
    table.add_column("Can assign")

    hierarchy = evaluator.hierarchy
    for i, role in enumerate(hierarchy):
        assignable = ", ".join(r.value for r in evaluator.assignable_roles(role)) or "-"
        table.add_row(
            str(len(hierarchy) - i),
            role.value,
            str(len(evaluator.get_role_permissions(role))),
            assignable,
        )
    Console().print(table)


@main.command()
@click.argument("role", type=ROLE_CHOICE)
@click.pass_context
def permissions(ctx: click.Context, role: str) -> None:
    """List the capabilities granted to ROLE."""
    evaluator = _evaluator(ctx)
    capabilities = sorted(evaluator.get_role_permissions(role))
    if not capabilities:
        click.echo(f"{role} has no capabilities")
        return
    for capability in capabilities:
        click.echo(capability)


@main.command()
@click.argument("role")
@click.argument("capability")
@click.pass_context
def check(ctx: click.Context, role: str, capability: str) -> None:
    """Check whether ROLE has CAPABILITY. Exits 1 when denied."""
    allowed = _evaluator(ctx).has_permission(role, capability)
    click.echo(f"{'allowed' if allowed else 'denied'}: {role} {capability}")
    if not allowed:
        sys.exit(1)


@main.command("can-modify")
@click.argument("actor")
@click.argument("current")
@click.argument("new")
@click.pass_context
def can_modify(ctx: click.Context, actor: str, current: str, new: str) -> None:
    """Check whether ACTOR may change a CURRENT member to NEW. Exits 1 when denied."""
    allowed = _evaluator(ctx).can_modify_role(actor, current, new)
    click.echo(f"{'allowed' if allowed else 'denied'}: {actor} changes {current} -> {new}")
    if not allowed:
        sys.exit(1)


@main.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize the data directory and members database."""
    config: Config = ctx.obj["config"]

    async def _init() -> None:
        store = MembershipStore(config.members_db_path, wal_mode=config.wal_mode)
        await store.initialize()
        await store.close()

    asyncio.run(_init())
    config.save()
    click.echo(f"Initialized data directory at {config.data_path}")
    click.echo(f"Database: {config.members_db_path}")


@main.group()
def workspace() -> None:
    """Manage workspaces."""


@workspace.command("create")
@click.argument("name")
@click.option("--owner", required=True, help="User ID of the workspace owner")
@click.pass_context
def workspace_create(ctx: click.Context, name: str, owner: str) -> None:
    """Create a workspace owned by --owner."""
    created = _run_with_service(ctx, lambda s: s.create_workspace(name=name, owner_id=owner))
    Console().print(
        Panel(
            f"[green]✓[/green] Workspace created: {created.name}\n"
            f"ID: {created.id}\n"
            f"Owner: {created.owner_id}",
            title="Workspace Created",
        )
    )


@workspace.command("list")
@click.option("--user", default=None, help="Only workspaces this user belongs to")
@click.pass_context
def workspace_list(ctx: click.Context, user: str | None) -> None:
    """List workspaces."""
    config: Config = ctx.obj["config"]

    async def _list() -> list[dict[str, Any]]:
        store = MembershipStore(config.members_db_path, wal_mode=config.wal_mode)
        await store.initialize()
        try:
            return await store.list_workspaces(user_id=user)
        finally:
            await store.close()

    rows = asyncio.run(_list())
    table = Table(title="Workspaces")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Owner")
    for row in rows:
        table.add_row(row["workspace_id"], row["name"], row["owner_id"])
    Console().print(table)


@main.group()
def member() -> None:
    """Manage workspace members."""


@member.command("list")
@click.argument("workspace_id")
@click.option("--json", "as_json", is_flag=True, help="Print members as JSON")
@actor_options
@click.pass_context
def member_list(
    ctx: click.Context,
    workspace_id: str,
    as_json: bool,
    as_user: str | None,
    token: str | None,
) -> None:
    """List members of WORKSPACE_ID."""
    actor = _actor(as_user, token)
    members = _run_with_service(
        ctx, lambda s: s.list_members(workspace_id=workspace_id, actor_id=actor)
    )
    if as_json:
        click.echo(json.dumps([m.to_response() for m in members], indent=2))
        return

    table = Table(title=f"Members of {workspace_id}")
    table.add_column("User")
    table.add_column("Role")
    table.add_column("Invited by")
    for m in members:
        table.add_row(m.user_id, m.role.value, m.invited_by or "-")
    Console().print(table)


@member.command("invite")
@click.argument("workspace_id")
@click.argument("user_id")
@click.option("--role", type=ROLE_CHOICE, default=Role.MEMBER.value, show_default=True)
@actor_options
@click.pass_context
def member_invite(
    ctx: click.Context,
    workspace_id: str,
    user_id: str,
    role: str,
    as_user: str | None,
    token: str | None,
) -> None:
    """Invite USER_ID to WORKSPACE_ID."""
    actor = _actor(as_user, token)
    invited = _run_with_service(
        ctx,
        lambda s: s.invite_member(
            workspace_id=workspace_id, actor_id=actor, user_id=user_id, role=role
        ),
    )
    click.echo(f"Invited {invited.user_id} as {invited.role.value}")


@member.command("set-role")
@click.argument("workspace_id")
@click.argument("user_id")
@click.argument("role", type=ROLE_CHOICE)
@actor_options
@click.pass_context
def member_set_role(
    ctx: click.Context,
    workspace_id: str,
    user_id: str,
    role: str,
    as_user: str | None,
    token: str | None,
) -> None:
    """Change the role of USER_ID in WORKSPACE_ID."""
    actor = _actor(as_user, token)
    updated = _run_with_service(
        ctx,
        lambda s: s.change_role(
            workspace_id=workspace_id, actor_id=actor, user_id=user_id, new_role=role
        ),
    )
    click.echo(f"{updated.user_id} is now {updated.role.value}")


@member.command("remove")
@click.argument("workspace_id")
@click.argument("user_id")
@actor_options
@click.pass_context
def member_remove(
    ctx: click.Context, workspace_id: str, user_id: str, as_user: str | None, token: str | None
) -> None:
    """Remove USER_ID from WORKSPACE_ID."""
    actor = _actor(as_user, token)
    removed = _run_with_service(
        ctx,
        lambda s: s.remove_member(workspace_id=workspace_id, actor_id=actor, user_id=user_id),
    )
    if removed:
        click.echo(f"Removed {user_id} from {workspace_id}")
    else:
        click.echo(f"{user_id} was not removed", err=True)
        sys.exit(1)


@main.command()
@click.argument("workspace_id")
@click.option("--limit", default=50, show_default=True, help="Maximum number of records")
@click.option("--type", "event_type", default=None, help="Only this event type")
@click.option("--json", "as_json", is_flag=True, help="Print records as JSON")
@actor_options
@click.pass_context
def activity(
    ctx: click.Context,
    workspace_id: str,
    limit: int,
    event_type: str | None,
    as_json: bool,
    as_user: str | None,
    token: str | None,
) -> None:
    """Show recorded activity for WORKSPACE_ID, newest first."""
    actor = _actor(as_user, token)
    records = _run_with_service(
        ctx,
        lambda s: s.list_activity(
            workspace_id=workspace_id, actor_id=actor, limit=limit, event_type=event_type
        ),
    )
    if as_json:
        click.echo(json.dumps(records, indent=2))
        return
    if not records:
        click.echo("No activity recorded.")
        return

    table = Table(title=f"Activity in {workspace_id}")
    table.add_column("When")
    table.add_column("Event")
    table.add_column("User")
    table.add_column("Details")
    for record in records:
        details = {k: v for k, v in record["details"].items() if k != "workspace_id"}
        table.add_row(
            record["created_at"][:19],
            record["event_type"],
            record["user_id"] or "-",
            json.dumps(details),
        )
    Console().print(table)
