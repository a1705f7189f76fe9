"""Command-line interface for substrate."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from rich.markup import escape

from substrate import __version__
from substrate._config import ConfigManager, get_home
from substrate._workspaces import Resolution
from substrate.api_client import RemoteClient
from substrate.context_store import ContextStore
from substrate.errors import (
    AmbiguousReferenceError,
    DuplicateContentError,
    NotFoundError,
    SubstrateError,
    log_exception,
)
from substrate.logging_config import configure_logging, verbose_requested
from substrate.models import CONTEXT_TYPES, DEFAULT_RELATION, RELATION_TYPES, Workspace
from substrate.output import (
    console,
    create_stats_table,
    format_type,
    print_brief,
    print_context_item,
    print_context_line,
    print_digest,
    print_dim,
    print_error,
    print_link,
    print_project,
    print_related,
    print_session,
    print_similar,
    print_success,
    print_warning,
    print_workspace,
    render_brief,
)
from substrate.utils import create_brief, format_time_ago, hours_ago, normalize_path, short_id

try:
    import argcomplete

    ARGCOMPLETE_AVAILABLE = True
except ImportError:
    ARGCOMPLETE_AVAILABLE = False

logger = logging.getLogger(__name__)

# Commands that talk to the remote service
REMOTE_COMMANDS = frozenset({"sync", "related", "project"})

ERROR_LOG_NAME = "substrate-errors.log"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="substrate",
        description="Local-first project context with sync",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging to stderr",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import completers if argcomplete is available
    workspace_completer = None
    context_id_completer = None

    if ARGCOMPLETE_AVAILABLE:
        from substrate.completions import get_context_id_completer, get_workspace_completer

        workspace_completer = get_workspace_completer()
        context_id_completer = get_context_id_completer()

    def add_workspace_option(sub: argparse.ArgumentParser) -> None:
        action = sub.add_argument(
            "-w",
            "--workspace",
            help="Workspace name (default: resolved from the current directory)",
        )
        if workspace_completer:
            action.completer = workspace_completer

    def add_id_argument(sub: argparse.ArgumentParser, name: str, help_text: str) -> None:
        action = sub.add_argument(name, help=help_text)
        if context_id_completer:
            action.completer = context_id_completer

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Create a workspace for the current directory",
    )
    init_parser.add_argument(
        "name",
        nargs="?",
        help="Workspace name (default: directory name)",
    )
    init_parser.add_argument("-d", "--description", help="Workspace description")
    init_parser.add_argument(
        "--no-mount",
        action="store_true",
        help="Do not mount the current directory",
    )

    # workspace command
    workspace_parser = subparsers.add_parser("workspace", help="Manage workspaces")
    workspace_sub = workspace_parser.add_subparsers(dest="workspace_command")
    ws_list = workspace_sub.add_parser("list", help="List workspaces")
    ws_list.add_argument("--json", action="store_true", help="Output as JSON")
    ws_delete = workspace_sub.add_parser("delete", help="Delete a workspace")
    ws_delete_name = ws_delete.add_argument("name", help="Workspace name")
    if workspace_completer:
        ws_delete_name.completer = workspace_completer

    # project command
    project_parser = subparsers.add_parser(
        "project",
        help="Show or change the project pin of the current directory",
    )
    project_sub = project_parser.add_subparsers(dest="project_command")
    project_sub.add_parser("id", help="Print the pinned project id")
    project_info = project_sub.add_parser(
        "info",
        help="Show the pinned project and its remote status",
    )
    project_info.add_argument("--json", action="store_true", help="Output as JSON")
    project_pin = project_sub.add_parser("pin", help="Pin this directory to an existing project")
    project_pin.add_argument("project_id", help="Project id (UUID) to pin")
    project_pin.add_argument(
        "--force",
        action="store_true",
        help="Replace an existing pin in this directory",
    )
    project_unpin = project_sub.add_parser("unpin", help="Remove the project pin")
    project_unpin.add_argument(
        "--delete-local",
        action="store_true",
        help="Also delete the local workspace of the project",
    )


    # mount command
    mount_parser = subparsers.add_parser("mount", help="Manage directory mounts")
    mount_sub = mount_parser.add_subparsers(dest="mount_command")
    mount_add = mount_sub.add_parser("add", help="Mount a directory onto a workspace")
    mount_add.add_argument("path", help="Directory to mount")
    mount_add_ws = mount_add.add_argument("-w", "--workspace", required=True, help="Workspace name")
    if workspace_completer:
        mount_add_ws.completer = workspace_completer
    mount_add.add_argument("--scope", default="*", help="Default scope (default: *)")
    mount_add.add_argument("--tags", help="Comma-separated default tags")
    mount_list = mount_sub.add_parser("list", help="List mounts")
    mount_list.add_argument("--json", action="store_true", help="Output as JSON")
    mount_remove = mount_sub.add_parser("remove", help="Remove a mount")
    mount_remove.add_argument("path", help="Mounted directory")
    mount_status = mount_sub.add_parser("status", help="Show mount and pin for a directory")
    mount_status.add_argument("path", nargs="?", help="Directory (default: current)")

    # status command
    subparsers.add_parser("status", help="Show the workspace for the current directory")

    # add command
    add_parser = subparsers.add_parser("add", help="Add context")
    add_parser.add_argument("content", help="Context text")
    add_parser.add_argument(
        "-t",
        "--type",
        choices=CONTEXT_TYPES,
        default="note",
        help="Context type (default: note)",
    )
    add_parser.add_argument("--tags", help="Comma-separated tags")
    add_parser.add_argument("-s", "--scope", default="*", help="Path scope (default: *)")
    add_parser.add_argument(
        "--meta",
        action="append",
        metavar="KEY=VALUE",
        help="Metadata entry (repeatable)",
    )
    add_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Add even if similar context exists",
    )
    add_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(add_parser)

    # list command
    list_parser = subparsers.add_parser("list", help="List context")
    list_parser.add_argument("-t", "--type", choices=CONTEXT_TYPES, help="Filter by type")
    list_parser.add_argument("--tags", help="Filter by tags (comma-separated, all must match)")
    list_parser.add_argument(
        "--all-scopes",
        action="store_true",
        help="Ignore scope and list the whole workspace",
    )
    list_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=50,
        help="Maximum number of items (default: 50)",
    )
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(list_parser)

    # get command
    get_parser = subparsers.add_parser("get", help="Show a context item")
    add_id_argument(get_parser, "id", "Context id or prefix")
    get_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(get_parser)

    # update command
    update_parser = subparsers.add_parser("update", help="Update a context item")
    add_id_argument(update_parser, "id", "Context id or prefix")
    update_parser.add_argument("--content", help="New content")
    update_parser.add_argument("-t", "--type", choices=CONTEXT_TYPES, help="New type")
    update_parser.add_argument("--tags", help="New comma-separated tags")
    update_parser.add_argument("-s", "--scope", help="New scope")
    add_workspace_option(update_parser)

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a context item")
    add_id_argument(delete_parser, "id", "Context id or prefix")
    add_workspace_option(delete_parser)

    # link command
    link_parser = subparsers.add_parser("link", help="Manage links between context")
    link_sub = link_parser.add_subparsers(dest="link_command")
    link_add = link_sub.add_parser("add", help="Link two context items")
    add_id_argument(link_add, "from_id", "Source context id or prefix")
    add_id_argument(link_add, "to_id", "Target context id or prefix")
    link_add.add_argument(
        "-r",
        "--relation",
        choices=RELATION_TYPES,
        default=DEFAULT_RELATION,
        help=f"Relation type (default: {DEFAULT_RELATION})",
    )
    add_workspace_option(link_add)
    link_list = link_sub.add_parser("list", help="List links")
    link_list_id = link_list.add_argument("id", nargs="?", help="Only links touching this item")
    if context_id_completer:
        link_list_id.completer = context_id_completer
    link_list.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(link_list)
    link_remove = link_sub.add_parser("remove", help="Remove a link")
    add_id_argument(link_remove, "from_id", "Source context id or prefix")
    add_id_argument(link_remove, "to_id", "Target context id or prefix")
    add_workspace_option(link_remove)

    # related command
    related_parser = subparsers.add_parser("related", help="Show linked context")
    add_id_argument(related_parser, "id", "Context id or prefix")
    related_parser.add_argument(
        "--depth",
        type=int,
        default=1,
        help="Hops to follow, 1 or 2 (default: 1)",
    )
    related_parser.add_argument(
        "--local",
        action="store_true",
        help="Only use the local graph",
    )
    related_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(related_parser)

    # recall command
    recall_parser = subparsers.add_parser("recall", help="Search recently added context")
    recall_parser.add_argument("query", nargs="?", help="Text to search for in content")
    recall_parser.add_argument(
        "--hours",
        type=float,
        default=24,
        help="Hours to look back (default: 24)",
    )
    recall_parser.add_argument("-t", "--type", choices=CONTEXT_TYPES, help="Filter by type")
    recall_parser.add_argument("--tag", help="Filter by tag")
    recall_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=20,
        help="Maximum number of items (default: 20)",
    )
    recall_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(recall_parser)

    # digest command
    digest_parser = subparsers.add_parser("digest", help="Summarize recently added context")
    digest_parser.add_argument(
        "--hours",
        type=float,
        default=8,
        help="Hours to look back (default: 8)",
    )
    digest_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(digest_parser)

    # session command

    session_parser = subparsers.add_parser("session", help="Track work sessions")
    session_sub = session_parser.add_subparsers(dest="session_command")
    session_start = session_sub.add_parser("start", help="Start a session")
    session_start.add_argument("name", nargs="?", help="Session name")
    add_workspace_option(session_start)
    session_end = session_sub.add_parser("end", help="End the active session")
    add_workspace_option(session_end)
    session_status = session_sub.add_parser("status", help="Show the active session")
    add_workspace_option(session_status)
    session_list = session_sub.add_parser("list", help="List recent sessions")
    session_list.add_argument(
        "-n",
        "--limit",
        type=int,
        default=10,
        help="Maximum number of sessions (default: 10)",
    )
    add_workspace_option(session_list)

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Sync with the remote service")
    sync_parser.add_argument(
        "action",
        nargs="?",
        choices=["push", "pull", "status"],
        help="Only push, only pull, or show status (default: push then pull)",
    )
    sync_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(sync_parser)

    # brief command
    brief_parser = subparsers.add_parser(
        "brief",
        help="Print the context visible at a path as Markdown",
    )
    brief_parser.add_argument("path", nargs="?", help="Path (default: current directory)")
    brief_parser.add_argument("--tags", help="Only items with these tags")
    brief_parser.add_argument(
        "--raw",
        action="store_true",
        help="Print plain Markdown instead of rendering it",
    )
    brief_parser.add_argument("--json", action="store_true", help="Output as JSON")
    add_workspace_option(brief_parser)

    # config command
    config_parser = subparsers.add_parser("config", help="Read or change settings")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_get = config_sub.add_parser("get", help="Print a setting")
    config_get.add_argument("key", help="Setting name")
    config_set = config_sub.add_parser("set", help="Change a setting")
    config_set.add_argument("key", help="Setting name")
    config_set.add_argument("value", help="New value")
    config_sub.add_parser("list", help="Print all settings")

    # completions command
    completions_parser = subparsers.add_parser(
        "completions",
        help="Generate shell completion setup instructions",
    )
    completions_parser.add_argument(
        "shell",
        choices=["bash", "zsh", "fish"],
        help="Shell to generate completions for",
    )

    return parser


# =============================================================================
# Helpers
# =============================================================================


def create_remote_client(config: ConfigManager) -> RemoteClient:
    """Build the HTTP client from configuration."""
    return RemoteClient(
        config.get_api_url(),
        config.get_api_key(),
        timeout=config.get_timeout(),
    )


def resolve_workspace(
    args: argparse.Namespace,
    store: ContextStore,
) -> tuple[Workspace, Resolution | None]:
    """Find the workspace a command applies to.

    Lookup order: --workspace, then the longest mount covering the current
    directory, then the project pin of the current directory.

    Raises:
        NotFoundError: If no workspace can be determined.
    """
    cwd = os.getcwd()
    name = getattr(args, "workspace", None)
    if name:
        workspace = store.find_workspace(name)
        if workspace is None:
            raise NotFoundError(f"Workspace not found: {name}")
        resolution = store.resolve(cwd)
        if resolution and resolution.workspace.id != workspace.id:
            resolution = None
        return workspace, resolution

    resolution = store.resolve(cwd)
    if resolution:
        return resolution.workspace, resolution

    project_id = store.config.get_project_id(cwd)
    if project_id:
        workspace = store.workspaces.get_by_project_id(project_id)
        if workspace:
            return workspace, None

    raise NotFoundError(
        "No workspace for this directory. Run 'substrate init' or 'substrate mount add'."
    )


def parse_meta(entries: list[str] | None) -> dict[str, str]:
    """Parse repeated KEY=VALUE options.

    Raises:
        ValueError: If an entry has no '='.
    """
    meta: dict[str, str] = {}
    for entry in entries or []:
        key, sep, value = entry.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid metadata '{entry}'. Use KEY=VALUE")
        meta[key.strip()] = value.strip()
    return meta


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Commands
# =============================================================================


def cmd_init(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the init command."""
    cwd = Path.cwd()
    pinned = store.config.get_project_id(cwd)
    if pinned and store.workspaces.get_by_project_id(pinned):
        workspace = store.workspaces.get_by_project_id(pinned)
        print_warning(f"Already initialized as workspace '{workspace.name}'")
        return 1

    name = args.name or cwd.name
    workspace = store.create_workspace(name, description=args.description)
    store.config.pin_project(cwd, workspace.project_id)
    print_success(f"Created workspace '{workspace.name}'")
    console.print(f"  Project: [dim]{workspace.project_id}[/dim]")

    if not args.no_mount:
        if store.workspaces.get_mount(str(cwd)):
            print_warning(f"{cwd} is already mounted; leaving the existing mount")
        else:
            mount = store.add_mount(workspace.id, str(cwd))
            console.print(f"  Mounted: [cyan]{mount.path}[/cyan]")
    print_dim("Run 'substrate sync push' to create the remote workspace.")
    return 0


def cmd_workspace(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the workspace command."""
    if args.workspace_command == "delete":
        workspace = store.find_workspace(args.name)
        if workspace is None:
            print_error(f"Workspace not found: {args.name}")
            return 1
        store.workspaces.delete(workspace.id)
        print_success(f"Deleted workspace '{workspace.name}'")
        return 0

    workspaces = store.list_workspaces()
    if getattr(args, "json", False):
        print_json([w.to_dict() for w in workspaces])
        return 0
    if not workspaces:
        console.print("No workspaces. Run 'substrate init' to create one.")
        return 0
    for workspace in workspaces:
        print_workspace(workspace)
    return 0


def cmd_project(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the project command."""
    cwd = Path.cwd()
    if args.project_command == "pin":
        current = store.config.get_local_pin(cwd)
        if current and not args.force:
            print_error(f"Directory already pinned to project {current}")
            print_dim("  Use --force to replace the pin")
            return 1
        joined = store.join_project(args.project_id)
        if joined.source == "remote":
            print_success(f"Fetched project '{joined.workspace.name}' from remote")
        elif joined.source == "placeholder":
            print_warning("Remote unavailable, created a placeholder workspace")
        store.config.pin_project(cwd, args.project_id)
        print_success(f"Pinned {cwd} to project {args.project_id}")
        console.print(f"  Workspace: {escape(joined.workspace.name)}")
        print_dim("  Run 'substrate sync pull' to fetch project context")
        return 0

    if args.project_command == "unpin":
        project_id = store.config.get_local_pin(cwd)
        if not store.config.unpin_project(cwd):
            print_warning("No project pin in this directory")
            return 1
        print_success(f"Unpinned {cwd}")
        if args.delete_local and project_id:
            workspace = store.workspaces.get_by_project_id(project_id)
            if workspace and store.workspaces.delete(workspace.id):
                print_success(f"Deleted local workspace '{workspace.name}'")
        return 0

    project_id = store.config.get_project_id(cwd)
    if not project_id:
        print_error("No project pinned. Run 'substrate init' or 'substrate project pin'.")
        return 1
    if args.project_command == "id":
        print(project_id)
        return 0

    workspace = store.workspaces.get_by_project_id(project_id)
    remote_status = store.project_status(project_id)
    if getattr(args, "json", False):
        print_json(
            {
                "project_id": project_id,
                "name": workspace.name if workspace else None,
                "local": workspace.to_dict() if workspace else None,
                "remote_status": remote_status,
            }
        )
        return 0
    print_project(project_id, workspace, remote_status)
    return 0



def cmd_mount(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the mount command."""
    if args.mount_command == "add":
        workspace = store.find_workspace(args.workspace)
        if workspace is None:
            print_error(f"Workspace not found: {args.workspace}")
            return 1
        mount = store.add_mount(workspace.id, args.path, scope=args.scope, tags=args.tags)
        print_success(f"Mounted {mount.path} -> {workspace.name}")
        return 0

    if args.mount_command == "remove":
        if store.remove_mount(args.path):
            print_success(f"Removed mount {normalize_path(args.path)}")
            return 0
        print_error(f"Not a mount: {normalize_path(args.path)}")
        return 1

    if args.mount_command == "status":
        path = args.path or os.getcwd()
        project_id = store.config.get_project_id(path)
        if project_id:
            pinned = store.workspaces.get_by_project_id(project_id)
            label = pinned.name if pinned else "(no local workspace)"
            console.print(f"Pinned:  {label} [dim]{project_id}[/dim]")
        else:
            console.print("Pinned:  [dim](none)[/dim]")
        resolution = store.resolve(path)
        if resolution:
            console.print(
                f"Mounted: {resolution.workspace.name} "
                f"[cyan]{resolution.mount.path}[/cyan]"
            )
            if resolution.relative_path:
                console.print(f"Path:    {resolution.relative_path}")
        else:
            console.print("Mounted: [dim](none)[/dim]")
        return 0

    mounts = store.list_mounts()
    names = {w.id: w.name for w in store.list_workspaces()}
    if getattr(args, "json", False):
        print_json([{**m.to_dict(), "workspace": names.get(m.workspace_id)} for m in mounts])
        return 0
    if not mounts:
        console.print("No mounts.")
        return 0
    for mount in mounts:
        scope = f" [dim]scope {mount.scope}[/dim]" if mount.scope != "*" else ""
        console.print(
            f"[cyan]{mount.path}[/cyan] -> [bold]{names.get(mount.workspace_id, '?')}[/bold]"
            f"{scope}"
        )
    return 0


def cmd_status(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the status command."""
    workspace, resolution = resolve_workspace(args, store)
    print_workspace(workspace, resolution.mount if resolution else None)
    if resolution and resolution.relative_path:
        console.print(f"  Path:    {resolution.relative_path}")

    items = store.list_context(workspace.id, limit=None)
    pending = store.context.pending_push(workspace.id)
    table = create_stats_table(title="Context")
    table.add_row("Items", str(len(items)))
    for context_type in CONTEXT_TYPES:
        count = sum(1 for i in items if i.type == context_type)
        if count:
            table.add_row(f"  {context_type}", str(count))
    table.add_row("Pending push", str(len(pending)))
    console.print(table)

    session = store.get_active_session(workspace.id)
    if session:
        console.print(f"Active session: [green]{session.name or short_id(session.id)}[/green]")
    return 0


def cmd_add(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the add command."""
    workspace, resolution = resolve_workspace(args, store)
    tags = args.tags.split(",") if args.tags else []
    if resolution:
        tags = tags + resolution.mount.tags

    try:
        item = store.add(
            workspace.id,
            args.content,
            context_type=args.type,
            tags=tags,
            scope=args.scope,
            meta=parse_meta(args.meta),
            force=args.force,
        )
    except DuplicateContentError as e:
        print_warning(f"Similar context already exists ({e.similarity}% match):")
        preview = escape(create_brief(e.match.content))
        console.print(f"  [dim]{short_id(e.match.id)}[/dim] {preview}")
        print_dim("Use --force to add anyway.")
        return 1

    if args.json:
        print_json(item.to_dict())
        return 0
    print_success(f"Added {item.type} {short_id(item.id)}")
    similar = store.find_similar(workspace.id, item.content, item.type)
    others = [m for m in similar if m.item.id != item.id]
    if others:
        print_dim("Related context:")
        for match in others[:3]:
            print_similar(match)
    return 0


def cmd_list(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the list command."""
    workspace, resolution = resolve_workspace(args, store)
    scope_path = None
    if resolution and not args.all_scopes:
        scope_path = resolution.relative_path

    items = store.list_context(
        workspace.id,
        context_type=args.type,
        tags=args.tags,
        scope_path=scope_path,
        limit=args.limit,
    )
    if args.json:
        print_json([i.to_dict() for i in items])
        return 0
    if not items:
        console.print("No context found.")
        return 0
    for item in items:
        print_context_line(item)
    return 0


def cmd_get(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the get command."""
    workspace, _ = resolve_workspace(args, store)
    item = store.find(workspace.id, args.id)
    if args.json:
        data = item.to_dict()
        data["links"] = [v.link.to_dict() for v in store.list_links(item_id=item.id)]
        print_json(data)
        return 0
    print_context_item(item)
    views = store.list_links(item_id=item.id)
    if views:
        console.print()
        console.print("[bold]Links:[/bold]")
        for view in views:
            print_link(view)
    return 0


def cmd_update(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the update command."""
    workspace, _ = resolve_workspace(args, store)
    item = store.find(workspace.id, args.id)

    updates = {}
    if args.content is not None:
        updates["content"] = args.content
    if args.type:
        updates["context_type"] = args.type
    if args.tags is not None:
        updates["tags"] = args.tags
    if args.scope is not None:
        updates["scope"] = args.scope

    if not updates:
        print_error("No updates specified")
        return 1

    store.update(item.id, **updates)
    print_success(f"Updated {short_id(item.id)}")
    return 0


def cmd_delete(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the delete command."""
    workspace, _ = resolve_workspace(args, store)
    item = store.find(workspace.id, args.id)
    store.delete(item.id)
    print_success(f"Deleted {short_id(item.id)}")
    return 0


def cmd_link(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the link command."""
    workspace, _ = resolve_workspace(args, store)

    if args.link_command in ("add", "remove"):
        source = store.find(workspace.id, args.from_id)
        target = store.find(workspace.id, args.to_id)
        if args.link_command == "add":
            link = store.link(source.id, target.id, args.relation)
            print_success(
                f"Linked {short_id(source.id)} -> {link.relation} -> {short_id(target.id)}"
            )
            return 0
        if store.unlink(source.id, target.id):
            print_success(f"Removed link {short_id(source.id)} -> {short_id(target.id)}")
            return 0
        print_error(f"No link from {short_id(source.id)} to {short_id(target.id)}")
        return 1

    item_id = store.find(workspace.id, args.id).id if getattr(args, "id", None) else None
    views = store.list_links(item_id=item_id, workspace_id=None if item_id else workspace.id)
    if getattr(args, "json", False):
        print_json([v.link.to_dict() for v in views])
        return 0
    if not views:
        console.print("No links.")
        return 0
    for view in views:
        print_link(view)
    return 0


def cmd_related(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the related command."""
    workspace, _ = resolve_workspace(args, store)
    item = store.find(workspace.id, args.id)
    related = store.related(item.id, depth=args.depth, local_only=args.local)

    if args.json:
        print_json(
            [
                {
                    "item": r.item.to_dict(),
                    "direction": r.direction,
                    "relation": r.relation,
                    "hops": r.hops,
                }
                for r in related
            ]
        )
        return 0

    console.print(
        f"{format_type(item.type)} [bold]{short_id(item.id)}[/bold] "
        f"{escape(create_brief(item.content))}"
    )
    if not related:
        console.print("  [dim]No linked context.[/dim]")
        return 0
    for entry in related:
        print_related(entry)
    return 0


def cmd_recall(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the recall command."""
    workspace, _ = resolve_workspace(args, store)
    items = store.list_context(
        workspace.id,
        context_type=args.type,
        tags=args.tag,
        since=hours_ago(args.hours),
        limit=args.limit,
        query=args.query,
    )
    if args.json:
        print_json(
            {
                "query": args.query,
                "hours": args.hours,
                "count": len(items),
                "results": [i.to_dict() for i in items],
            }
        )
        return 0
    if not items:
        if args.query:
            console.print(f"No results for '{escape(args.query)}' in the last {args.hours:g}h.")
        else:
            console.print(f"No context added in the last {args.hours:g}h.")
        print_dim(f"  Try: substrate recall --hours {args.hours * 2:g}")
        return 0
    for item in items:
        print_context_line(item)
        print_dim(f"    {format_time_ago(item.created_at)}")
    print_dim(f"{len(items)} result(s)")
    return 0


def cmd_digest(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the digest command."""
    workspace, _ = resolve_workspace(args, store)
    digest = store.digest(workspace.id, hours_ago(args.hours))
    if args.json:
        print_json(
            {
                "workspace": workspace.name,
                "hours": args.hours,
                "summary": {
                    "total": len(digest.items),
                    "by_type": digest.counts_by_type(),
                    "links": len(digest.links),
                },
                "items": [i.to_dict() for i in digest.items],
                "links": [v.link.to_dict() for v in digest.links],
            }
        )
        return 0
    print_digest(digest, args.hours)
    return 0


def cmd_session(args: argparse.Namespace, store: ContextStore) -> int:

    """Handle the session command."""
    workspace, _ = resolve_workspace(args, store)
    active = store.get_active_session(workspace.id)

    if args.session_command == "start":
        if active:
            print_error(f"Session already active: {active.name or short_id(active.id)}")
            return 1
        session = store.start_session(workspace.id, args.name)
        print_success(f"Started session {session.name or short_id(session.id)}")
        return 0

    if args.session_command == "end":
        if not active:
            print_error("No active session")
            return 1
        session = store.end_session(active.id)
        print_session(session, store.session_stats(session))
        return 0

    if args.session_command == "list":
        sessions = store.list_sessions(workspace.id, limit=args.limit)
        if not sessions:
            console.print("No sessions.")
            return 0
        for session in sessions:
            print_session(session)
        return 0

    if not active:
        console.print("No active session.")
        return 0
    print_session(active, store.session_stats(active))
    return 0


def cmd_sync(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the sync command."""
    workspace, _ = resolve_workspace(args, store)

    if args.action == "status":
        status = store.sync_status(workspace.id)
        if args.json:
            print_json(vars(status))
            return 0
        online = "[green]online[/green]" if status.online else "[yellow]offline[/yellow]"
        console.print(f"[bold]Sync status for:[/bold] {workspace.name} ({online})")
        console.rule()
        console.print(f"Bound:          {'yes' if status.bound else 'no'}")
        console.print(f"Last sync:      {status.last_sync or 'never'}")
        console.print(f"Pending items:  [green]{status.pending_context}[/green]")
        console.print(f"Pending links:  [cyan]{status.pending_links}[/cyan]")
        return 0

    push = pull = None
    if args.action == "pull":
        pull = store.pull(workspace.id)
    elif args.action == "push":
        push = store.push(workspace.id)
    else:
        result = store.sync(workspace.id)
        push, pull = result.push, result.pull

    if args.json:
        print_json({"push": vars(push) if push else None, "pull": vars(pull) if pull else None})
        return 1 if (push and push.error) or (pull and pull.error) else 0

    exit_code = 0
    if push is not None:
        if push.error:
            print_error(push.error)
            exit_code = 1
        elif push.offline:
            print_warning("Offline: remote unreachable, changes stay local")
        else:
            console.print(f"Pushed:  [green]{push.pushed}[/green]")
            if push.links_pushed:
                console.print(f"Links:   [cyan]{push.links_pushed}[/cyan]")
            if push.failed:
                console.print(f"Failed:  [red]{push.failed}[/red]")
                for item_id, message in push.errors:
                    console.print(f"  [dim]{short_id(item_id)}[/dim] {message}")
    if pull is not None:
        if pull.error:
            print_error(pull.error)
            exit_code = 1
        elif pull.offline:
            if push is None or not push.offline:
                print_warning("Offline: remote unreachable, nothing pulled")
        else:
            console.print(f"Pulled:  [cyan]{pull.pulled}[/cyan]")
            console.print(f"Updated: [cyan]{pull.updated}[/cyan]")
            if pull.skipped:
                console.print(f"Skipped: [dim]{pull.skipped}[/dim]")
    return exit_code


def cmd_brief(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the brief command."""
    if args.path and not args.workspace:
        resolution = store.resolve(args.path)
        if resolution is None:
            print_error(f"No workspace mounted at {normalize_path(args.path)}")
            return 1
        workspace, relative = resolution.workspace, resolution.relative_path
    else:
        workspace, resolution = resolve_workspace(args, store)
        relative = resolution.relative_path if resolution else ""

    brief = store.brief(workspace.id, relative_path=relative, tags=args.tags)
    if args.json:
        print_json(
            {
                "workspace": workspace.name,
                "path": relative,
                "sections": {
                    t: [i.to_dict() for i in items] for t, items in brief.sections.items()
                },
            }
        )
    elif args.raw:
        print(render_brief(brief))
    else:
        print_brief(brief)
    return 0


def cmd_config(args: argparse.Namespace, store: ContextStore) -> int:
    """Handle the config command."""
    config = store.config
    if args.config_command == "get":
        value = config.get(args.key)
        if value is None:
            print_error(f"Not set: {args.key}")
            return 1
        print(value)
        return 0
    if args.config_command == "set":
        config.set(args.key, args.value)
        print_success(f"Set {args.key}")
        return 0

    settings = config.load_config()
    settings.setdefault("api_url", config.get_api_url())
    print_json(settings)
    return 0


def cmd_completions(args: argparse.Namespace) -> int:
    """Handle the completions command."""
    if not ARGCOMPLETE_AVAILABLE:
        print_error("argcomplete is not installed.")
        return 1

    shell = args.shell

    if shell == "bash":
        print("""# Add this to your ~/.bashrc:
eval "$(register-python-argcomplete substrate)"
""")
    elif shell == "zsh":
        print("""# Add this to your ~/.zshrc:
autoload -U bashcompinit
bashcompinit
eval "$(register-python-argcomplete substrate)"
""")
    elif shell == "fish":
        print("""# Run this command once:
register-python-argcomplete --shell fish substrate > ~/.config/fish/completions/substrate.fish
""")

    return 0


COMMANDS = {
    "init": cmd_init,
    "workspace": cmd_workspace,
    "project": cmd_project,
    "mount": cmd_mount,
    "status": cmd_status,
    "add": cmd_add,
    "list": cmd_list,
    "get": cmd_get,
    "update": cmd_update,
    "delete": cmd_delete,
    "link": cmd_link,
    "related": cmd_related,
    "recall": cmd_recall,
    "digest": cmd_digest,
    "session": cmd_session,
    "sync": cmd_sync,
    "brief": cmd_brief,
    "config": cmd_config,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()

    # Enable argcomplete if available
    if ARGCOMPLETE_AVAILABLE:
        argcomplete.autocomplete(parser)

    args = parser.parse_args(argv)
    configure_logging(args.verbose or verbose_requested())

    # Handle --no-color flag and NO_COLOR environment variable
    if args.no_color or os.environ.get("NO_COLOR"):
        console.no_color = True

    if not args.command:
        parser.print_help()
        return 0

    # Handle completions command separately (doesn't need ContextStore)
    if args.command == "completions":
        return cmd_completions(args)

    home = get_home()
    transport = None
    try:
        if args.command in REMOTE_COMMANDS:
            transport = create_remote_client(ConfigManager(home))
        store = ContextStore(home, transport=transport)
    except Exception as e:
        print_error(f"Initializing store: {e}")
        return 1

    try:
        return COMMANDS[args.command](args, store)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130
    except AmbiguousReferenceError as e:
        print_error(str(e))
        for candidate in e.candidates[:10]:
            print_context_line(candidate)
        return 1
    except (SubstrateError, ValueError) as e:
        print_error(str(e))
        return 1
    except Exception as e:
        path = log_exception(e, home / ERROR_LOG_NAME)
        logger.debug("Unexpected error", exc_info=True)
        print_error(f"{e} (details in {path})")
        return 1
    finally:
        store.close()
        if transport is not None:
            transport.close()


if __name__ == "__main__":
    sys.exit(main())
