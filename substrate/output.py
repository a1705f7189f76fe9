"""Terminal output formatting with rich."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from substrate.utils import create_brief, format_time_ago, short_id

if TYPE_CHECKING:
    from substrate._relationships import LinkView, RelatedItem
    from substrate._sessions import SessionStats
    from substrate._similarity import SimilarMatch
    from substrate.context_store import Brief, Digest
    from substrate.models import ContextItem, Mount, Session, Workspace

# Global console instance - auto-detects TTY
console = Console()

TYPE_STYLES = {
    "constraint": "red",
    "decision": "magenta",
    "task": "yellow",
    "note": "white",
    "entity": "cyan",
    "runbook": "green",
    "snippet": "blue",
}

TYPE_HEADINGS = {
    "constraint": "Constraints",
    "decision": "Decisions",
    "task": "Tasks",
    "note": "Notes",
    "entity": "Entities",
    "runbook": "Runbooks",
    "snippet": "Snippets",
}


def print_error(message: str) -> None:
    """Print error message in red."""
    console.print(f"[red]Error:[/red] {escape(message)}")


def print_success(message: str) -> None:
    """Print success message in green."""
    console.print(f"[green]{escape(message)}[/green]")


def print_warning(message: str) -> None:
    """Print warning message in yellow."""
    console.print(f"[yellow]{escape(message)}[/yellow]")


def print_dim(message: str) -> None:
    console.print(f"[dim]{escape(message)}[/dim]")


def format_type(context_type: str) -> str:
    """Return rich markup for a context type label."""
    style = TYPE_STYLES.get(context_type, "white")
    return f"[{style}]{context_type}[/{style}]"


def format_similarity(similarity: int) -> Text:
    """Format a 0-100 similarity score with color based on value.

    Args:
        similarity: Similarity from 0 to 100

    Returns:
        Rich Text object with colored score
    """
    if similarity >= 90:
        color = "red"
    elif similarity >= 70:
        color = "yellow"
    else:
        color = "green"
    return Text(f"{similarity}%", style=color)


def _tag_markup(tags: list[str]) -> str:
    # Escape brackets for Rich markup - use \[ to display literal [
    return f" [cyan]\\[{escape(', '.join(tags))}][/cyan]" if tags else ""


def print_context_line(item: ContextItem) -> None:
    """Print a one-line summary of a context item (for list output)."""
    scope = f" [dim]@{escape(item.scope)}[/dim]" if item.scope != "*" else ""
    console.print(
        f"[dim]{short_id(item.id)}[/dim] {format_type(item.type)} "
        f"{escape(create_brief(item.content))}{_tag_markup(item.tags)}{scope}"
    )


def print_context_item(item: ContextItem) -> None:
    """Print a context item with all of its fields.

    Args:
        item: The item to display
    """
    console.print(f"{format_type(item.type)} [bold]{short_id(item.id)}[/bold]")
    console.print(escape(item.content))
    console.print()
    console.print(f"  ID:      [dim]{item.id}[/dim]")
    if item.tags:
        console.print(f"  Tags:    [cyan]{escape(', '.join(item.tags))}[/cyan]")
    console.print(f"  Scope:   {escape(item.scope)}")
    if item.meta:
        for key, value in item.meta.items():
            console.print(f"  {escape(str(key))}: [dim]{escape(str(value))}[/dim]")
    console.print(f"  Created: [dim]{item.created_at}[/dim]")
    console.print(f"  Updated: [dim]{item.updated_at}[/dim]")
    if item.remote_id:
        console.print(f"  Synced:  [dim]{item.synced_at} ({short_id(item.remote_id)})[/dim]")
    else:
        console.print("  Synced:  [yellow]not yet[/yellow]")


def print_similar(match: SimilarMatch) -> None:
    line = Text("  ")
    line.append(format_similarity(match.similarity))
    line.append(f" {short_id(match.item.id)} ", style="dim")
    line.append(create_brief(match.item.content))
    console.print(line)


def print_related(related: RelatedItem) -> None:
    """Print an item reached through the link graph.

    Args:
        related: Related item with direction, relation and hop count
    """
    arrow = "->" if related.direction == "outbound" else "<-"
    indent = "  " * related.hops
    console.print(
        f"{indent}{arrow} [yellow]{related.relation}[/yellow] "
        f"[dim]{short_id(related.item.id)}[/dim] {format_type(related.item.type)} "
        f"{escape(create_brief(related.item.content, 60))}"
    )


def print_link(view: LinkView) -> None:
    """Print a link with a preview of both ends."""
    source = escape(create_brief(view.source.content, 40)) if view.source else "(deleted)"
    target = escape(create_brief(view.target.content, 40)) if view.target else "(deleted)"
    console.print(
        f"[dim]{short_id(view.link.from_id)}[/dim] {source} "
        f"-> [yellow]{view.link.relation}[/yellow] -> "
        f"[dim]{short_id(view.link.to_id)}[/dim] {target}"
    )


def print_workspace(workspace: Workspace, mount: Mount | None = None) -> None:
    console.print(f"[bold]{escape(workspace.name)}[/bold] [dim]({short_id(workspace.id)})[/dim]")
    if workspace.description:
        console.print(f"  {escape(workspace.description)}")
    if mount:
        console.print(f"  Mount:   [cyan]{escape(mount.path)}[/cyan]")
    remote = short_id(workspace.remote_id) if workspace.remote_id else "[yellow]not bound[/yellow]"
    console.print(f"  Remote:  {remote}")


def print_session(session: Session, stats: SessionStats | None = None) -> None:
    """Print a session and, optionally, its activity counts."""
    name = escape(session.name) if session.name else "(unnamed)"
    state = "[green]active[/green]" if session.is_active else "[dim]ended[/dim]"
    console.print(f"[bold]{name}[/bold] [dim]{short_id(session.id)}[/dim] {state}")
    console.print(f"  Started: [dim]{session.started_at}[/dim]")
    if session.ended_at:
        console.print(f"  Ended:   [dim]{session.ended_at}[/dim]")
    if stats:
        console.print(f"  Duration: {stats.duration}")
        console.print(f"  Context:  {stats.total_context}")
        for context_type, count in sorted(stats.context_by_type.items()):
            console.print(f"    {format_type(context_type)}: {count}")
        console.print(f"  Links:    {stats.links}")


def print_digest(digest: Digest, hours: float) -> None:
    """Print the items and links added in a recent window, grouped by type."""
    name = escape(digest.workspace.name)
    console.print(f"[bold]Digest (last {hours:g}h)[/bold] [dim]{name}[/dim]")
    if not digest.items and not digest.links:
        console.print("No context added in this period.")
        return

    counts = digest.counts_by_type()
    parts = [f"{count} {context_type}" for context_type, count in sorted(counts.items())]
    if digest.links:
        parts.append(f"{len(digest.links)} link(s)")
    console.print(f"[green]Added: {', '.join(parts)}[/green]")

    for context_type in TYPE_HEADINGS:
        items = [i for i in digest.items if i.type == context_type]
        if not items:
            continue
        console.print()
        console.print(f"[bold]{TYPE_HEADINGS[context_type]}:[/bold]")
        for item in items:
            console.print(
                f"  [dim]{format_time_ago(item.created_at)}[/dim] "
                f"{escape(create_brief(item.content))}"
            )

    if digest.links:
        console.print()
        console.print("[bold]Links created:[/bold]")
        for view in digest.links:
            console.print(f"  [dim]{format_time_ago(view.link.created_at)}[/dim]", end=" ")
            print_link(view)


def print_project(project_id: str, workspace: Workspace | None, remote_status: str) -> None:
    """Print a pinned project with its local workspace and remote status."""
    console.print(f"  Project:   [cyan]{project_id}[/cyan]")
    if workspace:
        console.print(f"  Name:      {escape(workspace.name)}")
        if workspace.description:
            console.print(f"  About:     {escape(workspace.description)}")
        console.print(f"  Local ID:  [dim]{workspace.id}[/dim]")
        if workspace.synced_at:
            console.print(f"  Last sync: [dim]{workspace.synced_at}[/dim]")
    else:
        console.print("  Local:     [yellow]no local workspace[/yellow]")
    style = {"synced": "green", "not_synced": "yellow"}.get(remote_status, "dim")
    label = remote_status.replace("_", " ")
    console.print(f"  Remote:    [{style}]{label}[/{style}]")
    if remote_status == "not_synced":
        console.print("  [dim]Run 'substrate sync push' to create it on the remote[/dim]")



def create_stats_table(title: str) -> Table:
    """Create a styled two-column table for counts.

    Args:
        title: Table title

    Returns:
        Rich Table object
    """
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    return table


def render_brief(brief: Brief) -> str:
    """Render a brief as Markdown suitable for an agent prompt.

    Args:
        brief: Brief produced by ContextStore.brief()

    Returns:
        Markdown text
    """
    location = brief.relative_path or "/"
    lines = [f"# {brief.workspace.name} context ({location})", ""]
    if not brief.sections:
        lines.append("_No context recorded._")
        return "\n".join(lines) + "\n"

    for context_type, items in brief.sections.items():
        lines.append(f"## {TYPE_HEADINGS.get(context_type, context_type.title())}")
        lines.append("")
        for item in items:
            suffix = f" `{item.scope}`" if item.scope != "*" else ""
            lines.append(f"- {item.content}{suffix} ({short_id(item.id)})")
            for view in brief.links.get(item.id, []):
                if view.link.from_id == item.id and view.target:
                    lines.append(
                        f"  - {view.link.relation} -> {create_brief(view.target.content, 60)}"
                    )
        lines.append("")
    return "\n".join(lines)


def print_brief(brief: Brief) -> None:
    console.print(Markdown(render_brief(brief)))
