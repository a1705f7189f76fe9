"""Tests for the output formatting module."""

from rich.text import Text

from substrate._relationships import RelatedItem
from substrate._sessions import SessionStats
from substrate.models import ContextItem, Session, Workspace
from substrate.utils import hours_ago
from substrate.output import (
    create_stats_table,
    format_similarity,
    format_type,
    print_context_item,
    print_context_line,
    print_digest,
    print_error,
    print_project,
    print_related,
    print_session,
    print_success,
    print_warning,
    print_workspace,
    render_brief,
)

TIMESTAMP = "2024-01-01T00:00:00.000Z"


def make_item(**overrides):
    fields = {
        "id": "0123456789abcdef",
        "workspace_id": "ws",
        "content": "Use PostgreSQL for persistence",
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
        "type": "decision",
    }
    fields.update(overrides)
    return ContextItem(**fields)


class TestFormatting:
    """Tests for small formatting helpers."""

    def test_format_similarity_colors(self):
        high = format_similarity(95)
        medium = format_similarity(75)
        low = format_similarity(60)

        assert isinstance(high, Text)
        assert high.plain == "95%"
        assert high.style == "red"
        assert medium.style == "yellow"
        assert low.style == "green"

    def test_format_type_uses_style(self):
        assert format_type("constraint") == "[red]constraint[/red]"
        assert format_type("custom") == "[white]custom[/white]"

    def test_create_stats_table(self):
        table = create_stats_table("Context")
        assert table.title == "Context"
        assert len(table.columns) == 2


class TestMessages:
    """Tests for status message helpers."""

    def test_print_error(self, output_buffer):
        print_error("Something failed [badly]")
        assert "Error: Something failed [badly]" in output_buffer.getvalue()

    def test_print_success_and_warning(self, output_buffer):
        print_success("Done")
        print_warning("Careful")
        output = output_buffer.getvalue()
        assert "Done" in output
        assert "Careful" in output


class TestItems:
    """Tests for context item output."""

    def test_context_line(self, output_buffer):
        print_context_line(make_item(tags=["db"], scope="backend"))

        output = output_buffer.getvalue()
        assert "01234567" in output
        assert "decision" in output
        assert "[db]" in output
        assert "@backend" in output

    def test_context_item_unsynced(self, output_buffer):
        print_context_item(make_item(meta={"source": "review"}))

        output = output_buffer.getvalue()
        assert "0123456789abcdef" in output
        assert "source: review" in output
        assert "not yet" in output

    def test_context_item_synced(self, output_buffer):
        print_context_item(make_item(remote_id="remote-abcdef", synced_at=TIMESTAMP))
        assert "remote-a" in output_buffer.getvalue()

    def test_related_indents_by_hops(self, output_buffer):
        print_related(RelatedItem(make_item(), "inbound", "depends_on", 2))

        line = output_buffer.getvalue().splitlines()[0]
        assert line.startswith("    <- depends_on 01234567")

    def test_workspace_unbound(self, output_buffer):
        workspace = Workspace(
            id="ws-123456789", name="demo", project_id="p", created_at=TIMESTAMP,
            updated_at=TIMESTAMP,
        )
        print_workspace(workspace)
        output = output_buffer.getvalue()
        assert "demo" in output
        assert "not bound" in output

    def test_session_with_stats(self, output_buffer):
        session = Session(id="sess-1234567", workspace_id="ws", started_at=TIMESTAMP, name="fix")
        stats = SessionStats(context_by_type={"note": 2, "task": 1}, links=1, duration="5m")

        print_session(session, stats)

        output = output_buffer.getvalue()
        assert "fix" in output
        assert "active" in output
        assert "Context:  3" in output
        assert "Links:    1" in output


class TestRenderBrief:
    """Tests for Markdown briefs."""

    def test_sections_and_scope(self, populated_store, workspace):
        text = render_brief(populated_store.brief(workspace.id))

        assert text.startswith("# demo context (/)")
        assert text.index("## Constraints") < text.index("## Decisions") < text.index("## Tasks")
        assert "- Use PostgreSQL for persistence `backend`" in text

    def test_outbound_links_listed(self, populated_store, workspace):
        task, decision, _ = populated_store.list_context(workspace.id)
        populated_store.link(task.id, decision.id, "depends_on")

        text = render_brief(populated_store.brief(workspace.id))

        assert "  - depends_on -> Use PostgreSQL for persistence" in text

    def test_empty_brief(self, temp_store, workspace):
        text = render_brief(temp_store.brief(workspace.id, relative_path="src"))

        assert text.startswith("# demo context (src)")
        assert "_No context recorded._" in text


class TestDigestAndProject:
    """Tests for digest and project output."""

    def test_digest_groups_by_type(self, populated_store, workspace, output_buffer):
        task, decision, _ = populated_store.list_context(workspace.id)
        populated_store.link(task.id, decision.id, "depends_on")

        print_digest(populated_store.digest(workspace.id, hours_ago(8)), 8)

        output = output_buffer.getvalue()
        assert "Digest (last 8h)" in output
        assert "1 constraint, 1 decision, 1 task, 1 link(s)" in output
        assert output.index("Constraints:") < output.index("Decisions:") < output.index("Tasks:")
        assert "just now" in output
        assert "Links created:" in output

    def test_empty_digest(self, temp_store, workspace, output_buffer):
        print_digest(temp_store.digest(workspace.id, hours_ago(1)), 1.5)

        output = output_buffer.getvalue()
        assert "Digest (last 1.5h)" in output
        assert "No context added in this period." in output

    def test_project_without_local_workspace(self, output_buffer):
        print_project("3f2b8c1e-0d4a-4b6e-9c1f-7a2d5e8b9c0d", None, "offline")

        output = output_buffer.getvalue()
        assert "no local workspace" in output
        assert "Remote:    offline" in output

    def test_project_not_synced_hint(self, workspace, output_buffer):
        print_project(workspace.project_id, workspace, "not_synced")

        output = output_buffer.getvalue()
        assert "Name:      demo" in output
        assert "Remote:    not synced" in output
        assert "substrate sync push" in output
