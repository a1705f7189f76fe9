"""Tests for work session tracking."""

import pytest

from substrate.errors import NotFoundError


class TestSessionLifecycle:
    """Tests for starting and ending sessions."""

    def test_start_session(self, temp_store, workspace):
        session = temp_store.start_session(workspace.id, "refactor")

        assert session.name == "refactor"
        assert session.is_active
        assert temp_store.get_active_session(workspace.id).id == session.id

    def test_start_requires_workspace(self, temp_store):
        with pytest.raises(NotFoundError):
            temp_store.start_session("missing")

    def test_end_session(self, temp_store, workspace):
        session = temp_store.start_session(workspace.id)

        ended = temp_store.end_session(session.id)

        assert not ended.is_active
        assert ended.ended_at >= ended.started_at
        assert temp_store.get_active_session(workspace.id) is None

    def test_end_twice_rejected(self, temp_store, workspace):
        session = temp_store.start_session(workspace.id)
        temp_store.end_session(session.id)

        with pytest.raises(ValueError, match="already ended"):
            temp_store.end_session(session.id)

    def test_end_missing_session(self, temp_store):
        with pytest.raises(NotFoundError):
            temp_store.end_session("missing")

    def test_active_is_most_recent(self, temp_store, workspace):
        temp_store.start_session(workspace.id, "first")
        second = temp_store.start_session(workspace.id, "second")

        assert temp_store.get_active_session(workspace.id).id == second.id

    def test_list_sessions_newest_first(self, temp_store, workspace):
        for name in ("one", "two", "three"):
            temp_store.start_session(workspace.id, name)

        sessions = temp_store.list_sessions(workspace.id)
        assert [s.name for s in sessions] == ["three", "two", "one"]
        assert len(temp_store.list_sessions(workspace.id, limit=2)) == 2

    def test_sessions_scoped_to_workspace(self, temp_store, workspace):
        other = temp_store.create_workspace("other")
        temp_store.start_session(other.id)

        assert temp_store.get_active_session(workspace.id) is None
        assert temp_store.list_sessions(workspace.id) == []


class TestSessionStats:
    """Tests for activity attributed to a session window."""

    def test_counts_activity_in_window(self, temp_store, workspace):
        before = temp_store.add(workspace.id, "Recorded before the session")
        session = temp_store.start_session(workspace.id)
        decision = temp_store.add(workspace.id, "Adopt structured logging", context_type="decision")
        note = temp_store.add(workspace.id, "Retry budget is three attempts", force=True)
        temp_store.link(decision.id, note.id)
        temp_store.link(decision.id, before.id)

        stats = temp_store.session_stats(session)

        assert stats.context_by_type == {"decision": 1, "note": 1}
        assert stats.total_context == 2
        assert stats.links == 2
        assert stats.duration == "0m"

    def test_deleted_items_not_counted(self, temp_store, workspace):
        session = temp_store.start_session(workspace.id)
        item = temp_store.add(workspace.id, "Short-lived note")
        temp_store.delete(item.id)

        assert temp_store.session_stats(session).total_context == 0

    def test_ended_session_excludes_later_activity(self, temp_store, workspace):
        session = temp_store.start_session(workspace.id)
        temp_store.conn.execute(
            "UPDATE sessions SET started_at = ?, ended_at = ? WHERE id = ?",
            ("2000-01-01T00:00:00.000Z", "2000-01-01T01:30:00.000Z", session.id),
        )
        temp_store.conn.commit()
        temp_store.add(workspace.id, "Added after the session closed")

        closed = temp_store.sessions.get(session.id)
        stats = temp_store.session_stats(closed)
        assert stats.total_context == 0
        assert stats.duration == "1h 30m"
