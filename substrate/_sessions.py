"""Work session tracking."""

import sqlite3
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from substrate.errors import NotFoundError
from substrate.models import Session
from substrate.utils import format_duration, generate_id, now_iso

if TYPE_CHECKING:
    from substrate._context import ContextService
    from substrate._relationships import RelationshipsService


@dataclass
class SessionStats:
    """Activity recorded during a session window."""

    context_by_type: dict[str, int] = field(default_factory=dict)
    links: int = 0
    duration: str = "0m"

    @property
    def total_context(self) -> int:
        return sum(self.context_by_type.values())


class SessionTracker:
    """Tracks work sessions within a workspace.

    Sessions are time windows; activity is attributed to a session by
    timestamp rather than by a foreign key on each item.
    """

    DEFAULT_LIST_LIMIT = 10

    def __init__(
        self,
        conn: sqlite3.Connection,
        context: "ContextService",
        relationships: "RelationshipsService",
    ) -> None:
        """Initialize the session tracker.

        Args:
            conn: SQLite database connection.
            context: Context service, for counting items in a window.
            relationships: Relationships service, for counting links.
        """
        self.conn = conn
        self._context = context
        self._relationships = relationships

    def start(self, workspace_id: str, name: str | None = None) -> Session:
        """Open a new session.

        Does not check for an already active session; callers decide whether
        overlapping sessions are allowed.
        """
        session = Session(
            id=generate_id(),
            workspace_id=workspace_id,
            name=name,
            started_at=now_iso(),
        )
        self.conn.execute(
            "INSERT INTO sessions (id, workspace_id, name, started_at) VALUES (?, ?, ?, ?)",
            (session.id, session.workspace_id, session.name, session.started_at),
        )
        self.conn.commit()
        return session

    def end(self, session_id: str) -> Session:
        """Close a session.

        Raises:
            NotFoundError: If the session does not exist.
            ValueError: If the session has already ended.
        """
        session = self.get(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        if not session.is_active:
            raise ValueError(f"Session already ended: {session_id[:8]}")
        ended_at = now_iso()
        self.conn.execute(
            "UPDATE sessions SET ended_at = ? WHERE id = ?",
            (ended_at, session_id),
        )
        self.conn.commit()
        session.ended_at = ended_at
        return session

    def get(self, session_id: str) -> Session | None:
        row = self.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return Session.from_row(row) if row else None

    def get_active(self, workspace_id: str) -> Session | None:
        """Most recently started open session of a workspace."""
        row = self.conn.execute(
            """
            SELECT * FROM sessions
            WHERE workspace_id = ? AND ended_at IS NULL
            ORDER BY started_at DESC, rowid DESC LIMIT 1
            """,
            (workspace_id,),
        ).fetchone()
        return Session.from_row(row) if row else None

    def list_sessions(self, workspace_id: str, limit: int = DEFAULT_LIST_LIMIT) -> list[Session]:
        rows = self.conn.execute(
            """
            SELECT * FROM sessions WHERE workspace_id = ?
            ORDER BY started_at DESC, rowid DESC LIMIT ?
            """,
            (workspace_id, limit),
        ).fetchall()
        return [Session.from_row(row) for row in rows]

    def stats(self, session: Session) -> SessionStats:
        """Count context and links created within the session window."""
        end = session.ended_at or now_iso()
        return SessionStats(
            context_by_type=self._context.count_by_type(
                session.workspace_id, session.started_at, end
            ),
            links=self._relationships.count_created_between(
                session.workspace_id, session.started_at, end
            ),
            duration=format_duration(session.started_at, session.ended_at),
        )
