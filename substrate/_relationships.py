"""Links between context items and bounded graph traversal."""

import sqlite3
from dataclasses import dataclass
from typing import TYPE_CHECKING

from substrate.errors import DuplicateLinkError, NotFoundError
from substrate.models import DEFAULT_RELATION, ContextItem, Link, validate_relation
from substrate.utils import now_iso

if TYPE_CHECKING:
    from substrate._context import ContextService


@dataclass
class RelatedItem:
    """An item reached from a seed item by following links.

    ``direction`` is relative to the item the hop was taken from:
    "outbound" if that item is the link source, "inbound" if it is the target.
    """

    item: ContextItem
    direction: str
    relation: str
    hops: int


@dataclass
class LinkView:
    """A link together with the items at either end."""

    link: Link
    source: ContextItem | None
    target: ContextItem | None


class RelationshipsService:
    """Handles links between context items.

    This service provides methods for:
    - Linking items with typed, directed relations
    - Removing and listing links
    - Walking the link graph up to two hops from an item
    """

    MIN_DEPTH = 1
    MAX_DEPTH = 2

    def __init__(self, conn: sqlite3.Connection, context: "ContextService") -> None:
        """Initialize the relationships service.

        Args:
            conn: SQLite database connection.
            context: Context service used to load linked items.
        """
        self.conn = conn
        self._context = context

    # =========================================================================
    # Linking
    # =========================================================================

    def link(self, from_id: str, to_id: str, relation: str = DEFAULT_RELATION) -> Link:
        """Create a directed link between two items.

        Args:
            from_id: Source item id.
            to_id: Target item id.
            relation: One of RELATION_TYPES.

        Returns:
            The created link.

        Raises:
            ValueError: If the relation is invalid or both ids are the same.
            NotFoundError: If either item does not exist.
            DuplicateLinkError: If a link from ``from_id`` to ``to_id`` exists,
                whatever its relation.
        """
        validate_relation(relation)
        if from_id == to_id:
            raise ValueError("Cannot link an item to itself")
        self._context.require(from_id)
        self._context.require(to_id)

        if self.get_link(from_id, to_id):
            raise DuplicateLinkError(from_id, to_id)

        timestamp = now_iso()
        try:
            cursor = self.conn.execute(
                "INSERT INTO links (from_id, to_id, relation, created_at) VALUES (?, ?, ?, ?)",
                (from_id, to_id, relation, timestamp),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            # Another process linked the pair between our check and insert
            raise DuplicateLinkError(from_id, to_id) from e

        return Link(
            id=cursor.lastrowid,
            from_id=from_id,
            to_id=to_id,
            relation=relation,
            created_at=timestamp,
        )

    def get_link(self, from_id: str, to_id: str) -> Link | None:
        row = self.conn.execute(
            "SELECT * FROM links WHERE from_id = ? AND to_id = ?",
            (from_id, to_id),
        ).fetchone()
        return Link.from_row(row) if row else None

    def unlink(self, from_id: str, to_id: str) -> bool:
        """Remove the link from ``from_id`` to ``to_id``.

        Returns:
            True if a link was removed.
        """
        cursor = self.conn.execute(
            "DELETE FROM links WHERE from_id = ? AND to_id = ?",
            (from_id, to_id),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def list_links(
        self,
        item_id: str | None = None,
        workspace_id: str | None = None,
        since: str | None = None,
    ) -> list[LinkView]:
        """List links touching an item, or all links of a workspace.

        Args:
            item_id: Only links where this item is source or target.
            workspace_id: Only links whose source item is in this workspace.
            since: Only links created at or after this timestamp.

        Returns:
            Links with their endpoint items, oldest first.
        """
        query = "SELECT l.* FROM links l JOIN context c ON l.from_id = c.id"
        conditions = []
        params: list[str] = []
        if item_id:
            conditions.append("(l.from_id = ? OR l.to_id = ?)")
            params.extend([item_id, item_id])
        if workspace_id:
            conditions.append("c.workspace_id = ?")
            params.append(workspace_id)
        if since:
            conditions.append("l.created_at >= ?")
            params.append(since)
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY l.created_at, l.id"

        views = []
        for row in self.conn.execute(query, params).fetchall():
            link = Link.from_row(row)
            views.append(
                LinkView(
                    link=link,
                    source=self._context.get(link.from_id),
                    target=self._context.get(link.to_id),
                )
            )
        return views

    def pending_links(self, workspace_id: str) -> list[Link]:
        """Links created after their source item was last synced."""
        rows = self.conn.execute(
            """
            SELECT l.* FROM links l
            JOIN context c ON l.from_id = c.id
            WHERE c.workspace_id = ?
              AND l.created_at > COALESCE(c.synced_at, '1970-01-01')
            ORDER BY l.created_at, l.id
            """,
            (workspace_id,),
        ).fetchall()
        return [Link.from_row(row) for row in rows]

    def count_created_between(self, workspace_id: str, start: str, end: str) -> int:
        row = self.conn.execute(
            """
            SELECT COUNT(*) AS count FROM links l
            JOIN context c ON l.from_id = c.id
            WHERE c.workspace_id = ? AND l.created_at >= ? AND l.created_at <= ?
            """,
            (workspace_id, start, end),
        ).fetchone()
        return row["count"] if row else 0

    # =========================================================================
    # Graph traversal
    # =========================================================================

    def _edges(self, item_id: str) -> list[tuple[str, str, str]]:
        """Direct neighbours of an item as (neighbour_id, direction, relation)."""
        edges = []
        for row in self.conn.execute(
            "SELECT to_id, relation FROM links WHERE from_id = ? ORDER BY created_at, id",
            (item_id,),
        ).fetchall():
            edges.append((row["to_id"], "outbound", row["relation"]))
        for row in self.conn.execute(
            "SELECT from_id, relation FROM links WHERE to_id = ? ORDER BY created_at, id",
            (item_id,),
        ).fetchall():
            edges.append((row["from_id"], "inbound", row["relation"]))
        return edges

    def related(self, item_id: str, depth: int = 1) -> list[RelatedItem]:
        """Find items linked to ``item_id`` within ``depth`` hops.

        Links are followed in both directions. Each item is reported once, at
        the smallest hop count it was reached with; deleted items are skipped.

        Args:
            item_id: Seed item id.
            depth: Number of hops, clamped to 1..2.

        Returns:
            Related items, hop-1 items first.

        Raises:
            NotFoundError: If the seed item does not exist.
        """
        self._context.require(item_id)
        depth = max(self.MIN_DEPTH, min(self.MAX_DEPTH, depth))

        seen = {item_id}
        results: list[RelatedItem] = []
        frontier = [item_id]
        for hop in range(1, depth + 1):
            next_frontier = []
            for current in frontier:
                for neighbour_id, direction, relation in self._edges(current):
                    if neighbour_id in seen:
                        continue
                    seen.add(neighbour_id)
                    neighbour = self._context.get(neighbour_id)
                    if neighbour is None:
                        continue
                    results.append(
                        RelatedItem(
                            item=neighbour,
                            direction=direction,
                            relation=relation,
                            hops=hop,
                        )
                    )
                    next_frontier.append(neighbour_id)
            frontier = next_frontier
        return results
