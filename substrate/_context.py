"""Context item storage: CRUD, filtered listing and sync bookkeeping."""

import sqlite3
from datetime import timedelta
from typing import Any

from substrate._resolver import scope_matches
from substrate.errors import AmbiguousReferenceError, NotFoundError
from substrate.models import (
    DEFAULT_CONTEXT_TYPE,
    GLOBAL_SCOPE,
    ContextItem,
    validate_context_type,
)
from substrate.utils import (
    escape_like_pattern,
    format_timestamp,
    generate_id,
    meta_to_json,
    now_iso,
    parse_tags,
    parse_timestamp,
    tags_to_json,
)

LIVE = "deleted_at IS NULL"


class ContextService:
    """Handles context items within workspaces.

    Normal writes always bump ``updated_at`` and never touch ``synced_at``;
    only the sync methods at the bottom of this class stamp ``synced_at``.
    """

    MAX_CONTENT_LENGTH = 100_000
    DEFAULT_LIST_LIMIT = 50

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize the context service.

        Args:
            conn: SQLite database connection.
        """
        self.conn = conn

    # =========================================================================
    # CRUD
    # =========================================================================

    def add(
        self,
        workspace_id: str,
        content: str,
        context_type: str = DEFAULT_CONTEXT_TYPE,
        tags: str | list[str] | None = None,
        scope: str = GLOBAL_SCOPE,
        meta: dict[str, Any] | None = None,
    ) -> ContextItem:
        """Insert a new context item.

        Args:
            workspace_id: Owning workspace.
            content: Item text.
            context_type: One of CONTEXT_TYPES.
            tags: Tags as list or comma-separated string.
            scope: Path prefix the item applies to, or "*" for global.
            meta: Free-form metadata.

        Returns:
            The stored item.

        Raises:
            ValueError: If content is empty or too long, or the type is invalid.
        """
        content = self._validate_content(content)
        validate_context_type(context_type)
        timestamp = now_iso()
        item = ContextItem(
            id=generate_id(),
            workspace_id=workspace_id,
            type=context_type,
            content=content,
            tags=parse_tags(tags),
            scope=scope or GLOBAL_SCOPE,
            meta=meta or {},
            created_at=timestamp,
            updated_at=timestamp,
        )
        self._insert(item)
        self.conn.commit()
        return item

    def get(self, item_id: str, include_deleted: bool = False) -> ContextItem | None:
        query = "SELECT * FROM context WHERE id = ?"
        if not include_deleted:
            query += f" AND {LIVE}"
        row = self.conn.execute(query, (item_id,)).fetchone()
        return ContextItem.from_row(row) if row else None

    def require(self, item_id: str) -> ContextItem:
        """Get a live item by full id.

        Raises:
            NotFoundError: If the item does not exist or is deleted.
        """
        item = self.get(item_id)
        if item is None:
            raise NotFoundError(f"Context not found: {item_id}")
        return item

    def find_by_prefix(self, workspace_id: str, prefix: str) -> ContextItem:
        """Resolve a full or shortened id within a workspace.

        Args:
            workspace_id: Workspace to search.
            prefix: Full id or leading characters of one.

        Returns:
            The single matching live item.

        Raises:
            NotFoundError: If nothing matches.
            AmbiguousReferenceError: If more than one item matches.
        """
        prefix = prefix.strip()
        if not prefix:
            raise NotFoundError("Context id cannot be empty")
        rows = self.conn.execute(
            f"""
            SELECT * FROM context
            WHERE workspace_id = ? AND id LIKE ? ESCAPE '\\' AND {LIVE}
            ORDER BY created_at, rowid
            """,
            (workspace_id, escape_like_pattern(prefix) + "%"),
        ).fetchall()
        if not rows:
            raise NotFoundError(f"Context not found: {prefix}")
        if len(rows) > 1:
            raise AmbiguousReferenceError(prefix, [ContextItem.from_row(r) for r in rows])
        return ContextItem.from_row(rows[0])

    def list_items(
        self,
        workspace_id: str,
        context_type: str | None = None,
        tags: str | list[str] | None = None,
        scope_path: str | None = None,
        since: str | None = None,
        limit: int | None = DEFAULT_LIST_LIMIT,
        query: str | None = None,
    ) -> list[ContextItem]:
        """List live items in a workspace, newest first.

        Args:
            workspace_id: Workspace to list.
            context_type: Only items of this type.
            tags: Only items carrying every one of these tags.
            scope_path: Only items visible at this mount-relative path.
            since: Only items created at or after this timestamp.
            limit: Maximum number of items (None for all).
            query: Only items whose content contains this text (case-insensitive).

        Returns:
            Matching items.
        """
        conditions = ["workspace_id = ?", LIVE]
        params: list[Any] = [workspace_id]
        if context_type:
            validate_context_type(context_type)
            conditions.append("type = ?")
            params.append(context_type)
        if since:
            conditions.append("created_at >= ?")
            params.append(since)
        if query:
            conditions.append("content LIKE ? ESCAPE '\\'")
            params.append(f"%{escape_like_pattern(query)}%")

        rows = self.conn.execute(
            f"""
            SELECT * FROM context WHERE {' AND '.join(conditions)}
            ORDER BY created_at DESC, rowid DESC
            """,
            params,
        ).fetchall()

        wanted_tags = parse_tags(tags)
        results = []
        for row in rows:
            item = ContextItem.from_row(row)
            # Tags and scope are filtered after the query
            if wanted_tags and not all(tag in item.tags for tag in wanted_tags):
                continue
            if scope_path is not None and not scope_matches(item.scope, scope_path):
                continue
            results.append(item)
            if limit is not None and len(results) >= limit:
                break
        return results

    def recent(self, workspace_id: str, limit: int) -> list[ContextItem]:
        """Most recently created live items, newest first."""
        rows = self.conn.execute(
            f"""
            SELECT * FROM context WHERE workspace_id = ? AND {LIVE}
            ORDER BY created_at DESC, rowid DESC LIMIT ?
            """,
            (workspace_id, limit),
        ).fetchall()
        return [ContextItem.from_row(row) for row in rows]

    def update(
        self,
        item_id: str,
        content: str | None = None,
        context_type: str | None = None,
        tags: str | list[str] | None = None,
        scope: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> ContextItem:
        """Update fields of a live item.

        Only provided fields change. ``updated_at`` always advances past the
        item's last sync so the change is picked up by the next push.

        Raises:
            NotFoundError: If the item does not exist.
            ValueError: If new content or type is invalid.
        """
        item = self.require(item_id)
        updates: dict[str, Any] = {}
        if content is not None:
            updates["content"] = self._validate_content(content)
        if context_type is not None:
            updates["type"] = validate_context_type(context_type)
        if tags is not None:
            updates["tags"] = tags_to_json(tags)
        if scope is not None:
            updates["scope"] = scope or GLOBAL_SCOPE
        if meta is not None:
            updates["meta"] = meta_to_json(meta)
        if not updates:
            return item

        updates["updated_at"] = self._next_timestamp(item)
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        self.conn.execute(
            f"UPDATE context SET {set_clause} WHERE id = ?",
            (*updates.values(), item_id),
        )
        self.conn.commit()
        return self.require(item_id)

    def delete(self, item_id: str) -> bool:
        """Soft-delete an item.

        The row is kept so the deletion can be pushed to the remote.

        Returns:
            True if a live item was deleted.
        """
        item = self.get(item_id)
        if item is None:
            return False
        timestamp = self._next_timestamp(item)
        self.conn.execute(
            "UPDATE context SET deleted_at = ?, updated_at = ? WHERE id = ?",
            (timestamp, timestamp, item_id),
        )
        self.conn.commit()
        return True

    def count_by_type(
        self,
        workspace_id: str,
        start: str,
        end: str,
    ) -> dict[str, int]:
        """Count live items created in ``[start, end]`` grouped by type."""
        rows = self.conn.execute(
            f"""
            SELECT type, COUNT(*) AS count FROM context
            WHERE workspace_id = ? AND created_at >= ? AND created_at <= ? AND {LIVE}
            GROUP BY type
            """,
            (workspace_id, start, end),
        ).fetchall()
        return {row["type"]: row["count"] for row in rows}

    # =========================================================================
    # Sync bookkeeping
    # =========================================================================

    def pending_push(self, workspace_id: str) -> list[ContextItem]:
        """Items with local changes the remote has not seen, oldest first.

        Never-synced live items, plus previously synced items (deleted or
        not) whose ``updated_at`` moved past ``synced_at``.
        """
        rows = self.conn.execute(
            """
            SELECT * FROM context
            WHERE workspace_id = ?
              AND ((synced_at IS NULL AND deleted_at IS NULL)
                   OR (synced_at IS NOT NULL AND updated_at > synced_at))
            ORDER BY created_at ASC, rowid ASC
            """,
            (workspace_id,),
        ).fetchall()
        return [ContextItem.from_row(row) for row in rows]

    def last_synced_at(self, workspace_id: str) -> str | None:
        """High-water mark of ``synced_at`` across the workspace's items."""
        row = self.conn.execute(
            "SELECT MAX(synced_at) AS last_sync FROM context WHERE workspace_id = ?",
            (workspace_id,),
        ).fetchone()
        return row["last_sync"] if row else None

    def find_by_identity(self, identity: str) -> ContextItem | None:
        """Find an item, deleted or not, by local id or remote id."""
        row = self.conn.execute(
            "SELECT * FROM context WHERE id = ? OR remote_id = ? LIMIT 1",
            (identity, identity),
        ).fetchone()
        return ContextItem.from_row(row) if row else None

    def mark_synced(self, item_id: str, remote_id: str, synced_at: str) -> None:
        self.conn.execute(
            "UPDATE context SET remote_id = ?, synced_at = ? WHERE id = ?",
            (remote_id, synced_at, item_id),
        )
        self.conn.commit()

    def insert_from_remote(
        self,
        workspace_id: str,
        remote: dict[str, Any],
        synced_at: str,
    ) -> ContextItem:
        """Insert an item first seen on the remote.

        The remote id becomes both the local id and ``remote_id``.
        """
        created_at = remote.get("created_at") or synced_at
        item = ContextItem(
            id=remote["id"],
            workspace_id=workspace_id,
            type=remote.get("type") or DEFAULT_CONTEXT_TYPE,
            content=remote.get("content") or "",
            tags=parse_tags(remote.get("tags")),
            scope=remote.get("scope") or GLOBAL_SCOPE,
            meta=remote.get("meta") or {},
            remote_id=remote["id"],
            created_at=created_at,
            updated_at=remote.get("updated_at") or created_at,
            synced_at=synced_at,
            deleted_at=remote.get("deleted_at"),
        )
        self._insert(item)
        self.conn.commit()
        return item

    def apply_remote(self, item_id: str, remote: dict[str, Any], synced_at: str) -> None:
        """Overwrite the mutable fields of a local item with a remote copy."""
        self.conn.execute(
            """
            UPDATE context
            SET type = ?, content = ?, tags = ?, scope = ?, meta = ?,
                updated_at = ?, deleted_at = ?, synced_at = ?
            WHERE id = ?
            """,
            (
                remote.get("type") or DEFAULT_CONTEXT_TYPE,
                remote.get("content") or "",
                tags_to_json(remote.get("tags")),
                remote.get("scope") or GLOBAL_SCOPE,
                meta_to_json(remote.get("meta")),
                remote.get("updated_at"),
                remote.get("deleted_at"),
                synced_at,
                item_id,
            ),
        )
        self.conn.commit()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _insert(self, item: ContextItem) -> None:
        self.conn.execute(
            """
            INSERT INTO context (
                id, workspace_id, type, content, tags, scope, meta,
                remote_id, created_at, updated_at, synced_at, deleted_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.workspace_id,
                item.type,
                item.content,
                tags_to_json(item.tags),
                item.scope,
                meta_to_json(item.meta),
                item.remote_id,
                item.created_at,
                item.updated_at,
                item.synced_at,
                item.deleted_at,
            ),
        )

    def _validate_content(self, content: str) -> str:
        content = (content or "").strip()
        if not content:
            raise ValueError("Content cannot be empty")
        if len(content) > self.MAX_CONTENT_LENGTH:
            raise ValueError(
                f"Content exceeds maximum length of {self.MAX_CONTENT_LENGTH} characters"
            )
        return content

    @staticmethod
    def _next_timestamp(item: ContextItem) -> str:
        """A modification time strictly after the item's last sync."""
        timestamp = now_iso()
        floor = max(filter(None, (item.synced_at, item.updated_at)))
        if timestamp <= floor:
            last = parse_timestamp(floor)
            if last is not None:
                timestamp = format_timestamp(last + timedelta(milliseconds=1))
        return timestamp
