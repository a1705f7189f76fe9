"""Workspace and mount management."""

import sqlite3
from dataclasses import dataclass
from typing import Any

from substrate._resolver import relative_path, resolve_mount
from substrate.errors import NotFoundError
from substrate.models import GLOBAL_SCOPE, Mount, Workspace
from substrate.utils import generate_id, normalize_path, now_iso, tags_to_json


@dataclass
class Resolution:
    """Outcome of resolving a path to a workspace."""

    mount: Mount
    workspace: Workspace
    relative_path: str


class WorkspaceService:
    """Handles workspaces, their mounts, and path resolution.

    This service provides methods for:
    - Creating, renaming and soft-deleting workspaces
    - Mounting directories onto workspaces
    - Resolving a filesystem path to the workspace that owns it
    - Binding a workspace to its remote counterpart
    """

    MAX_NAME_LENGTH = 200

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialize the workspace service.

        Args:
            conn: SQLite database connection.
        """
        self.conn = conn

    # =========================================================================
    # Workspaces
    # =========================================================================

    def create(
        self,
        name: str,
        description: str | None = None,
        project_id: str | None = None,
    ) -> Workspace:
        """Create a new workspace.

        Args:
            name: Workspace name, unique among live workspaces.
            description: Optional description.
            project_id: Cross-machine project identifier (generated if omitted).

        Returns:
            The created workspace.

        Raises:
            ValueError: If the name is empty, too long, or already in use.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Workspace name cannot be empty")
        if len(name) > self.MAX_NAME_LENGTH:
            raise ValueError(f"Workspace name exceeds maximum length of {self.MAX_NAME_LENGTH}")
        if self.get_by_name(name):
            raise ValueError(f"Workspace '{name}' already exists")
        if project_id and self.get_by_project_id(project_id):
            raise ValueError(f"Project id already in use: {project_id}")

        timestamp = now_iso()
        workspace = Workspace(
            id=generate_id(),
            name=name,
            description=description,
            project_id=project_id or generate_id(),
            created_at=timestamp,
            updated_at=timestamp,
        )
        self.conn.execute(
            """
            INSERT INTO workspaces (id, name, description, project_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                workspace.id,
                workspace.name,
                workspace.description,
                workspace.project_id,
                workspace.created_at,
                workspace.updated_at,
            ),
        )
        self.conn.commit()
        return workspace

    def get(self, workspace_id: str) -> Workspace | None:
        row = self.conn.execute(
            "SELECT * FROM workspaces WHERE id = ? AND deleted_at IS NULL",
            (workspace_id,),
        ).fetchone()
        return Workspace.from_row(row) if row else None

    def get_by_name(self, name: str) -> Workspace | None:
        row = self.conn.execute(
            "SELECT * FROM workspaces WHERE name = ? AND deleted_at IS NULL",
            (name,),
        ).fetchone()
        return Workspace.from_row(row) if row else None

    def get_by_project_id(self, project_id: str) -> Workspace | None:
        row = self.conn.execute(
            "SELECT * FROM workspaces WHERE project_id = ? AND deleted_at IS NULL",
            (project_id,),
        ).fetchone()
        return Workspace.from_row(row) if row else None

    def require(self, workspace_id: str) -> Workspace:
        """Get a workspace by id.

        Raises:
            NotFoundError: If no live workspace has this id.
        """
        workspace = self.get(workspace_id)
        if workspace is None:
            raise NotFoundError(f"Workspace not found: {workspace_id}")
        return workspace

    def list_workspaces(self) -> list[Workspace]:
        rows = self.conn.execute(
            "SELECT * FROM workspaces WHERE deleted_at IS NULL ORDER BY name"
        ).fetchall()
        return [Workspace.from_row(row) for row in rows]

    def update(
        self,
        workspace_id: str,
        name: str | None = None,
        description: str | None = None,
    ) -> Workspace:
        """Rename a workspace or change its description.

        Raises:
            NotFoundError: If the workspace does not exist.
            ValueError: If the new name is empty or taken.
        """
        workspace = self.require(workspace_id)
        updates: dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError("Workspace name cannot be empty")
            other = self.get_by_name(name)
            if other and other.id != workspace_id:
                raise ValueError(f"Workspace '{name}' already exists")
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if not updates:
            return workspace

        updates["updated_at"] = now_iso()
        set_clause = ", ".join(f"{column} = ?" for column in updates)
        self.conn.execute(
            f"UPDATE workspaces SET {set_clause} WHERE id = ?",
            (*updates.values(), workspace_id),
        )
        self.conn.commit()
        return self.require(workspace_id)

    def delete(self, workspace_id: str) -> bool:
        """Soft-delete a workspace and remove its mounts.

        Returns:
            True if a live workspace was deleted.
        """
        timestamp = now_iso()
        cursor = self.conn.execute(
            """
            UPDATE workspaces SET deleted_at = ?, updated_at = ?
            WHERE id = ? AND deleted_at IS NULL
            """,
            (timestamp, timestamp, workspace_id),
        )
        self.conn.execute("DELETE FROM mounts WHERE workspace_id = ?", (workspace_id,))
        self.conn.commit()
        return cursor.rowcount > 0

    def bind_remote(self, workspace_id: str, remote_id: str) -> Workspace:
        """Record the remote workspace id for a workspace.

        Used by the sync engine after the remote creates the workspace.
        """
        timestamp = now_iso()
        self.conn.execute(
            "UPDATE workspaces SET remote_id = ?, synced_at = ? WHERE id = ?",
            (remote_id, timestamp, workspace_id),
        )
        self.conn.commit()
        return self.require(workspace_id)

    # =========================================================================
    # Mounts
    # =========================================================================

    def add_mount(
        self,
        workspace_id: str,
        path: str,
        scope: str = GLOBAL_SCOPE,
        tags: str | list[str] | None = None,
    ) -> Mount:
        """Mount a directory onto a workspace.

        Args:
            workspace_id: Workspace to mount onto.
            path: Directory path (normalized to an absolute path).
            scope: Default scope for items added under this mount.
            tags: Default tags for items added under this mount.

        Returns:
            The created mount.

        Raises:
            NotFoundError: If the workspace does not exist.
            ValueError: If the path is already mounted.
        """
        self.require(workspace_id)
        abs_path = normalize_path(path)
        existing = self.get_mount(abs_path)
        if existing:
            raise ValueError(f"Path already mounted: {abs_path}")

        timestamp = now_iso()
        cursor = self.conn.execute(
            """
            INSERT INTO mounts (workspace_id, path, scope, tags, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                workspace_id,
                abs_path,
                scope or GLOBAL_SCOPE,
                tags_to_json(tags),
                timestamp,
                timestamp,
            ),
        )
        self.conn.commit()
        row = self.conn.execute("SELECT * FROM mounts WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return Mount.from_row(row)

    def get_mount(self, path: str) -> Mount | None:
        row = self.conn.execute(
            "SELECT * FROM mounts WHERE path = ?", (normalize_path(path),)
        ).fetchone()
        return Mount.from_row(row) if row else None

    def remove_mount(self, path: str) -> bool:
        """Remove the mount at exactly ``path``.

        Returns:
            True if a mount was removed.
        """
        cursor = self.conn.execute("DELETE FROM mounts WHERE path = ?", (normalize_path(path),))
        self.conn.commit()
        return cursor.rowcount > 0

    def list_mounts(self, workspace_id: str | None = None) -> list[Mount]:
        if workspace_id:
            rows = self.conn.execute(
                "SELECT * FROM mounts WHERE workspace_id = ? ORDER BY path",
                (workspace_id,),
            ).fetchall()
        else:
            rows = self.conn.execute("SELECT * FROM mounts ORDER BY path").fetchall()
        return [Mount.from_row(row) for row in rows]

    def resolve(self, path: str) -> Resolution | None:
        """Resolve a path to the workspace of its longest covering mount.

        Args:
            path: Filesystem path.

        Returns:
            Resolution with mount, workspace and path relative to the mount,
            or None if the path is not under any mount of a live workspace.
        """
        abs_path = normalize_path(path)
        mount = resolve_mount(abs_path, self.list_mounts())
        if mount is None:
            return None
        workspace = self.get(mount.workspace_id)
        if workspace is None:
            return None
        return Resolution(
            mount=mount,
            workspace=workspace,
            relative_path=relative_path(abs_path, mount),
        )
