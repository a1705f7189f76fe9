"""Core local context store."""

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from substrate._config import ConfigManager, get_home
from substrate._context import ContextService
from substrate._relationships import LinkView, RelatedItem, RelationshipsService
from substrate._sessions import SessionStats, SessionTracker
from substrate._similarity import SimilarityGuard, SimilarMatch
from substrate._sync import (
    PROJECT_OFFLINE,
    PullResult,
    PushResult,
    SyncManager,
    SyncResult,
    SyncStatus,
)
from substrate._workspaces import Resolution, WorkspaceService
from substrate.api_client import RemoteTransport, is_offline
from substrate.errors import DuplicateContentError, RemoteError
from substrate.models import (
    CONTEXT_TYPES,
    DEFAULT_CONTEXT_TYPE,
    DEFAULT_RELATION,
    GLOBAL_SCOPE,
    ContextItem,
    Link,
    Mount,
    Session,
    Workspace,
)
from substrate.utils import generate_id, is_uuid

logger = logging.getLogger(__name__)

# Order in which types are presented in a brief
BRIEF_TYPE_ORDER = ("constraint", "decision", "task", "note", "entity", "runbook", "snippet")


@dataclass
class Brief:
    """Context visible at a location, grouped by type."""

    workspace: Workspace
    relative_path: str
    sections: dict[str, list[ContextItem]] = field(default_factory=dict)
    links: dict[str, list[LinkView]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(len(items) for items in self.sections.values())


@dataclass
class Digest:
    """Context and links added to a workspace since a point in time."""

    workspace: Workspace
    since: str
    items: list[ContextItem] = field(default_factory=list)
    links: list[LinkView] = field(default_factory=list)

    def counts_by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.items:
            counts[item.type] = counts.get(item.type, 0) + 1
        return counts


@dataclass
class ProjectJoin:
    """Local workspace found or created for a project id.

    ``source`` is "local" for an existing workspace, "remote" for one created
    from the remote record, or "placeholder" when the remote was unreachable.
    """

    workspace: Workspace
    source: str



class ContextStore:
    """Local store of workspaces, context, links and sessions in SQLite.

    The store is an explicit object: construct one, pass it where needed, and
    close it when done. Domain logic lives in the services it wires together.
    """

    DB_FILE_NAME = "local.db"

    # Name prefix of workspaces created for a project the remote could not confirm
    PLACEHOLDER_NAME = "pending-sync"

    # Seconds a writer waits on a locked database before failing
    DEFAULT_BUSY_TIMEOUT = 30.0

    def __init__(
        self,
        base_path: str | Path | None = None,
        transport: RemoteTransport | None = None,
    ):
        """Initialize the context store.

        Args:
            base_path: Directory for the database and config
                ($SUBSTRATE_HOME or ~/.substrate by default).
            transport: Remote service client; required for sync operations.
        """
        self.base_path = Path(base_path).expanduser() if base_path else get_home()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.sqlite_path = self.base_path / self.DB_FILE_NAME

        self.config = ConfigManager(self.base_path)
        self._init_sqlite()
        self._init_services()

        self.transport = transport
        self._sync = SyncManager(self, transport) if transport is not None else None

    def _init_sqlite(self) -> None:
        """Initialize SQLite database and create tables if needed."""
        self.conn = sqlite3.connect(str(self.sqlite_path), timeout=self.DEFAULT_BUSY_TIMEOUT)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()
        self._migrate_schema()
        self._create_indexes()

    def _init_services(self) -> None:
        self.workspaces = WorkspaceService(self.conn)
        self.context = ContextService(self.conn)
        self.similarity = SimilarityGuard(self.context)
        self.links = RelationshipsService(self.conn, self.context)
        self.sessions = SessionTracker(self.conn, self.context, self.links)

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                project_id TEXT,
                remote_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                synced_at TEXT,
                deleted_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS mounts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                path TEXT NOT NULL UNIQUE,
                scope TEXT DEFAULT '*',
                tags TEXT DEFAULT '[]',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS context (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                type TEXT NOT NULL DEFAULT 'note',
                content TEXT NOT NULL,
                tags TEXT DEFAULT '[]',
                scope TEXT DEFAULT '*',
                meta TEXT DEFAULT '{}',
                remote_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                synced_at TEXT,
                deleted_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS links (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                from_id TEXT NOT NULL REFERENCES context(id),
                to_id TEXT NOT NULL REFERENCES context(id),
                relation TEXT NOT NULL DEFAULT 'relates_to',
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                name TEXT,
                started_at TEXT NOT NULL,
                ended_at TEXT
            )
        """)
        self.conn.commit()

    def _migrate_schema(self) -> None:
        """Apply schema migrations for existing databases."""
        cursor = self.conn.cursor()

        cursor.execute("PRAGMA table_info(workspaces)")
        columns = {row[1] for row in cursor.fetchall()}
        if "deleted_at" not in columns:
            cursor.execute("ALTER TABLE workspaces ADD COLUMN deleted_at TEXT")
        if "project_id" not in columns:
            cursor.execute("ALTER TABLE workspaces ADD COLUMN project_id TEXT")
        # Backfill so the unique index has a value per workspace
        cursor.execute("SELECT id FROM workspaces WHERE project_id IS NULL")
        for row in cursor.fetchall():
            cursor.execute(
                "UPDATE workspaces SET project_id = ? WHERE id = ?",
                (generate_id(), row[0]),
            )

        cursor.execute("PRAGMA table_info(context)")
        columns = {row[1] for row in cursor.fetchall()}
        if "deleted_at" not in columns:
            cursor.execute("ALTER TABLE context ADD COLUMN deleted_at TEXT")

        # Older databases may hold repeated links; keep the first of each pair
        cursor.execute("""
            DELETE FROM links WHERE id NOT IN (
                SELECT MIN(id) FROM links GROUP BY from_id, to_id
            )
        """)
        if cursor.rowcount > 0:
            logger.info("Removed %d duplicate links during migration", cursor.rowcount)

        self.conn.commit()

    def _create_indexes(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_mounts_path ON mounts(path)")
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_context_workspace ON context(workspace_id)"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_context_type ON context(type)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_context_synced ON context(synced_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_workspaces_synced ON workspaces(synced_at)")
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_workspaces_project_id "
            "ON workspaces(project_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_workspace ON sessions(workspace_id)"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_active ON sessions(ended_at)")
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_links_pair ON links(from_id, to_id)"
        )
        self.conn.commit()

    # =========================================================================
    # Workspaces and mounts
    # =========================================================================

    def create_workspace(
        self,
        name: str,
        description: str | None = None,
        project_id: str | None = None,
    ) -> Workspace:
        return self.workspaces.create(name, description=description, project_id=project_id)

    def get_workspace(self, workspace_id: str) -> Workspace | None:
        return self.workspaces.get(workspace_id)

    def find_workspace(self, name: str) -> Workspace | None:
        """Find a workspace by name, id, or project id."""
        return (
            self.workspaces.get_by_name(name)
            or self.workspaces.get(name)
            or self.workspaces.get_by_project_id(name)
        )

    def list_workspaces(self) -> list[Workspace]:
        return self.workspaces.list_workspaces()

    def add_mount(
        self,
        workspace_id: str,
        path: str,
        scope: str = GLOBAL_SCOPE,
        tags: str | list[str] | None = None,
    ) -> Mount:
        return self.workspaces.add_mount(workspace_id, path, scope=scope, tags=tags)

    def remove_mount(self, path: str) -> bool:
        return self.workspaces.remove_mount(path)

    def list_mounts(self, workspace_id: str | None = None) -> list[Mount]:
        return self.workspaces.list_mounts(workspace_id)

    def resolve(self, path: str) -> Resolution | None:
        """Resolve a filesystem path to its workspace via the longest mount."""
        return self.workspaces.resolve(path)

    def join_project(self, project_id: str) -> ProjectJoin:
        """Find or create the local workspace for a project id.

        A local workspace with the project id is used as is. Otherwise the
        remote is asked for the project and a workspace bound to the remote
        one is created. If the remote cannot be reached, a placeholder
        workspace holds the project id until the next sync.

        Args:
            project_id: Project id (UUID) shared across machines.

        Returns:
            The workspace and where it came from.

        Raises:
            ValueError: If the project id is not a UUID.
            NotFoundError: If the remote has no such project.
        """
        if not is_uuid(project_id):
            raise ValueError(f"Invalid project id (expected UUID): {project_id}")
        workspace = self.workspaces.get_by_project_id(project_id)
        if workspace is not None:
            return ProjectJoin(workspace=workspace, source="local")

        record = None
        if self._sync is not None:
            try:
                record = self._sync.lookup_project(project_id)
            except RemoteError as e:
                logger.info("Project lookup failed, creating placeholder: %s", e)

        if record is None:
            workspace = self.workspaces.create(
                f"{self.PLACEHOLDER_NAME}-{project_id[:8]}", project_id=project_id
            )
            return ProjectJoin(workspace=workspace, source="placeholder")

        workspace = self.workspaces.create(
            record.get("name") or project_id[:8],
            description=record.get("description"),
            project_id=project_id,
        )
        workspace = self.workspaces.bind_remote(workspace.id, record["id"])
        logger.info("Created workspace %s from remote project %s", workspace.name, project_id)
        return ProjectJoin(workspace=workspace, source="remote")

    def project_status(self, project_id: str) -> str:
        """Remote status of a project: "synced", "not_synced" or "offline"."""
        if self._sync is None:
            return PROJECT_OFFLINE
        return self._sync.project_status(project_id)


    # =========================================================================
    # Context
    # =========================================================================

    def add(
        self,
        workspace_id: str,
        content: str,
        context_type: str = DEFAULT_CONTEXT_TYPE,
        tags: str | list[str] | None = None,
        scope: str = GLOBAL_SCOPE,
        meta: dict[str, Any] | None = None,
        force: bool = False,
    ) -> ContextItem:
        """Add context to a workspace, refusing near-duplicates.

        Args:
            workspace_id: Target workspace.
            content: Item text.
            context_type: One of CONTEXT_TYPES.
            tags: Tags as list or comma-separated string.
            scope: Path prefix the item applies to, or "*".
            meta: Free-form metadata.
            force: Skip the duplicate check.

        Returns:
            The stored item.

        Raises:
            DuplicateContentError: If similar content exists and force is False.
            NotFoundError: If the workspace does not exist.
            ValueError: If content or type is invalid.
        """
        self.workspaces.require(workspace_id)
        if not force:
            match = self.similarity.check_duplicate(workspace_id, content, context_type)
            if match:
                raise DuplicateContentError(match.item, match.similarity)
        return self.context.add(
            workspace_id,
            content,
            context_type=context_type,
            tags=tags,
            scope=scope,
            meta=meta,
        )

    def get(self, item_id: str) -> ContextItem | None:
        return self.context.get(item_id)

    def find(self, workspace_id: str, prefix: str) -> ContextItem:
        """Resolve a full or shortened item id within a workspace."""
        return self.context.find_by_prefix(workspace_id, prefix)

    def list_context(
        self,
        workspace_id: str,
        context_type: str | None = None,
        tags: str | list[str] | None = None,
        scope_path: str | None = None,
        since: str | None = None,
        limit: int | None = ContextService.DEFAULT_LIST_LIMIT,
        query: str | None = None,
    ) -> list[ContextItem]:
        return self.context.list_items(
            workspace_id,
            context_type=context_type,
            tags=tags,
            scope_path=scope_path,
            since=since,
            limit=limit,
            query=query,
        )

    def update(self, item_id: str, **fields: Any) -> ContextItem:
        return self.context.update(item_id, **fields)

    def delete(self, item_id: str) -> bool:
        return self.context.delete(item_id)

    def find_similar(
        self,
        workspace_id: str,
        content: str,
        context_type: str | None = None,
        threshold: float = SimilarityGuard.DEFAULT_THRESHOLD,
    ) -> list[SimilarMatch]:
        return self.similarity.find_similar(workspace_id, content, context_type, threshold)

    def check_duplicate(
        self,
        workspace_id: str,
        content: str,
        context_type: str | None = None,
    ) -> SimilarMatch | None:
        return self.similarity.check_duplicate(workspace_id, content, context_type)

    # =========================================================================
    # Links
    # =========================================================================

    def link(self, from_id: str, to_id: str, relation: str = DEFAULT_RELATION) -> Link:
        return self.links.link(from_id, to_id, relation)

    def unlink(self, from_id: str, to_id: str) -> bool:
        return self.links.unlink(from_id, to_id)

    def list_links(
        self,
        item_id: str | None = None,
        workspace_id: str | None = None,
    ) -> list[LinkView]:
        return self.links.list_links(item_id=item_id, workspace_id=workspace_id)

    def related(
        self,
        item_id: str,
        depth: int = 1,
        local_only: bool = False,
    ) -> list[RelatedItem]:
        """Find items linked to ``item_id`` within ``depth`` hops.

        When the item's workspace is bound and a transport is configured, the
        remote graph is asked first; offline or failing remotes fall back to
        the local graph.
        """
        if not local_only and self.transport is not None:
            remote_results = self._remote_related(item_id, depth)
            if remote_results is not None:
                return remote_results
        return self.links.related(item_id, depth)

    def _remote_related(self, item_id: str, depth: int) -> list[RelatedItem] | None:
        item = self.context.require(item_id)
        workspace = self.workspaces.get(item.workspace_id)
        if workspace is None or not workspace.remote_id or not item.remote_id:
            return None
        depth = max(RelationshipsService.MIN_DEPTH, min(RelationshipsService.MAX_DEPTH, depth))
        try:
            response = self.transport.get_related(workspace.remote_id, item.remote_id, depth)
        except RemoteError as e:
            logger.debug("Remote related lookup failed, using local graph: %s", e)
            return None
        if is_offline(response):
            return None

        results = []
        for entry in response.get("items") or response.get("related") or []:
            data = entry.get("item") or entry
            if not data.get("id"):
                continue
            local = self.context.find_by_identity(data["id"])
            if local is None:
                local = ContextItem(
                    id=data["id"],
                    workspace_id=workspace.id,
                    type=data.get("type") or DEFAULT_CONTEXT_TYPE,
                    content=data.get("content") or "",
                    tags=data.get("tags") or [],
                    scope=data.get("scope") or GLOBAL_SCOPE,
                    meta=data.get("meta") or {},
                    remote_id=data["id"],
                    created_at=data.get("created_at") or "",
                    updated_at=data.get("updated_at") or "",
                )
            elif local.is_deleted:
                continue
            results.append(
                RelatedItem(
                    item=local,
                    direction=entry.get("direction", "outbound"),
                    relation=entry.get("relation", DEFAULT_RELATION),
                    hops=int(entry.get("hops", 1)),
                )
            )
        return results

    # =========================================================================
    # Sessions
    # =========================================================================

    def start_session(self, workspace_id: str, name: str | None = None) -> Session:
        self.workspaces.require(workspace_id)
        return self.sessions.start(workspace_id, name)

    def end_session(self, session_id: str) -> Session:
        return self.sessions.end(session_id)

    def get_active_session(self, workspace_id: str) -> Session | None:
        return self.sessions.get_active(workspace_id)

    def list_sessions(self, workspace_id: str, limit: int = 10) -> list[Session]:
        return self.sessions.list_sessions(workspace_id, limit)

    def session_stats(self, session: Session) -> SessionStats:
        return self.sessions.stats(session)

    # =========================================================================
    # Brief
    # =========================================================================

    def brief(
        self,
        workspace_id: str,
        relative_path: str = "",
        tags: str | list[str] | None = None,
    ) -> Brief:
        """Collect the context visible at a mount-relative path.

        Args:
            workspace_id: Workspace to read.
            relative_path: Location within the mount.
            tags: Only items carrying every one of these tags.

        Returns:
            Items grouped by type in priority order, with their links.
        """
        workspace = self.workspaces.require(workspace_id)
        items = self.context.list_items(
            workspace_id, tags=tags, scope_path=relative_path, limit=None
        )
        result = Brief(workspace=workspace, relative_path=relative_path)
        for context_type in BRIEF_TYPE_ORDER:
            section = [i for i in items if i.type == context_type]
            if section:
                result.sections[context_type] = list(reversed(section))
        for item in items:
            if item.type not in CONTEXT_TYPES:
                result.sections.setdefault(item.type, []).append(item)
        for item in items:
            item_links = self.links.list_links(item_id=item.id)
            if item_links:
                result.links[item.id] = item_links
        return result

    def digest(self, workspace_id: str, since: str) -> Digest:
        """Collect the items and links added to a workspace since ``since``.

        Items are newest first; links are oldest first.
        """
        workspace = self.workspaces.require(workspace_id)
        return Digest(
            workspace=workspace,
            since=since,
            items=self.context.list_items(workspace_id, since=since, limit=None),
            links=self.links.list_links(workspace_id=workspace_id, since=since),
        )

    # =========================================================================
    # Sync

    # =========================================================================

    def _require_sync(self) -> SyncManager:
        if self._sync is None:
            raise ValueError("No remote transport configured")
        return self._sync

    def push(self, workspace_id: str) -> PushResult:
        return self._require_sync().push(workspace_id)

    def pull(self, workspace_id: str) -> PullResult:
        return self._require_sync().pull(workspace_id)

    def sync(self, workspace_id: str) -> SyncResult:
        return self._require_sync().sync(workspace_id)

    def sync_status(self, workspace_id: str) -> SyncStatus:
        return self._require_sync().status(workspace_id)

    def close(self) -> None:
        """Close database connections."""
        if hasattr(self, "conn") and self.conn:
            self.conn.close()
            self.conn = None  # Prevent double-close

    def __del__(self) -> None:
        """Ensure connections are closed when object is garbage collected."""
        self.close()

    def __enter__(self) -> "ContextStore":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
