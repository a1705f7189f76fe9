"""Sync manager for reconciling a workspace with the remote service."""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from substrate.api_client import RemoteTransport, is_offline
from substrate.errors import NotFoundError, RemoteError
from substrate.models import Link
from substrate.utils import now_iso, parse_timestamp

if TYPE_CHECKING:
    from substrate.context_store import ContextStore

logger = logging.getLogger(__name__)

WORKSPACE_ID_PREFIX = "workspace:"

# Remote status of a pinned project
PROJECT_SYNCED = "synced"
PROJECT_NOT_SYNCED = "not_synced"
PROJECT_OFFLINE = "offline"


@dataclass
class PushResult:
    """Result of a push operation."""

    pushed: int = 0
    failed: int = 0
    links_pushed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)
    offline: bool = False
    error: str | None = None


@dataclass
class PullResult:
    """Result of a pull operation."""

    pulled: int = 0
    updated: int = 0
    skipped: int = 0
    offline: bool = False
    error: str | None = None


@dataclass
class SyncResult:
    """Result of a push followed by a pull."""

    push: PushResult
    pull: PullResult | None = None

    @property
    def offline(self) -> bool:
        return self.push.offline or (self.pull is not None and self.pull.offline)


@dataclass
class SyncStatus:
    """Local view of what a sync would do."""

    bound: bool
    online: bool
    last_sync: str | None
    pending_context: int
    pending_links: int


def _strip_workspace_prefix(remote_id: str) -> str:
    if remote_id.startswith(WORKSPACE_ID_PREFIX):
        return remote_id[len(WORKSPACE_ID_PREFIX):]
    return remote_id


class SyncManager:
    """Reconciles local workspaces with the remote service.

    Push sends local changes, pull applies remote changes with
    last-write-wins on ``updated_at``. Unreachable remotes produce
    zero-progress results flagged ``offline`` instead of errors.
    """

    DEFAULT_BATCH_SIZE = 25

    def __init__(
        self,
        store: "ContextStore",
        transport: RemoteTransport,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        """Initialize the sync manager.

        Args:
            store: Local context store.
            transport: Remote service client.
            batch_size: Items sent per push request.
        """
        self.store = store
        self.transport = transport
        self.batch_size = max(1, batch_size)

    # =========================================================================
    # Push
    # =========================================================================

    def push(self, workspace_id: str) -> PushResult:
        """Send local changes of a workspace to the remote.

        Binds the workspace to a new remote workspace first if needed. Items
        succeed or fail individually; failures are reported and retried on the
        next push.

        Args:
            workspace_id: Local workspace id.

        Returns:
            Push counts, per-item errors, and offline/precondition status.
        """
        result = PushResult()
        workspace = self.store.workspaces.require(workspace_id)

        remote_ws = workspace.remote_id
        if not remote_ws:
            try:
                response = self.transport.create_workspace(
                    workspace.name, workspace.description, workspace.project_id
                )
            except RemoteError as e:
                result.error = f"Failed to create remote workspace: {e}"
                return result
            if is_offline(response):
                result.offline = True
                return result
            created_id = response.get("id") or (response.get("workspace") or {}).get("id")
            if not created_id:
                result.error = "Failed to create remote workspace: no id returned"
                return result
            remote_ws = _strip_workspace_prefix(str(created_id))
            self.store.workspaces.bind_remote(workspace_id, remote_ws)
            logger.info("Bound workspace %s to remote %s", workspace.name, remote_ws)

        pending = self.store.context.pending_push(workspace_id)
        # Must be read before items are stamped synced
        links = self.store.links.pending_links(workspace_id)
        logger.debug("Pushing %d items for workspace %s", len(pending), workspace.name)

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            try:
                response = self.transport.sync_push(remote_ws, [i.to_payload() for i in batch])
            except RemoteError as e:
                for item in batch:
                    result.failed += 1
                    result.errors.append((item.id, str(e)))
                continue
            if is_offline(response):
                result.offline = True
                return result

            returned = response.get("items") or []
            synced_at = now_iso()
            for index, item in enumerate(batch):
                entry = returned[index] if index < len(returned) else None
                if not isinstance(entry, dict):
                    result.failed += 1
                    result.errors.append((item.id, "No result returned for item"))
                    continue
                if entry.get("error"):
                    result.failed += 1
                    result.errors.append((item.id, str(entry["error"])))
                    continue
                self.store.context.mark_synced(item.id, str(entry.get("id") or item.id), synced_at)
                result.pushed += 1

        result.links_pushed = self._push_links(links, remote_ws)
        return result

    def _push_links(self, links: list[Link], remote_ws: str) -> int:
        pushed = 0
        for link in links:
            source = self.store.context.get(link.from_id, include_deleted=True)
            target = self.store.context.get(link.to_id, include_deleted=True)
            from_id = (source.remote_id if source else None) or link.from_id
            to_id = (target.remote_id if target else None) or link.to_id
            try:
                response = self.transport.link_context(remote_ws, from_id, to_id, link.relation)
            except RemoteError as e:
                # The remote may already have this link
                logger.debug("Link %s -> %s not pushed: %s", from_id, to_id, e)
                continue
            if is_offline(response):
                break
            pushed += 1
        return pushed

    # =========================================================================
    # Pull
    # =========================================================================

    def pull(self, workspace_id: str) -> PullResult:
        """Apply remote changes to a workspace.

        New remote items are inserted. Existing items are overwritten only
        when the remote ``updated_at`` is strictly newer, so pulling the same
        changes twice has no further effect.

        Args:
            workspace_id: Local workspace id.

        Returns:
            Counts of inserted, updated and skipped items.
        """
        result = PullResult()
        workspace = self.store.workspaces.require(workspace_id)
        if not workspace.remote_id:
            result.error = "Workspace not synced to remote yet. Run 'substrate sync push' first."
            return result

        since = self.store.context.last_synced_at(workspace_id)
        try:
            response = self.transport.sync_pull(workspace.remote_id, since)
        except RemoteError as e:
            result.error = f"Pull failed: {e}"
            return result
        if is_offline(response):
            result.offline = True
            return result

        for remote in response.get("items") or []:
            if not isinstance(remote, dict) or not remote.get("id"):
                continue
            self._apply_remote_item(workspace_id, remote, result)
        return result

    def _apply_remote_item(
        self,
        workspace_id: str,
        remote: dict[str, Any],
        result: PullResult,
    ) -> None:
        synced_at = now_iso()
        local = self.store.context.find_by_identity(remote["id"])
        if local is None:
            self.store.context.insert_from_remote(workspace_id, remote, synced_at)
            result.pulled += 1
            logger.debug("Pulled new item %s", remote["id"])
            return

        remote_updated = parse_timestamp(remote.get("updated_at"))
        local_updated = parse_timestamp(local.updated_at)
        if remote_updated and (local_updated is None or remote_updated > local_updated):
            self.store.context.apply_remote(local.id, remote, synced_at)
            result.updated += 1
            logger.debug("Updated %s from remote", local.id)
        else:
            result.skipped += 1

    # =========================================================================
    # Combined
    # =========================================================================

    def sync(self, workspace_id: str) -> SyncResult:
        """Push, then pull unless the push could not run."""
        push_result = self.push(workspace_id)
        if push_result.error or push_result.offline:
            return SyncResult(push=push_result)
        return SyncResult(push=push_result, pull=self.pull(workspace_id))

    def status(self, workspace_id: str) -> SyncStatus:
        """Summarize pending work and remote reachability."""
        workspace = self.store.workspaces.require(workspace_id)
        try:
            online = not is_offline(self.transport.health())
        except RemoteError:
            online = True  # reachable, just unhappy
        return SyncStatus(
            bound=workspace.is_bound,
            online=online,
            last_sync=self.store.context.last_synced_at(workspace_id),
            pending_context=len(self.store.context.pending_push(workspace_id)),
            pending_links=len(self.store.links.pending_links(workspace_id)),
        )

    def lookup_project(self, project_id: str) -> dict[str, Any] | None:
        """Fetch the remote workspace that belongs to a project id.

        Args:
            project_id: Cross-machine project identifier.

        Returns:
            The remote workspace record with its ``id`` unprefixed, or None
            if the remote cannot be reached.

        Raises:
            NotFoundError: If the remote has no workspace for the project.
            RemoteError: If the remote answered with any other error.
        """
        try:
            response = self.transport.get_workspace_by_project_id(project_id)
        except RemoteError as e:
            if e.status_code == 404:
                raise NotFoundError(f"Project not found on remote: {project_id}") from e
            raise
        if is_offline(response):
            return None
        record = dict(response.get("workspace") or response)
        if not record.get("id"):
            raise RemoteError(f"No workspace returned for project {project_id}")
        record["id"] = _strip_workspace_prefix(str(record["id"]))
        return record

    def project_status(self, project_id: str) -> str:
        """Report whether a project exists on the remote."""
        try:
            record = self.lookup_project(project_id)
        except NotFoundError:
            return PROJECT_NOT_SYNCED
        except RemoteError as e:
            logger.debug("Project status lookup failed: %s", e)
            return PROJECT_OFFLINE
        return PROJECT_SYNCED if record is not None else PROJECT_OFFLINE
