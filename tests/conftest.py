"""Pytest configuration and shared fixtures."""

import io
import shutil
import tempfile
import uuid
from pathlib import Path

import pytest
from rich.console import Console

from substrate.api_client import Offline
from substrate.context_store import ContextStore
from substrate.errors import RemoteError


class FakeRemote:
    """In-memory stand-in for the remote sync service.

    Stores pushed items per remote workspace and serves them back on pull.
    Flip ``online`` to simulate an unreachable service, or add item ids to
    ``reject`` to make the batch endpoint refuse them.
    """

    def __init__(self):
        self.online = True
        self.workspaces: dict[str, dict] = {}
        self.items: dict[str, dict[str, dict]] = {}
        self.links: list[tuple[str, str, str, str]] = []
        self.reject: set[str] = set()
        self.push_calls: list[list[dict]] = []
        self.pull_calls: list[tuple[str, str | None]] = []
        self.related_response: dict | None = None
        self.closed = False

    def _unreachable(self):
        return Offline(reason="connection refused")

    def health(self):
        if not self.online:
            return self._unreachable()
        return {"status": "ok"}

    def create_workspace(self, name, description=None, project_id=None):
        if not self.online:
            return self._unreachable()
        remote_id = f"rw-{uuid.uuid4().hex[:8]}"
        self.workspaces[remote_id] = {
            "name": name,
            "description": description,
            "project_id": project_id,
        }
        return {"id": f"workspace:{remote_id}"}

    def get_workspace_by_project_id(self, project_id):
        if not self.online:
            return self._unreachable()
        for remote_id, data in self.workspaces.items():
            if data.get("project_id") == project_id:
                return {"workspace": {"id": f"workspace:{remote_id}", **data}}
        raise RemoteError("Workspace not found", status_code=404)

    def sync_push(self, workspace_id, items):
        if not self.online:
            return self._unreachable()
        self.push_calls.append(items)
        results = []
        for item in items:
            if item["id"] in self.reject:
                results.append({"id": item["id"], "error": "rejected by server"})
                continue
            self.items.setdefault(workspace_id, {})[item["id"]] = dict(item)
            results.append({"id": item["id"]})
        return {"items": results}

    def sync_pull(self, workspace_id, since=None):
        if not self.online:
            return self._unreachable()
        self.pull_calls.append((workspace_id, since))
        return {"items": [dict(i) for i in self.items.get(workspace_id, {}).values()]}

    def link_context(self, workspace_id, from_id, to_id, relation):
        if not self.online:
            return self._unreachable()
        self.links.append((workspace_id, from_id, to_id, relation))
        return {"ok": True}

    def get_related(self, workspace_id, item_id, depth=1):
        if not self.online or self.related_response is None:
            return self._unreachable()
        return self.related_response

    def close(self):
        self.closed = True


@pytest.fixture
def temp_dir():
    """Create a temporary directory removed after the test."""
    path = tempfile.mkdtemp()
    yield Path(path)
    shutil.rmtree(path)


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def temp_store(temp_dir, fake_remote):
    """Create a temporary context store wired to a fake remote."""
    store = ContextStore(base_path=temp_dir / "home", transport=fake_remote)
    yield store
    store.close()


@pytest.fixture
def workspace(temp_store):
    """A workspace in the temporary store."""
    return temp_store.create_workspace("demo", description="Demo workspace")


@pytest.fixture
def populated_store(temp_store, workspace):
    """Create a store with sample context in one workspace."""
    temp_store.add(
        workspace.id,
        "All endpoints must return JSON",
        context_type="constraint",
        tags="api,http",
    )
    temp_store.add(
        workspace.id,
        "Use PostgreSQL for persistence",
        context_type="decision",
        tags="database",
        scope="backend",
    )
    temp_store.add(
        workspace.id,
        "Write the migration guide before release",
        context_type="task",
        scope="docs",
    )
    return temp_store


@pytest.fixture
def output_buffer(monkeypatch):
    """Route all rich console output to a string buffer."""
    buffer = io.StringIO()
    test_console = Console(file=buffer, width=200, no_color=True, highlight=False)
    monkeypatch.setattr("substrate.output.console", test_console)
    monkeypatch.setattr("substrate.cli.console", test_console)
    return buffer
