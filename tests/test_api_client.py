"""Tests for the HTTP sync API client."""

import json

import httpx
import pytest

from substrate.api_client import Offline, RemoteClient, is_offline
from substrate.errors import RemoteError


def make_client(handler, api_key="secret-key"):
    """Build a client whose requests are answered by ``handler``."""
    return RemoteClient(
        "https://api.example.test/",
        api_key,
        transport=httpx.MockTransport(handler),
    )


class TestRequests:
    """Tests for request construction."""

    def test_auth_header_and_base_url(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "ok"})

        client = make_client(handler)

        assert client.health() == {"status": "ok"}
        assert seen["url"] == "https://api.example.test/health"
        assert seen["auth"] == "Bearer secret-key"
        assert client.api_url == "https://api.example.test"

    def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={})

        make_client(handler, api_key=None).health()
        assert seen["auth"] is None

    def test_create_workspace_payload(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "workspace:abc"})

        result = make_client(handler).create_workspace("api", "API service", "proj-1")

        assert result == {"id": "workspace:abc"}
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/workspaces"
        assert seen["body"] == {
            "name": "api",
            "description": "API service",
            "project_id": "proj-1",
        }

    def test_sync_push_path_and_body(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"items": [{"id": "a"}]})

        items = [{"id": "a", "content": "hello"}]
        result = make_client(handler).sync_push("ws1", items)

        assert seen["path"] == "/api/sync/ws1/batch"
        assert seen["body"] == {"items": items}
        assert result["items"] == [{"id": "a"}]

    def test_sync_pull_since_param(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["since"] = request.url.params.get("since")
            return httpx.Response(200, json={"items": []})

        client = make_client(handler)

        client.sync_pull("ws1", "2024-01-01T00:00:00.000Z")
        assert seen["path"] == "/api/sync/ws1/changes"
        assert seen["since"] == "2024-01-01T00:00:00.000Z"

        client.sync_pull("ws1")
        assert seen["since"] is None

    def test_link_and_related(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path, request.content, request.url.params))
            return httpx.Response(200, json={"items": []})

        client = make_client(handler)
        client.link_context("ws1", "a", "b", "depends_on")
        client.get_related("ws1", "a", depth=2)

        assert seen[0][1] == "/api/context/ws1/link"
        assert json.loads(seen[0][2]) == {"from": "a", "to": "b", "relation": "depends_on"}
        assert seen[1][1] == "/api/context/ws1/related/a"
        assert seen[1][3].get("depth") == "2"


class TestResponses:
    """Tests for response handling."""

    def test_connect_error_is_offline(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = make_client(handler).health()

        assert is_offline(result)
        assert not result
        assert "connection refused" in result.reason

    def test_timeout_is_offline(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert isinstance(make_client(handler).sync_pull("ws1"), Offline)

    def test_connection_reset_is_offline(self):
        def handler(request):
            raise httpx.ReadError("connection reset by peer", request=request)

        result = make_client(handler).sync_pull("ws1")

        assert is_offline(result)
        assert "connection reset" in result.reason

    def test_server_disconnect_is_offline(self):
        def handler(request):
            raise httpx.RemoteProtocolError("server disconnected", request=request)

        assert is_offline(make_client(handler).sync_push("ws1", [{"id": "a"}]))

    def test_project_lookup_path(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": "workspace:abc", "name": "api"})

        result = make_client(handler).get_workspace_by_project_id("proj-1")

        assert seen["path"] == "/api/workspaces/by-project/proj-1"
        assert result["id"] == "workspace:abc"

    def test_project_lookup_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"error": "Workspace not found"})

        with pytest.raises(RemoteError) as exc_info:
            make_client(handler).get_workspace_by_project_id("proj-x")

        assert exc_info.value.status_code == 404

    def test_error_body_message(self):
        def handler(request):
            return httpx.Response(403, json={"error": "Invalid API key"})

        with pytest.raises(RemoteError) as exc_info:
            make_client(handler).health()

        assert str(exc_info.value) == "Invalid API key"
        assert exc_info.value.status_code == 403

    def test_error_without_body(self):
        def handler(request):
            return httpx.Response(502)

        with pytest.raises(RemoteError, match="HTTP 502"):
            make_client(handler).health()

    def test_error_with_text_body(self):
        def handler(request):
            return httpx.Response(500, text="upstream exploded")

        with pytest.raises(RemoteError, match="upstream exploded"):
            make_client(handler).health()

    def test_empty_body(self):
        def handler(request):
            return httpx.Response(204)

        assert make_client(handler).link_context("ws1", "a", "b", "blocks") == {}

    def test_list_body_wrapped(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": "a"}])

        assert make_client(handler).sync_pull("ws1") == {"items": [{"id": "a"}]}

    def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, text="<html>")

        with pytest.raises(RemoteError, match="Invalid JSON"):
            make_client(handler).health()

    def test_context_manager_closes(self):
        def handler(request):
            return httpx.Response(200, json={})

        with make_client(handler) as client:
            client.health()
        assert client._client.is_closed
