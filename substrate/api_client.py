"""
HTTP client for the substrate sync API.

Every call either returns the decoded JSON body, returns an ``Offline``
value when the service cannot be reached, or raises ``RemoteError`` when the
service answered with an error. Callers never see transport exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Union

import httpx

from substrate.errors import RemoteError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


@dataclass(frozen=True)
class Offline:
    """The remote service could not be reached."""

    reason: str = "unreachable"

    def __bool__(self) -> bool:
        return False


RemoteResult = Union[dict[str, Any], Offline]


def is_offline(result: Any) -> bool:
    return isinstance(result, Offline)


class RemoteTransport(Protocol):
    """Operations the sync engine needs from a remote service."""

    def health(self) -> RemoteResult: ...

    def create_workspace(
        self, name: str, description: str | None, project_id: str | None
    ) -> RemoteResult: ...

    def sync_push(self, workspace_id: str, items: list[dict[str, Any]]) -> RemoteResult: ...

    def sync_pull(self, workspace_id: str, since: str | None = None) -> RemoteResult: ...

    def link_context(
        self, workspace_id: str, from_id: str, to_id: str, relation: str
    ) -> RemoteResult: ...

    def get_related(self, workspace_id: str, item_id: str, depth: int = 1) -> RemoteResult: ...

    def get_workspace_by_project_id(self, project_id: str) -> RemoteResult: ...


class RemoteClient:
    """HTTP client for the substrate sync API."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self._api_url = api_url.rstrip("/")
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.Client(
            base_url=self._api_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def api_url(self) -> str:
        return self._api_url

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> RemoteResult:
        try:
            resp = self._client.request(method, path, json=json, params=params)
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            logger.info("Remote unreachable (%s %s): %s", method, path, e)
            return Offline(reason=str(e) or type(e).__name__)
        except httpx.TransportError as e:
            logger.info("Remote connection failed (%s %s): %s", method, path, e)
            return Offline(reason=str(e) or type(e).__name__)

        if resp.status_code >= 400:
            message = f"HTTP {resp.status_code}"
            try:
                body = resp.json()
                if isinstance(body, dict) and body.get("error"):
                    message = str(body["error"])
            except ValueError:
                if resp.text:
                    message = f"HTTP {resp.status_code}: {resp.text[:200]}"
            logger.debug("Remote error (%s %s): %s", method, path, message)
            raise RemoteError(message, status_code=resp.status_code)

        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteError(f"Invalid JSON from {path}", status_code=resp.status_code) from e
        return data if isinstance(data, dict) else {"items": data}

    def health(self) -> RemoteResult:
        """GET /health"""
        return self._request("GET", "/health")

    def create_workspace(
        self,
        name: str,
        description: str | None = None,
        project_id: str | None = None,
    ) -> RemoteResult:
        """POST /api/workspaces -> {id, ...}"""
        payload: dict[str, Any] = {"name": name, "description": description}
        if project_id:
            payload["project_id"] = project_id
        return self._request("POST", "/api/workspaces", json=payload)

    def get_workspace_by_project_id(self, project_id: str) -> RemoteResult:
        """GET /api/workspaces/by-project/{project_id}"""
        return self._request("GET", f"/api/workspaces/by-project/{project_id}")

    def sync_push(self, workspace_id: str, items: list[dict[str, Any]]) -> RemoteResult:
        """POST /api/sync/{ws}/batch -> {items: [...]}"""
        return self._request("POST", f"/api/sync/{workspace_id}/batch", json={"items": items})

    def sync_pull(self, workspace_id: str, since: str | None = None) -> RemoteResult:
        """GET /api/sync/{ws}/changes?since= -> {items: [...]}"""
        params = {"since": since} if since else None
        return self._request("GET", f"/api/sync/{workspace_id}/changes", params=params)

    def link_context(
        self,
        workspace_id: str,
        from_id: str,
        to_id: str,
        relation: str,
    ) -> RemoteResult:
        """POST /api/context/{ws}/link"""
        return self._request(
            "POST",
            f"/api/context/{workspace_id}/link",
            json={"from": from_id, "to": to_id, "relation": relation},
        )

    def get_related(self, workspace_id: str, item_id: str, depth: int = 1) -> RemoteResult:
        """GET /api/context/{ws}/related/{id}?depth="""
        return self._request(
            "GET",
            f"/api/context/{workspace_id}/related/{item_id}",
            params={"depth": depth},
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
