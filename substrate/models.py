"""Typed records for rows of the substrate store."""

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any

from substrate.utils import json_to_meta, json_to_tags

CONTEXT_TYPES = ("note", "constraint", "decision", "task", "entity", "runbook", "snippet")
DEFAULT_CONTEXT_TYPE = "note"

RELATION_TYPES = (
    "relates_to",
    "depends_on",
    "blocks",
    "implements",
    "extends",
    "references",
)
DEFAULT_RELATION = "relates_to"

GLOBAL_SCOPE = "*"


@dataclass
class Workspace:
    """A named container of context, optionally bound to a remote workspace."""

    id: str
    name: str
    project_id: str
    created_at: str
    updated_at: str
    description: str | None = None
    remote_id: str | None = None
    synced_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_bound(self) -> bool:
        return self.remote_id is not None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Workspace":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            project_id=row["project_id"],
            remote_id=row["remote_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            synced_at=row["synced_at"],
            deleted_at=row["deleted_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Mount:
    """Association of an absolute directory path with a workspace."""

    id: int
    workspace_id: str
    path: str
    scope: str = GLOBAL_SCOPE
    tags: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Mount":
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            path=row["path"],
            scope=row["scope"] or GLOBAL_SCOPE,
            tags=json_to_tags(row["tags"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ContextItem:
    """A unit of project knowledge."""

    id: str
    workspace_id: str
    content: str
    created_at: str
    updated_at: str
    type: str = DEFAULT_CONTEXT_TYPE
    tags: list[str] = field(default_factory=list)
    scope: str = GLOBAL_SCOPE
    meta: dict[str, Any] = field(default_factory=dict)
    remote_id: str | None = None
    synced_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_synced(self) -> bool:
        """True if the item has no local changes since its last sync."""
        return self.synced_at is not None and self.updated_at <= self.synced_at

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ContextItem":
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            type=row["type"] or DEFAULT_CONTEXT_TYPE,
            content=row["content"],
            tags=json_to_tags(row["tags"]),
            scope=row["scope"] or GLOBAL_SCOPE,
            meta=json_to_meta(row["meta"]),
            remote_id=row["remote_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            synced_at=row["synced_at"],
            deleted_at=row["deleted_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_payload(self) -> dict[str, Any]:
        """Fields sent to the remote on push."""
        payload = {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "tags": self.tags,
            "scope": self.scope,
            "meta": self.meta,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.deleted_at:
            payload["deleted_at"] = self.deleted_at
        return payload


@dataclass
class Link:
    """A directed, typed edge between two context items."""

    id: int
    from_id: str
    to_id: str
    relation: str
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Link":
        return cls(
            id=row["id"],
            from_id=row["from_id"],
            to_id=row["to_id"],
            relation=row["relation"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Session:
    """A named time window of work within a workspace."""

    id: str
    workspace_id: str
    started_at: str
    name: str | None = None
    ended_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Session":
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            name=row["name"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def validate_context_type(context_type: str) -> str:
    """Validate a context type.

    Raises:
        ValueError: If the type is not one of CONTEXT_TYPES.
    """
    if context_type not in CONTEXT_TYPES:
        allowed = ", ".join(CONTEXT_TYPES)
        raise ValueError(f"Invalid type '{context_type}'. Must be one of: {allowed}")
    return context_type


def validate_relation(relation: str) -> str:
    """Validate a link relation.

    Raises:
        ValueError: If the relation is not one of RELATION_TYPES.
    """
    if relation not in RELATION_TYPES:
        allowed = ", ".join(RELATION_TYPES)
        raise ValueError(f"Invalid relation '{relation}'. Must be one of: {allowed}")
    return relation
