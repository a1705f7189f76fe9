"""Mapping of filesystem paths to mounted workspaces."""

import os
from collections.abc import Iterable

from substrate.models import Mount


def path_is_under(path: str, prefix: str) -> bool:
    """Check whether ``path`` starts with ``prefix``.

    This is a plain string prefix test, so ``/repo`` also covers
    ``/repository``.
    """
    return path.startswith(prefix)


def resolve_mount(path: str, mounts: Iterable[Mount]) -> Mount | None:
    """Find the mount that owns a path.

    Args:
        path: Absolute, normalized path to resolve.
        mounts: Candidate mounts.

    Returns:
        The mount with the longest path covering ``path`` (ties go to the
        earliest-created mount), or None if no mount covers it.
    """
    best: Mount | None = None
    for mount in sorted(mounts, key=lambda m: m.id):
        if not path_is_under(path, mount.path):
            continue
        if best is None or len(mount.path) > len(best.path):
            best = mount
    return best


def relative_path(path: str, mount: Mount) -> str:
    """Return ``path`` with the mount prefix removed, using forward slashes.

    The mount root itself maps to the empty string.
    """
    if not path.startswith(mount.path):
        return path.replace(os.sep, "/")
    rel = path[len(mount.path):]
    if rel.startswith(os.sep):
        rel = rel[len(os.sep):]
    return rel.replace(os.sep, "/")



def scope_matches(item_scope: str | None, query_path: str | None) -> bool:
    """Decide whether an item with ``item_scope`` is visible at ``query_path``.

    An item is visible if its scope is global, if the query path starts with
    the item scope, or if the item scope starts with the query path. The last
    rule also surfaces items scoped below the query location.
    """
    if not item_scope or item_scope == "*":
        return True
    if query_path is None:
        return True
    item = item_scope.strip("/")
    query = query_path.strip("/")
    return query.startswith(item) or item.startswith(query)
