"""Shell completion helpers for the substrate CLI."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from argparse import Namespace


def get_workspace_completer():
    """Return a completer function for workspace names.

    The completer is lazy-loaded to avoid importing ContextStore at module load.
    """

    def completer(prefix: str, parsed_args: Namespace, **kwargs) -> list[str]:
        try:
            from substrate.context_store import ContextStore

            with ContextStore() as store:
                names = [w.name for w in store.list_workspaces()]
            return [n for n in names if n.startswith(prefix)]
        except Exception:
            return []

    return completer


def get_context_id_completer():
    """Return a completer function for context ids in the current workspace.

    Returns short ids of recent items (limited to avoid slow completions).
    """

    def completer(prefix: str, parsed_args: Namespace, **kwargs) -> list[str]:
        try:
            from substrate.context_store import ContextStore
            from substrate.utils import short_id

            with ContextStore() as store:
                name = getattr(parsed_args, "workspace", None)
                if name:
                    workspace = store.find_workspace(name)
                else:
                    resolution = store.resolve(os.getcwd())
                    workspace = resolution.workspace if resolution else None
                if workspace is None:
                    return []
                items = store.context.recent(workspace.id, 50)
            return [short_id(i.id) for i in items if i.id.startswith(prefix)]
        except Exception:
            return []

    return completer
