"""Substrate context store.

An offline-first store for project context (constraints, decisions, notes,
tasks) that deduplicates new entries, links them into a graph, and syncs
with a remote service.
"""

from substrate.context_store import ContextStore

__version__ = "0.1.0"
__all__ = ["ContextStore"]
