"""Exception types raised by the substrate store and sync engine."""

import traceback
from datetime import datetime
from pathlib import Path
from typing import Any


class SubstrateError(Exception):
    """Base class for substrate errors."""


class NotFoundError(SubstrateError):
    """A referenced workspace, mount, item, link or session does not exist."""


class AmbiguousReferenceError(SubstrateError):
    """A shortened identifier matches more than one item.

    Attributes:
        prefix: The identifier prefix that was looked up.
        candidates: The items that matched the prefix.
    """

    def __init__(self, prefix: str, candidates: list[Any]):
        self.prefix = prefix
        self.candidates = candidates
        super().__init__(f"Ambiguous id '{prefix}' matches {len(candidates)} items")


class DuplicateContentError(SubstrateError):
    """Content is too similar to an existing item in the workspace.

    Attributes:
        match: The existing item that was matched.
        similarity: Similarity score from 0 to 100.
    """

    def __init__(self, match: Any, similarity: int):
        self.match = match
        self.similarity = similarity
        super().__init__(
            f"Similar context already exists ({similarity}% match): {match.id[:8]}"
        )


class DuplicateLinkError(SubstrateError):
    """A link between the same ordered pair of items already exists."""

    def __init__(self, from_id: str, to_id: str):
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(f"Link already exists: {from_id[:8]} -> {to_id[:8]}")


class RemoteError(SubstrateError):
    """The remote service rejected a request.

    Attributes:
        status_code: HTTP status code, when the failure came from a response.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def log_exception(exc: BaseException, log_path: Path) -> Path:
    """Append an exception traceback to an error log.

    Args:
        exc: The exception to record.
        log_path: Log file to append to.

    Returns:
        The log file path.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "a") as f:
        f.write(f"--- {datetime.now().isoformat()} ---\n")
        f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
        f.write("\n")
    return log_path
