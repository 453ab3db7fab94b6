"""Domain exceptions for the tree-of-thoughts protocol.

Protocol violations made by callers (bad ids, reused agents, early ends)
are *not* exceptions: they come back as ``REJECTED`` responses.  The
exceptions below signal programming or infrastructure faults.  All inherit
from ``TreeOfThoughtsError`` so callers can catch the family with a single
``except`` clause when needed.
"""

from __future__ import annotations

from typing import Any


class TreeOfThoughtsError(Exception):
    """Base exception for all tree-of-thoughts errors."""

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class SessionNotFoundError(TreeOfThoughtsError):
    """Raised by a store when no investigation exists for a session id."""

    def __init__(
        self,
        session_id: str = "",
        message: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or f"Investigation {session_id!r} not found", details)
        self.session_id = session_id


class NodeNotFoundError(TreeOfThoughtsError):
    """Raised when a node id does not resolve inside an investigation."""

    def __init__(
        self,
        node_id: str = "",
        message: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or f"Node {node_id!r} does not exist", details)
        self.node_id = node_id


class InvariantViolationError(TreeOfThoughtsError):
    """Raised when a mutation would break a tree invariant.

    Examples: attaching a child under a terminal node, a child whose round is
    not after its parent's, or inserting an id twice.  The orchestrator
    validates before mutating, so reaching this indicates a bug.
    """

    def __init__(
        self,
        message: str = "Tree invariant violated",
        node_id: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.node_id = node_id


class PersistenceError(TreeOfThoughtsError):
    """Raised when a stored investigation document cannot be read or written."""

    def __init__(
        self,
        message: str = "Persistence failure",
        session_id: str = "",
        path: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.session_id = session_id
        self.path = path
