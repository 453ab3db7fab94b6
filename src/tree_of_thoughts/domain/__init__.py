"""Domain layer for the tree-of-thoughts protocol.

Re-exports all public domain types so that consumers can write::

    from tree_of_thoughts.domain import Investigation, Node, NodeState
"""

# -- Enumerations -------------------------------------------------------------
from .enums import (
    TERMINAL_STATES,
    ErrorCode,
    NodeState,
    OperationStatus,
    WarningCode,
)

# -- Value Objects ------------------------------------------------------------
from .values import (
    CommitResult,
    EndCheck,
    IncompleteNode,
    InvalidExhaust,
    NodeSummary,
    ProposedNode,
    ProtocolWarning,
    ValidationIssue,
    VerificationResult,
)

# -- Entities -----------------------------------------------------------------
from .entities import Node

# -- Aggregates ---------------------------------------------------------------
from .aggregates import Investigation

# -- Domain Events ------------------------------------------------------------
from .events import (
    DomainEvent,
    InvestigationConcluded,
    InvestigationStarted,
    NodeReclassified,
    NodesCommitted,
    NodesProposed,
    StateDowngraded,
)

# -- Exceptions ---------------------------------------------------------------
from .exceptions import (
    InvariantViolationError,
    NodeNotFoundError,
    PersistenceError,
    SessionNotFoundError,
    TreeOfThoughtsError,
)

__all__ = [
    # enums
    "TERMINAL_STATES",
    "ErrorCode",
    "NodeState",
    "OperationStatus",
    "WarningCode",
    # values
    "CommitResult",
    "EndCheck",
    "IncompleteNode",
    "InvalidExhaust",
    "NodeSummary",
    "ProposedNode",
    "ProtocolWarning",
    "ValidationIssue",
    "VerificationResult",
    # entities
    "Node",
    # aggregates
    "Investigation",
    # events
    "DomainEvent",
    "InvestigationConcluded",
    "InvestigationStarted",
    "NodeReclassified",
    "NodesCommitted",
    "NodesProposed",
    "StateDowngraded",
    # exceptions
    "InvariantViolationError",
    "NodeNotFoundError",
    "PersistenceError",
    "SessionNotFoundError",
    "TreeOfThoughtsError",
]
