"""Domain events for the tree-of-thoughts protocol.

Every event is a frozen dataclass inheriting from ``DomainEvent``.  The
orchestrator emits events after each successful mutation; listeners
(audit logs, dashboards, tests) react through the event bus.

All events carry a ``timestamp`` and a ``source_id`` identifying the
originating investigation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from .enums import NodeState, WarningCode

# ---------------------------------------------------------------------------
# Base event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    timestamp: float = field(default_factory=time.time)
    source_id: str = ""


# ---------------------------------------------------------------------------
# Investigation lifecycle
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InvestigationStarted(DomainEvent):
    """A new investigation was created."""

    query: str = ""
    min_roots: int = 1


@dataclass(frozen=True)
class InvestigationConcluded(DomainEvent):
    """``end`` passed the termination gate."""

    total_rounds: int = 0
    solution_ids: tuple[str, ...] = ()
    dead_end_count: int = 0


# ---------------------------------------------------------------------------
# Round progression
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NodesProposed(DomainEvent):
    """A batch of proposals was staged."""

    node_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class NodesCommitted(DomainEvent):
    """A batch of results was materialised into nodes."""

    node_ids: tuple[str, ...] = ()
    batch: int = 0
    current_round: int = 0


@dataclass(frozen=True)
class StateDowngraded(DomainEvent):
    """Depth enforcement rewrote a claimed state before materialisation."""

    node_id: str = ""
    claimed: NodeState | None = None
    applied: NodeState | None = None
    rule: WarningCode | None = None


@dataclass(frozen=True)
class NodeReclassified(DomainEvent):
    """A committed node's state was overwritten in place."""

    node_id: str = ""
    previous_state: NodeState | None = None
    new_state: NodeState | None = None
