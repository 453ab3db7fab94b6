"""Value objects for the tree-of-thoughts protocol.

All types here are frozen dataclasses -- immutable, compared by value.
They represent staged proposals, submitted results, and the diagnostics
the validator hands back to callers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .enums import ErrorCode, NodeState, WarningCode

# ---------------------------------------------------------------------------
# ProposedNode
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProposedNode:
    """A staged, not-yet-committed node.

    Created by a successful ``propose`` and consumed by a successful
    ``commit``.  ``proposed_at`` is an epoch timestamp in seconds.
    """

    id: str
    parent: str | None = None
    title: str = ""
    planned_action: str = ""
    proposed_at: float = field(default_factory=time.time)

    @classmethod
    def from_mapping(cls, data: dict[str, Any], proposed_at: float) -> ProposedNode:
        """Build from a caller payload, accepting camelCase or snake_case keys."""
        return cls(
            id=str(data["id"]),
            parent=data.get("parent"),
            title=str(data.get("title", "")),
            planned_action=str(
                data.get("planned_action", data.get("plannedAction", ""))
            ),
            proposed_at=proposed_at,
        )


# ---------------------------------------------------------------------------
# CommitResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CommitResult:
    """The outcome an external agent reports for one proposed node."""

    node_id: str
    state: NodeState
    findings: str = ""
    agent_id: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> CommitResult:
        """Build from a caller payload, accepting camelCase or snake_case keys."""
        agent_id = data.get("agent_id", data.get("agentId"))
        return cls(
            node_id=str(data.get("node_id", data.get("nodeId", ""))),
            state=NodeState.parse(data["state"]),
            findings=str(data.get("findings") or ""),
            agent_id=str(agent_id) if agent_id else None,
        )


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationIssue:
    """A fatal problem found while validating a call.

    ``node_id`` is the offending node, or a pseudo-id such as ``"BATCH"`` or
    ``"SESSION"`` for batch- and session-level problems.
    """

    node_id: str
    code: ErrorCode
    message: str
    suggestion: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "node_id": self.node_id,
            "error": self.code.value,
            "message": self.message,
        }
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


@dataclass(frozen=True)
class ProtocolWarning:
    """A non-fatal diagnostic attached to an accepted call."""

    code: WarningCode
    message: str
    node_id: str = ""

    def __str__(self) -> str:
        return f"WARNING [{self.code.value}]: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "node_id": self.node_id, "message": self.message}


@dataclass(frozen=True)
class IncompleteNode:
    """A non-terminal node that still has fewer children than it needs."""

    node_id: str
    state: NodeState
    has: int
    needs: int

    @property
    def missing(self) -> int:
        return self.needs - self.has

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "state": self.state.value,
            "has": self.has,
            "needs": self.needs,
        }


@dataclass(frozen=True)
class InvalidExhaust:
    """An EXHAUST node whose children are not all DEAD."""

    node_id: str
    offending_children: tuple[str, ...] = ()


@dataclass(frozen=True)
class EndCheck:
    """Verdict of the termination gate.

    ``recovery_required`` is set when the investigation is below the minimum
    round count but every node is already terminal, meaning the caller has to
    open new lateral roots instead of waiting.
    """

    can_end: bool
    reason: str = ""
    recovery_required: bool = False
    quality_score: float | None = None


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of checking that an agent identity really exists.

    ``valid=True`` with a non-empty ``reason`` means the check was
    inconclusive and the caller should only be warned.
    """

    valid: bool
    agent_id: str
    found_in: str | None = None
    reason: str = ""

    @property
    def inconclusive(self) -> bool:
        return self.valid and bool(self.reason)


@dataclass(frozen=True)
class NodeSummary:
    """Reporting view of a node in an end-of-investigation report."""

    node_id: str
    title: str
    findings: str
    round: int
    state: NodeState
    verified_by: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "title": self.title,
            "findings": self.findings,
            "round": self.round,
            "state": self.state.value,
            "verified_by": list(self.verified_by),
        }
