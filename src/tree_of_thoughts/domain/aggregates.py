"""Aggregate root for the tree-of-thoughts protocol.

Aggregates enforce consistency boundaries.  External code should only mutate
investigation state through ``Investigation`` methods, never by reaching into
its node map directly.

The aggregate doubles as the *node store*: it owns every committed ``Node``,
every staged ``ProposedNode`` and the append-only agent ledger, and exposes
lookup, insertion, parent/child linkage and round-indexed queries.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from .entities import Node
from .enums import NodeState
from .exceptions import InvariantViolationError, NodeNotFoundError
from .values import ProposedNode


class Investigation:
    """One tree-of-thoughts session.

    Parameters
    ----------
    query:
        The problem statement under investigation.
    session_id:
        Opaque unique identifier.  Generated when omitted.
    min_roots:
        Minimum number of round-1 roots the caller must open.
    policy:
        Raw policy settings captured at start time (see
        ``infrastructure.config.PolicyConfig``).  Stored with the document so
        an investigation keeps the thresholds it was started with.
    """

    def __init__(
        self,
        query: str,
        session_id: str | None = None,
        min_roots: int = 1,
        policy: Mapping[str, Any] | None = None,
        created_at: float | None = None,
    ) -> None:
        now = time.time()
        self.session_id: str = session_id or uuid.uuid4().hex
        self.query = query
        self.min_roots = min_roots
        self.policy: dict[str, Any] = dict(policy or {})
        self.current_round: int = 1
        self.current_batch: int = 0
        self.created_at: float = created_at if created_at is not None else now
        self.updated_at: float = self.created_at
        self._nodes: dict[str, Node] = {}
        self._pending: dict[str, ProposedNode] = {}
        self._used_agent_ids: dict[str, str] = {}

    @classmethod
    def restore(
        cls,
        *,
        session_id: str,
        query: str,
        min_roots: int,
        policy: Mapping[str, Any],
        current_round: int,
        current_batch: int,
        created_at: float,
        updated_at: float,
        nodes: Iterable[Node],
        pending: Iterable[ProposedNode],
        used_agent_ids: Mapping[str, str],
    ) -> Investigation:
        """Rebuild a persisted investigation without re-running insertion checks.

        Child links are taken from the stored nodes as-is.
        """
        inv = cls(
            query,
            session_id=session_id,
            min_roots=min_roots,
            policy=policy,
            created_at=created_at,
        )
        inv.current_round = current_round
        inv.current_batch = current_batch
        inv.updated_at = updated_at
        inv._nodes = {n.id: n for n in nodes}
        inv._pending = {p.id: p for p in pending}
        inv._used_agent_ids = dict(used_agent_ids)
        return inv

    # -- node store: committed nodes --------------------------------------------

    def add_node(self, node: Node) -> None:
        """Insert *node* and link it under its parent when the parent exists.

        Raises ``InvariantViolationError`` if the id is taken, the parent is
        terminal, or the node's round is not after its parent's round.
        """
        if node.id in self._nodes:
            raise InvariantViolationError(
                f"Node {node.id!r} already exists", node_id=node.id
            )
        parent = self._nodes.get(node.parent) if node.parent else None
        if parent is not None:
            if parent.state.is_terminal:
                raise InvariantViolationError(
                    f"Cannot attach {node.id!r} under terminal node {parent.id!r} "
                    f"({parent.state.value})",
                    node_id=node.id,
                )
            if node.round <= parent.round:
                raise InvariantViolationError(
                    f"Node {node.id!r} (round {node.round}) must come after its "
                    f"parent {parent.id!r} (round {parent.round})",
                    node_id=node.id,
                )
        self._nodes[node.id] = node
        if parent is not None:
            parent.add_child(node.id)

    def get_node(self, node_id: str) -> Node | None:
        """Return the node with *node_id*, or ``None``."""
        return self._nodes.get(node_id)

    def require_node(self, node_id: str) -> Node:
        """Return the node with *node_id*.  Raises ``NodeNotFoundError`` if absent."""
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def set_state(self, node_id: str, state: NodeState) -> NodeState:
        """Overwrite a node's state in place.  Returns the previous state."""
        node = self.require_node(node_id)
        if state.is_terminal and node.child_count:
            raise InvariantViolationError(
                f"Node {node_id!r} has children and cannot become {state.value}",
                node_id=node_id,
            )
        previous = node.state
        node.state = state
        return previous

    def all_nodes(self) -> list[Node]:
        """Every committed node in insertion order."""
        return list(self._nodes.values())

    def nodes_by_round(self, round: int) -> list[Node]:
        return [n for n in self._nodes.values() if n.round == round]

    def nodes_by_state(self, state: NodeState) -> list[Node]:
        return [n for n in self._nodes.values() if n.state == state]

    def roots(self) -> list[Node]:
        return [n for n in self._nodes.values() if n.parent is None]

    def children_of(self, node_id: str) -> list[Node]:
        """Resolved child nodes of *node_id* in insertion order."""
        node = self.require_node(node_id)
        return [self._nodes[c] for c in node.children if c in self._nodes]

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def max_round(self) -> int:
        """Highest round among committed nodes (0 when empty)."""
        return max((n.round for n in self._nodes.values()), default=0)

    # -- node store: pending proposals ------------------------------------------

    def add_pending_proposals(self, proposals: Iterable[ProposedNode]) -> None:
        """Stage *proposals*.  Re-proposing a pending id replaces the entry."""
        for proposal in proposals:
            self._pending[proposal.id] = proposal

    def get_pending_proposal(self, node_id: str) -> ProposedNode | None:
        return self._pending.get(node_id)

    def remove_pending_proposal(self, node_id: str) -> bool:
        """Drop a staged proposal.  Returns ``True`` if it existed."""
        return self._pending.pop(node_id, None) is not None

    def pending_proposals(self) -> list[ProposedNode]:
        return list(self._pending.values())

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # -- agent ledger -----------------------------------------------------------

    def record_agent(self, agent_id: str, node_id: str) -> None:
        """Remember that *agent_id* produced *node_id*.  Entries are never removed."""
        self._used_agent_ids.setdefault(agent_id, node_id)

    def node_for_agent(self, agent_id: str) -> str | None:
        return self._used_agent_ids.get(agent_id)

    @property
    def used_agent_ids(self) -> dict[str, str]:
        return dict(self._used_agent_ids)

    # -- bookkeeping ------------------------------------------------------------

    def advance(self) -> None:
        """Move ``current_round`` to the highest committed round and bump the batch."""
        self.current_round = max(self.current_round, self.max_round, 1)
        self.current_batch += 1

    def touch(self, now: float | None = None) -> None:
        self.updated_at = now if now is not None else time.time()

    def __repr__(self) -> str:
        return (
            f"Investigation(session_id={self.session_id!r}, "
            f"round={self.current_round}, nodes={len(self._nodes)}, "
            f"pending={len(self._pending)})"
        )
