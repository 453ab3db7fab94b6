"""Domain entities for the tree-of-thoughts protocol.

Entities have *identity* (a unique id that persists across mutations) and a
mutable lifecycle.  ``Node`` is the only entity: its identity fields
(``id``, ``parent``, ``round``) are fixed at creation, while ``state``,
``findings`` and ``children`` may change in place.
"""

from __future__ import annotations

import time
from collections.abc import Iterable

from .enums import NodeState

# ---------------------------------------------------------------------------
# Node entity
# ---------------------------------------------------------------------------

class Node:
    """A committed unit of explored thought.

    Node ids follow ``R<round>.<suffix>``.  ``children`` keeps insertion
    order and never holds duplicates.
    """

    __slots__ = (
        "_id",
        "_parent",
        "_round",
        "state",
        "title",
        "findings",
        "agent_id",
        "committed_at",
        "_children",
    )

    def __init__(
        self,
        id: str,
        parent: str | None,
        state: NodeState,
        round: int,
        title: str = "",
        findings: str = "",
        children: Iterable[str] = (),
        agent_id: str | None = None,
        committed_at: float | None = None,
    ) -> None:
        self._id = id
        self._parent = parent
        self._round = int(round)
        self.state = state
        self.title = title
        self.findings = findings
        self.agent_id = agent_id
        self.committed_at = committed_at if committed_at is not None else time.time()
        self._children: list[str] = []
        for child_id in children:
            self.add_child(child_id)

    # -- identity (write-once) -------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def parent(self) -> str | None:
        return self._parent

    @property
    def round(self) -> int:
        return self._round

    # -- children --------------------------------------------------------------

    @property
    def children(self) -> list[str]:
        """Child ids in insertion order (a copy)."""
        return list(self._children)

    def add_child(self, child_id: str) -> bool:
        """Link *child_id*.  Returns ``False`` if it was already linked."""
        if child_id in self._children:
            return False
        self._children.append(child_id)
        return True

    @property
    def child_count(self) -> int:
        return len(self._children)

    @property
    def is_root(self) -> bool:
        return self._parent is None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return (
            self._id == other._id
            and self._parent == other._parent
            and self._round == other._round
            and self.state == other.state
            and self.title == other.title
            and self.findings == other.findings
            and self.agent_id == other.agent_id
            and self._children == other._children
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"Node(id={self._id!r}, parent={self._parent!r}, "
            f"state={self.state.value}, round={self._round}, "
            f"children={len(self._children)})"
        )
