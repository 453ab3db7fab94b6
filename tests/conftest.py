"""Shared fixtures for the tree-of-thoughts test suite."""

from __future__ import annotations

from collections.abc import Sequence

import pytest

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.entities import Node
from tree_of_thoughts.domain.enums import NodeState, OperationStatus
from tree_of_thoughts.infrastructure.config import PolicyConfig
from tree_of_thoughts.infrastructure.event_bus import EventBus, EventLog
from tree_of_thoughts.infrastructure.store import InMemoryInvestigationStore
from tree_of_thoughts.services.orchestrator import InvestigationOrchestrator

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryInvestigationStore:
    return InMemoryInvestigationStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def event_log(event_bus: EventBus) -> EventLog:
    log = EventLog()
    event_bus.subscribe_all(log.append)
    return log


@pytest.fixture
def orchestrator(
    store: InMemoryInvestigationStore, clock: FakeClock, event_bus: EventBus
) -> InvestigationOrchestrator:
    return InvestigationOrchestrator(store, config=PolicyConfig(), event_bus=event_bus, clock=clock)


# ---------------------------------------------------------------------------
# Protocol driver
# ---------------------------------------------------------------------------

# (node id, parent id, state) triples for a minimal tree that satisfies every
# end condition of the default policy at round 5.
COMPLETE_TREE: tuple[tuple[tuple[str, str | None, str], ...], ...] = (
    (("R1.A", None, "EXPLORE"),),
    (("R2.A", "R1.A", "EXPLORE"), ("R2.B", "R1.A", "EXPLORE")),
    (
        ("R3.A1", "R2.A", "EXPLORE"),
        ("R3.A2", "R2.A", "EXPLORE"),
        ("R3.B1", "R2.B", "EXPLORE"),
        ("R3.B2", "R2.B", "EXPLORE"),
    ),
    (
        ("R4.A1", "R3.A1", "FOUND"),
        ("R4.A2", "R3.A2", "DEAD"),
        ("R4.B1", "R3.B1", "DEAD"),
        ("R4.B2", "R3.B2", "DEAD"),
    ),
    (("R5.A1", "R4.A1", "VERIFY"),),
)


class ProtocolDriver:
    """Runs propose/commit rounds with fresh agents and realistic delays."""

    def __init__(self, orchestrator: InvestigationOrchestrator, clock: FakeClock) -> None:
        self.orchestrator = orchestrator
        self.clock = clock
        self._agents = 0

    def next_agent(self) -> str:
        self._agents += 1
        return f"{self._agents:07x}"

    def start(self, query: str = "Why is the build slow?", **kwargs) -> str:
        return self.orchestrator.start(query, **kwargs).session_id

    def propose(self, session_id: str, nodes: Sequence[tuple[str, str | None]]) -> None:
        response = self.orchestrator.propose(
            session_id,
            [{"id": node_id, "parent": parent, "title": f"Look at {node_id}"}
             for node_id, parent in nodes],
        )
        assert response.status == OperationStatus.OK, response.errors

    def commit(self, session_id: str, results: Sequence[tuple[str, str]]):
        self.clock.advance(30)
        return self.orchestrator.commit(
            session_id,
            [{"node_id": node_id, "state": state, "findings": f"Findings for {node_id}",
              "agent_id": self.next_agent()}
             for node_id, state in results],
        )

    def step(self, session_id: str, batch: Sequence[tuple[str, str | None, str]]):
        """Propose then commit one batch; asserts the commit is accepted."""
        self.propose(session_id, [(node_id, parent) for node_id, parent, _ in batch])
        response = self.commit(session_id, [(node_id, state) for node_id, _, state in batch])
        assert response.status == OperationStatus.OK, response.errors
        return response

    def build(self, session_id: str, rounds: int = len(COMPLETE_TREE)):
        """Drive *session_id* through the first *rounds* batches of the complete tree."""
        response = None
        for batch in COMPLETE_TREE[:rounds]:
            response = self.step(session_id, batch)
        return response


@pytest.fixture
def driver(orchestrator: InvestigationOrchestrator, clock: FakeClock) -> ProtocolDriver:
    return ProtocolDriver(orchestrator, clock)


# ---------------------------------------------------------------------------
# Aggregate builders
# ---------------------------------------------------------------------------


def _add_nodes(
    investigation: Investigation,
    specs: Sequence[tuple[str, str | None, NodeState]],
) -> Investigation:
    """Insert committed nodes directly, round taken from the id."""
    for node_id, parent, state in specs:
        round_no = int(node_id[1:].split(".", 1)[0])
        investigation.add_node(Node(node_id, parent, state, round_no, title=node_id))
    return investigation


@pytest.fixture
def add_nodes():
    return _add_nodes


@pytest.fixture
def investigation() -> Investigation:
    return Investigation("Why is the build slow?", session_id="sess1", created_at=0.0)
