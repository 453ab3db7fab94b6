"""Tree-of-Thoughts investigation protocol.

A stateful engine that forces multi-step investigations into a
breadth-first tree: callers propose nodes, external agents do the work,
results are committed back, and termination is refused until the tree is
deep and complete enough.
"""

__version__ = "0.1.0"

from tree_of_thoughts.domain import Investigation, Node, NodeState
from tree_of_thoughts.infrastructure import (
    InMemoryInvestigationStore,
    JsonFileInvestigationStore,
    PolicyConfig,
)
from tree_of_thoughts.services.orchestrator import InvestigationOrchestrator

__all__ = [
    "InvestigationOrchestrator",
    "Investigation",
    "Node",
    "NodeState",
    "PolicyConfig",
    "InMemoryInvestigationStore",
    "JsonFileInvestigationStore",
]
