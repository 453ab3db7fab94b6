"""Descriptive quality metrics for an investigation tree.

:class:`QualityCalculator` turns the committed tree into a
:class:`QualityMetrics` record (depth, branching, balance, exploration and a
weighted composite).  :class:`QualityGate` wraps the composite as an
optional :class:`EndGate` so termination can additionally require a
minimum depth and score.

Usage::

    metrics = QualityCalculator().calculate(investigation)
    gate = QualityGate(min_score=0.5, min_depth=4)
    verdict = gate.check(investigation)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import numpy as np

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.enums import NodeState
from tree_of_thoughts.domain.values import EndCheck
from tree_of_thoughts.services.validation import EndGate

# Composite weights: depth, breadth, balance, resolution.
_WEIGHTS = np.array([0.30, 0.30, 0.20, 0.20])


@dataclass(frozen=True)
class QualityMetrics:
    """Snapshot of tree-shape metrics.

    Attributes
    ----------
    max_depth:
        Highest committed round.
    avg_terminal_depth:
        Mean round of terminal (leaf-closing) nodes.
    tree_height:
        Longest root-to-leaf chain, counted in nodes.
    avg_branching_factor, branching_std:
        Mean and spread of child counts over nodes that have children.
    terminal_ratio:
        Share of nodes in terminal states.
    found_to_dead_ratio:
        FOUND count over DEAD count (FOUND count when there are no DEAD nodes).
    depth_score, breadth_score, balance_score, exploration_score:
        Component scores in [0, 1].
    composite_score:
        Weighted average of the components; exploration is inverted so a
        more resolved tree scores higher.
    """

    max_depth: int = 0
    avg_terminal_depth: float = 0.0
    tree_height: int = 0
    avg_branching_factor: float = 0.0
    branching_std: float = 0.0
    terminal_ratio: float = 0.0
    found_to_dead_ratio: float = 0.0
    depth_score: float = 0.0
    breadth_score: float = 0.0
    balance_score: float = 0.0
    exploration_score: float = 0.0
    composite_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class QualityCalculator:
    """Computes :class:`QualityMetrics` for an investigation.

    Parameters
    ----------
    target_depth:
        Round count that earns a full depth score.
    target_branching:
        Average branching factor that earns a full breadth score.
    """

    def __init__(self, target_depth: int = 5, target_branching: float = 3.0) -> None:
        self.target_depth = target_depth
        self.target_branching = target_branching

    def calculate(self, investigation: Investigation) -> QualityMetrics:
        nodes = investigation.all_nodes()
        if not nodes:
            return QualityMetrics()

        rounds = np.array([n.round for n in nodes], dtype=float)
        terminal = np.array([n.state.is_terminal for n in nodes], dtype=bool)
        branching = np.array([n.child_count for n in nodes if n.child_count > 0], dtype=float)

        max_depth = int(rounds.max())
        avg_terminal_depth = float(rounds[terminal].mean()) if terminal.any() else 0.0
        avg_branching = float(branching.mean()) if branching.size else 0.0
        branching_std = float(branching.std()) if branching.size else 0.0
        terminal_ratio = float(terminal.mean())

        found = len(investigation.nodes_by_state(NodeState.FOUND))
        dead = len(investigation.nodes_by_state(NodeState.DEAD))
        found_to_dead = found / dead if dead else float(found)

        depth_score = min(max_depth / self.target_depth, 1.0)
        breadth_score = min(avg_branching / self.target_branching, 1.0)
        # More DEAD than FOUND means more alternatives were ruled out.
        balance_score = dead / (dead + found) if (dead + found) else 0.0
        exploration_score = 1.0 - terminal_ratio

        components = np.array(
            [depth_score, breadth_score, balance_score, 1.0 - exploration_score]
        )
        composite = float(np.dot(_WEIGHTS, components))

        return QualityMetrics(
            max_depth=max_depth,
            avg_terminal_depth=avg_terminal_depth,
            tree_height=self._tree_height(investigation),
            avg_branching_factor=avg_branching,
            branching_std=branching_std,
            terminal_ratio=terminal_ratio,
            found_to_dead_ratio=found_to_dead,
            depth_score=depth_score,
            breadth_score=breadth_score,
            balance_score=balance_score,
            exploration_score=exploration_score,
            composite_score=composite,
        )

    @staticmethod
    def _tree_height(investigation: Investigation) -> int:
        heights: dict[str, int] = {}
        for node in investigation.all_nodes():
            chain = []
            current = node
            while current is not None and current.id not in heights:
                chain.append(current)
                current = investigation.get_node(current.parent) if current.parent else None
            base = heights[current.id] if current is not None else 0
            for visited in reversed(chain):
                base += 1
                heights[visited.id] = base
        return max(heights.values(), default=0)


class QualityGate(EndGate):
    """End gate requiring a minimum depth and composite quality score."""

    def __init__(
        self,
        min_score: float = 0.5,
        min_depth: int = 4,
        calculator: QualityCalculator | None = None,
    ) -> None:
        self.min_score = min_score
        self.min_depth = min_depth
        self.calculator = calculator or QualityCalculator()

    def check(self, investigation: Investigation) -> EndCheck:
        q = self.calculator.calculate(investigation)
        if q.max_depth < self.min_depth:
            return EndCheck(
                can_end=False,
                reason=(
                    f"Investigation must reach depth {self.min_depth}. "
                    f"Current max depth: {q.max_depth}"
                ),
                quality_score=q.composite_score,
            )
        if q.composite_score < self.min_score:
            return EndCheck(
                can_end=False,
                reason=(
                    f"Investigation quality score {q.composite_score:.2f} is below minimum "
                    f"{self.min_score}. Depth: {q.depth_score:.2f}, "
                    f"Breadth: {q.breadth_score:.2f}, Balance: {q.balance_score:.2f}"
                ),
                quality_score=q.composite_score,
            )
        return EndCheck(can_end=True, quality_score=q.composite_score)
