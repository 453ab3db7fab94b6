"""Tests for tree quality metrics and the quality end gate."""

from __future__ import annotations

import pytest

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.enums import NodeState
from tree_of_thoughts.measurement.quality import QualityCalculator, QualityGate, QualityMetrics


@pytest.fixture
def small_tree(investigation: Investigation, add_nodes) -> Investigation:
    return add_nodes(investigation, [
        ("R1.A", None, NodeState.EXPLORE),
        ("R2.A", "R1.A", NodeState.EXPLORE),
        ("R2.B", "R1.A", NodeState.FOUND),
        ("R3.A", "R2.A", NodeState.DEAD),
        ("R3.B", "R2.B", NodeState.VERIFY),
    ])


class TestQualityCalculator:

    def test_empty_investigation(self, investigation: Investigation) -> None:
        assert QualityCalculator().calculate(investigation) == QualityMetrics()

    def test_shape_metrics(self, small_tree: Investigation) -> None:
        q = QualityCalculator().calculate(small_tree)
        assert q.max_depth == 3
        assert q.tree_height == 3
        assert q.avg_terminal_depth == pytest.approx(3.0)
        assert q.avg_branching_factor == pytest.approx(4 / 3)
        assert q.branching_std == pytest.approx(0.4714, abs=1e-4)
        assert q.terminal_ratio == pytest.approx(0.4)
        assert q.found_to_dead_ratio == pytest.approx(1.0)

    def test_scores(self, small_tree: Investigation) -> None:
        q = QualityCalculator().calculate(small_tree)
        assert q.depth_score == pytest.approx(0.6)
        assert q.breadth_score == pytest.approx(4 / 9)
        assert q.balance_score == pytest.approx(0.5)
        assert q.exploration_score == pytest.approx(0.6)
        assert q.composite_score == pytest.approx(0.3 * 0.6 + 0.3 * 4 / 9 + 0.2 * 0.5 + 0.2 * 0.4)

    def test_scores_are_capped(self, small_tree: Investigation) -> None:
        q = QualityCalculator(target_depth=2, target_branching=1.0).calculate(small_tree)
        assert q.depth_score == 1.0
        assert q.breadth_score == 1.0

    def test_found_without_dead(self, investigation: Investigation, add_nodes) -> None:
        add_nodes(investigation, [("R4.A", None, NodeState.FOUND), ("R4.B", None, NodeState.FOUND)])
        q = QualityCalculator().calculate(investigation)
        assert q.found_to_dead_ratio == 2.0
        assert q.balance_score == 0.0
        assert q.avg_terminal_depth == 0.0

    def test_height_with_unresolved_parent(self, investigation: Investigation) -> None:
        from tree_of_thoughts.domain.entities import Node

        investigation.add_node(Node("R3.A", "R2.Z", NodeState.EXPLORE, 3))
        assert QualityCalculator().calculate(investigation).tree_height == 1

    def test_to_dict(self, small_tree: Investigation) -> None:
        data = QualityCalculator().calculate(small_tree).to_dict()
        assert set(data) >= {"composite_score", "depth_score", "breadth_score", "balance_score"}
        assert isinstance(data["composite_score"], float)


class TestQualityGate:

    def test_depth_blocks(self, small_tree: Investigation) -> None:
        verdict = QualityGate(min_score=0.0, min_depth=4).check(small_tree)
        assert not verdict.can_end
        assert "must reach depth 4" in verdict.reason
        assert verdict.quality_score is not None

    def test_score_blocks(self, small_tree: Investigation) -> None:
        verdict = QualityGate(min_score=0.5, min_depth=3).check(small_tree)
        assert not verdict.can_end
        assert "quality score 0.49 is below minimum 0.5" in verdict.reason

    def test_passes(self, small_tree: Investigation) -> None:
        verdict = QualityGate(min_score=0.4, min_depth=3).check(small_tree)
        assert verdict.can_end
        assert verdict.quality_score == pytest.approx(0.4933, abs=1e-4)
