"""Tests for the stateless Validator."""

from __future__ import annotations

import pytest

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.enums import ErrorCode, NodeState
from tree_of_thoughts.domain.values import EndCheck, ProposedNode
from tree_of_thoughts.infrastructure.config import PolicyConfig
from tree_of_thoughts.services.policy import PolicyRules
from tree_of_thoughts.services.validation import EndGate, Validator

EXPLORE = NodeState.EXPLORE
FOUND = NodeState.FOUND
VERIFY = NodeState.VERIFY
EXHAUST = NodeState.EXHAUST
DEAD = NodeState.DEAD


@pytest.fixture
def validator() -> Validator:
    return Validator()


def _codes(issues) -> list[ErrorCode]:
    return [i.code for i in issues]


class _BlockingGate(EndGate):
    def __init__(self) -> None:
        self.calls = 0

    def check(self, investigation: Investigation) -> EndCheck:
        self.calls += 1
        return EndCheck(can_end=False, reason="blocked by gate", quality_score=0.1)


class _PassingGate(EndGate):
    def check(self, investigation: Investigation) -> EndCheck:
        return EndCheck(can_end=True, quality_score=0.9)


# ===================================================================== #
#  Proposals                                                             #
# ===================================================================== #


class TestProposedNode:

    def test_valid_root(self, validator: Validator, investigation: Investigation) -> None:
        assert validator.validate_proposed_node(ProposedNode("R1.A"), investigation) == []

    def test_duplicate_id(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        add_nodes(investigation, [("R1.A", None, EXPLORE)])
        issues = validator.validate_proposed_node(ProposedNode("R1.A"), investigation)
        assert _codes(issues) == [ErrorCode.DUPLICATE_ID]
        assert issues[0].suggestion

    def test_parent_not_found(self, validator: Validator, investigation: Investigation) -> None:
        issues = validator.validate_proposed_node(ProposedNode("R2.A", "R1.A"), investigation)
        assert _codes(issues) == [ErrorCode.PARENT_NOT_FOUND]

    @pytest.mark.parametrize("terminal", [DEAD, VERIFY])
    def test_terminal_parent(
        self, validator: Validator, investigation: Investigation, add_nodes, terminal: NodeState
    ) -> None:
        add_nodes(investigation, [("R4.A", None, terminal)])
        issues = validator.validate_proposed_node(ProposedNode("R5.A", "R4.A"), investigation)
        assert _codes(issues) == [ErrorCode.TERMINAL_PARENT]

    def test_invalid_id_format(self, validator: Validator, investigation: Investigation) -> None:
        issues = validator.validate_proposed_node(ProposedNode("node-1"), investigation)
        assert _codes(issues) == [ErrorCode.INVALID_ID_FORMAT]

    def test_round_must_follow_parent(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R2.A", None, EXPLORE)])
        issues = validator.validate_proposed_node(ProposedNode("R2.B", "R2.A"), investigation)
        assert _codes(issues) == [ErrorCode.ROUND_NOT_AFTER_PARENT]
        assert "R3.B" in issues[0].suggestion


class TestProposedBatch:

    def test_empty(self, validator: Validator, investigation: Investigation) -> None:
        assert _codes(validator.validate_proposed_batch([], investigation)) == [ErrorCode.EMPTY_BATCH]

    def test_overflow(self, investigation: Investigation) -> None:
        validator = Validator(PolicyRules(PolicyConfig(max_batch_size=2)))
        batch = [ProposedNode(f"R1.{c}") for c in "ABC"]
        assert ErrorCode.BATCH_OVERFLOW in _codes(validator.validate_proposed_batch(batch, investigation))

    def test_duplicate_in_batch(self, validator: Validator, investigation: Investigation) -> None:
        batch = [ProposedNode("R1.A"), ProposedNode("R1.A")]
        issues = validator.validate_proposed_batch(batch, investigation)
        assert _codes(issues) == [ErrorCode.DUPLICATE_IN_BATCH]

    def test_aggregates_every_issue(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R1.A", None, EXPLORE)])
        batch = [
            ProposedNode("R1.A"),
            ProposedNode("R2.B", "R1.Z"),
            ProposedNode("bad"),
        ]
        issues = validator.validate_proposed_batch(batch, investigation)
        assert sorted(c.value for c in _codes(issues)) == [
            "DUPLICATE_ID", "INVALID_ID_FORMAT", "PARENT_NOT_FOUND",
        ]

    def test_insufficient_roots(self, validator: Validator) -> None:
        inv = Investigation("q", min_roots=3)
        issues = validator.validate_proposed_batch([ProposedNode("R1.A")], inv)
        assert _codes(issues) == [ErrorCode.INSUFFICIENT_ROOTS]
        assert issues[0].suggestion == "Add 2 more root nodes"

    def test_enough_roots(self, validator: Validator) -> None:
        inv = Investigation("q", min_roots=2)
        batch = [ProposedNode("R1.A"), ProposedNode("R1.B")]
        assert validator.validate_proposed_batch(batch, inv) == []

    def test_lateral_roots_after_round_one(self, validator: Validator) -> None:
        inv = Investigation("q", min_roots=3)
        inv.current_round = 3
        assert validator.validate_proposed_batch([ProposedNode("R4.Z")], inv) == []


# ===================================================================== #
#  Reclassification                                                      #
# ===================================================================== #


class TestReclassification:

    def test_node_not_found(self, validator: Validator, investigation: Investigation) -> None:
        issues = validator.validate_reclassification("R1.A", DEAD, investigation)
        assert _codes(issues) == [ErrorCode.NODE_NOT_FOUND]

    def test_has_children(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        add_nodes(investigation, [("R1.A", None, EXPLORE), ("R2.A", "R1.A", EXPLORE)])
        issues = validator.validate_reclassification("R1.A", DEAD, investigation)
        assert _codes(issues) == [ErrorCode.HAS_CHILDREN]

    def test_non_terminal_with_children_ok(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R1.A", None, EXPLORE), ("R2.A", "R1.A", EXPLORE)])
        assert validator.validate_reclassification("R1.A", EXHAUST, investigation) == []

    def test_invalid_under_parent(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R4.A", None, FOUND), ("R5.A", "R4.A", VERIFY)])
        issues = validator.validate_reclassification("R5.A", DEAD, investigation)
        assert _codes(issues) == [ErrorCode.INVALID_CHILD_STATE]


# ===================================================================== #
#  Tree diagnostics                                                      #
# ===================================================================== #


class TestIncompleteNodes:

    def test_reports_has_and_needs(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [
            ("R1.A", None, EXPLORE),
            ("R2.A", "R1.A", EXPLORE),
        ])
        incomplete = {i.node_id: (i.has, i.needs) for i in validator.incomplete_nodes(investigation)}
        assert incomplete == {"R1.A": (1, 2), "R2.A": (0, 2)}

    def test_terminal_nodes_never_incomplete(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R4.A", None, DEAD), ("R4.B", None, VERIFY)])
        assert validator.incomplete_nodes(investigation) == []

    def test_found_needs_verify(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R4.A", None, FOUND)])
        [item] = validator.incomplete_nodes(investigation)
        assert (item.node_id, item.has, item.needs) == ("R4.A", 0, 1)


class TestInvalidExhaust:

    def test_non_dead_children_flagged(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [
            ("R3.A", None, EXHAUST),
            ("R4.A", "R3.A", DEAD),
            ("R4.B", "R3.A", EXPLORE),
        ])
        [item] = validator.invalid_exhaust_children(investigation)
        assert item.node_id == "R3.A"
        assert item.offending_children == ("R4.B",)

    def test_childless_exhaust_ignored(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R3.A", None, EXHAUST)])
        assert validator.invalid_exhaust_children(investigation) == []


# ===================================================================== #
#  Termination                                                           #
# ===================================================================== #


def _complete_tree(investigation: Investigation, add_nodes) -> Investigation:
    add_nodes(investigation, [
        ("R1.A", None, EXPLORE),
        ("R2.A", "R1.A", EXPLORE),
        ("R2.B", "R1.A", EXPLORE),
        ("R3.A", "R2.A", EXPLORE),
        ("R3.B", "R2.A", EXPLORE),
        ("R3.C", "R2.B", EXHAUST),
        ("R3.D", "R2.B", EXPLORE),
        ("R4.A", "R3.A", FOUND),
        ("R4.B", "R3.B", DEAD),
        ("R4.C", "R3.C", DEAD),
        ("R4.D", "R3.D", DEAD),
        ("R5.A", "R4.A", VERIFY),
    ])
    investigation.current_round = 5
    return investigation


class TestCanEnd:

    def test_round_gate(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        add_nodes(investigation, [("R1.A", None, EXPLORE)])
        verdict = validator.can_end(investigation)
        assert not verdict.can_end
        assert not verdict.recovery_required
        assert "minimum 5 rounds" in verdict.reason

    def test_recovery_required_when_all_terminal(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R1.A", None, DEAD)])
        verdict = validator.can_end(investigation)
        assert verdict.recovery_required
        assert verdict.reason.startswith("RECOVERY_REQUIRED")

    def test_empty_tree_is_not_recovery(self, validator: Validator, investigation: Investigation) -> None:
        assert not validator.can_end(investigation).recovery_required

    def test_incomplete_blocks(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        _complete_tree(investigation, add_nodes)
        add_nodes(investigation, [("R5.B", "R4.A", FOUND)])
        verdict = validator.can_end(investigation)
        assert not verdict.can_end
        assert "R5.B (0/1)" in verdict.reason

    def test_invalid_exhaust_blocks(
        self, validator: Validator, investigation: Investigation, add_nodes
    ) -> None:
        _complete_tree(investigation, add_nodes)
        add_nodes(investigation, [("R4.E", "R3.C", EXPLORE), ("R5.E", "R4.E", DEAD)])
        verdict = validator.can_end(investigation)
        assert not verdict.can_end
        assert "EXHAUST" in verdict.reason
        assert "R4.E" in verdict.reason

    def test_pending_blocks(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        _complete_tree(investigation, add_nodes)
        investigation.add_pending_proposals([ProposedNode("R6.A", "R4.A")])
        verdict = validator.can_end(investigation)
        assert not verdict.can_end
        assert "pending" in verdict.reason

    def test_allowed(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        _complete_tree(investigation, add_nodes)
        assert validator.can_end(investigation) == EndCheck(can_end=True)

    def test_gates_run_last(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        gate = _BlockingGate()
        add_nodes(investigation, [("R1.A", None, EXPLORE)])
        validator.can_end(investigation, [gate])
        assert gate.calls == 0

        inv = _complete_tree(Investigation("q2"), add_nodes)
        verdict = validator.can_end(inv, [_PassingGate(), gate])
        assert gate.calls == 1
        assert verdict.reason == "blocked by gate"

    def test_gate_score_reported(self, validator: Validator, investigation: Investigation, add_nodes) -> None:
        _complete_tree(investigation, add_nodes)
        verdict = validator.can_end(investigation, [_PassingGate()])
        assert verdict.can_end
        assert verdict.quality_score == 0.9

    def test_min_rounds_from_config(self, investigation: Investigation, add_nodes) -> None:
        validator = Validator(PolicyRules(PolicyConfig(min_rounds_to_end=1)))
        add_nodes(investigation, [("R1.A", None, DEAD)])
        assert validator.can_end(investigation).can_end
