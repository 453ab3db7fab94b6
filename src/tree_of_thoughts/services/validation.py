"""Validation rules for the tree-of-thoughts protocol.

The ``Validator`` is stateless: every check reads an ``Investigation`` and
returns diagnostics without mutating anything.  Proposal, batch and
reclassification checks return lists of ``ValidationIssue``; an empty list
means the call may proceed.

Classes
-------
EndGate
    Strategy interface for optional extra termination conditions.
Validator
    Per-node, per-batch, reclassification and termination checks.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Sequence

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.enums import ErrorCode, NodeState
from tree_of_thoughts.domain.values import (
    EndCheck,
    IncompleteNode,
    InvalidExhaust,
    ProposedNode,
    ValidationIssue,
)
from tree_of_thoughts.services.policy import PolicyRules, is_valid_node_id, parse_round

logger = logging.getLogger(__name__)


# ===================================================================== #
#  End gate strategy                                                     #
# ===================================================================== #


class EndGate(ABC):
    """Additional termination condition consulted after the core checks.

    Gates are independent, swappable strategies: the orchestrator decides
    which ones (if any) apply to an investigation.
    """

    @abstractmethod
    def check(self, investigation: Investigation) -> EndCheck:
        """Return ``EndCheck(can_end=False, ...)`` to block termination."""


# ===================================================================== #
#  Validator                                                             #
# ===================================================================== #


class Validator:
    """Stateless rule evaluator bound to a ``PolicyRules`` instance."""

    def __init__(self, rules: PolicyRules | None = None) -> None:
        self.rules = rules or PolicyRules()

    # -- proposals ----------------------------------------------------------

    def validate_proposed_node(
        self, proposal: ProposedNode, investigation: Investigation
    ) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []

        if investigation.has_node(proposal.id):
            issues.append(ValidationIssue(
                proposal.id,
                ErrorCode.DUPLICATE_ID,
                f"Node {proposal.id} already exists",
                "Use a unique node ID",
            ))

        if proposal.parent is not None:
            parent = investigation.get_node(proposal.parent)
            if parent is None:
                issues.append(ValidationIssue(
                    proposal.id,
                    ErrorCode.PARENT_NOT_FOUND,
                    f"Parent node {proposal.parent} does not exist",
                    "Ensure the parent node is committed before proposing children",
                ))
            elif self.rules.is_terminal(parent.state):
                issues.append(ValidationIssue(
                    proposal.id,
                    ErrorCode.TERMINAL_PARENT,
                    f"Parent {parent.id} is {parent.state.value} (terminal). "
                    "Cannot spawn children from terminal nodes.",
                    f"Reclassify {parent.id} to a non-terminal state first",
                ))
            elif is_valid_node_id(proposal.id) and parse_round(proposal.id) <= parent.round:
                issues.append(ValidationIssue(
                    proposal.id,
                    ErrorCode.ROUND_NOT_AFTER_PARENT,
                    f"Node {proposal.id} is in round {parse_round(proposal.id)} but its "
                    f"parent {parent.id} is in round {parent.round}",
                    f"Use a round number greater than {parent.round}, "
                    f"e.g. R{parent.round + 1}.{proposal.id.split('.', 1)[-1]}",
                ))

        if not is_valid_node_id(proposal.id):
            issues.append(ValidationIssue(
                proposal.id,
                ErrorCode.INVALID_ID_FORMAT,
                f"Node ID {proposal.id} does not match format R[round].[id]",
                "Use format like R1.A, R2.A1, R3.A1a",
            ))

        return issues

    def validate_proposed_batch(
        self, proposals: Sequence[ProposedNode], investigation: Investigation
    ) -> list[ValidationIssue]:
        """Check a whole ``propose`` batch.  Aggregates every per-node issue."""
        cfg = self.rules.config
        issues: list[ValidationIssue] = []

        if not proposals:
            issues.append(ValidationIssue(
                "BATCH",
                ErrorCode.EMPTY_BATCH,
                "Batch contains no nodes",
                "Propose at least one node",
            ))
            return issues

        if len(proposals) > cfg.max_batch_size:
            issues.append(ValidationIssue(
                "BATCH",
                ErrorCode.BATCH_OVERFLOW,
                f"Batch contains {len(proposals)} nodes, maximum is {cfg.max_batch_size}",
                f"Split into multiple batches of {cfg.max_batch_size} or fewer",
            ))

        counts = Counter(p.id for p in proposals)
        for node_id, count in counts.items():
            if count > 1:
                issues.append(ValidationIssue(
                    node_id,
                    ErrorCode.DUPLICATE_IN_BATCH,
                    f"Node ID {node_id} appears {count} times in batch",
                    "Ensure each node has a unique ID",
                ))

        issues.extend(self.validate_min_roots(proposals, investigation))

        for proposal in proposals:
            issues.extend(self.validate_proposed_node(proposal, investigation))

        return issues

    def validate_min_roots(
        self, proposals: Sequence[ProposedNode], investigation: Investigation
    ) -> list[ValidationIssue]:
        """Round-1 root batches must bring the root count up to ``min_roots``."""
        new_roots = [p for p in proposals if p.parent is None]
        if not new_roots or investigation.current_round != 1:
            return []
        existing = len(investigation.roots())
        total = existing + len(new_roots)
        if total >= investigation.min_roots:
            return []
        return [ValidationIssue(
            "BATCH",
            ErrorCode.INSUFFICIENT_ROOTS,
            f"Round 1 requires at least {investigation.min_roots} root nodes. "
            f"Current: {existing}, Proposed: {len(new_roots)}, Total: {total}",
            f"Add {investigation.min_roots - total} more root nodes",
        )]

    # -- reclassification ---------------------------------------------------

    def validate_reclassification(
        self, node_id: str, new_state: NodeState, investigation: Investigation
    ) -> list[ValidationIssue]:
        node = investigation.get_node(node_id)
        if node is None:
            return [ValidationIssue(
                node_id,
                ErrorCode.NODE_NOT_FOUND,
                f"Node {node_id} does not exist",
                "Check node ID spelling",
            )]

        issues: list[ValidationIssue] = []
        if self.rules.is_terminal(new_state) and node.child_count > 0:
            issues.append(ValidationIssue(
                node_id,
                ErrorCode.HAS_CHILDREN,
                f"Cannot reclassify {node_id} to {new_state.value} because it has "
                f"{node.child_count} children",
                "Resolve or reclassify children first, or pick a non-terminal state",
            ))

        parent = investigation.get_node(node.parent) if node.parent else None
        if parent is not None and not self.rules.is_valid_child_state(parent.state, new_state):
            allowed = ", ".join(sorted(s.value for s in self.rules.valid_child_states(parent.state)))
            issues.append(ValidationIssue(
                node_id,
                ErrorCode.INVALID_CHILD_STATE,
                f"{new_state.value} is not allowed under {parent.state.value} parent {parent.id}",
                f"Allowed states under {parent.state.value}: {allowed}",
            ))
        return issues

    # -- tree diagnostics ---------------------------------------------------

    def incomplete_nodes(self, investigation: Investigation) -> list[IncompleteNode]:
        """Non-terminal nodes with fewer children than their state requires."""
        result: list[IncompleteNode] = []
        for node in investigation.all_nodes():
            if self.rules.is_terminal(node.state):
                continue
            needs = self.rules.required_children(node.state, node.round)
            if node.child_count < needs:
                result.append(IncompleteNode(node.id, node.state, node.child_count, needs))
        return result

    def invalid_exhaust_children(self, investigation: Investigation) -> list[InvalidExhaust]:
        """EXHAUST nodes whose children are not all DEAD."""
        result: list[InvalidExhaust] = []
        for node in investigation.nodes_by_state(NodeState.EXHAUST):
            if not node.child_count:
                continue
            offending = tuple(
                child.id
                for child in investigation.children_of(node.id)
                if child.state != NodeState.DEAD
            )
            if offending:
                result.append(InvalidExhaust(node.id, offending))
        return result

    # -- termination ----------------------------------------------------------

    def can_end(
        self,
        investigation: Investigation,
        gates: Sequence[EndGate] = (),
    ) -> EndCheck:
        """Evaluate the termination gate in its fixed order."""
        min_rounds = self.rules.config.min_rounds_to_end
        nodes = investigation.all_nodes()

        if investigation.current_round < min_rounds:
            if nodes and all(self.rules.is_terminal(n.state) for n in nodes):
                return EndCheck(
                    can_end=False,
                    reason=(
                        f"RECOVERY_REQUIRED: All nodes are terminal but only at round "
                        f"{investigation.current_round}. Must reach round {min_rounds}; "
                        "spawn new lateral roots to continue."
                    ),
                    recovery_required=True,
                )
            return EndCheck(
                can_end=False,
                reason=(
                    f"Investigation is at round {investigation.current_round}, "
                    f"minimum {min_rounds} rounds required"
                ),
            )

        incomplete = self.incomplete_nodes(investigation)
        if incomplete:
            listing = ", ".join(f"{i.node_id} ({i.has}/{i.needs})" for i in incomplete)
            return EndCheck(
                can_end=False,
                reason=f"{len(incomplete)} nodes still need children: {listing}",
            )

        invalid = self.invalid_exhaust_children(investigation)
        if invalid:
            listing = "; ".join(
                f"{i.node_id} has non-DEAD children {', '.join(i.offending_children)}"
                for i in invalid
            )
            return EndCheck(
                can_end=False,
                reason=f"{len(invalid)} EXHAUST nodes are not confirmed dead: {listing}",
            )

        if investigation.pending_count > 0:
            return EndCheck(
                can_end=False,
                reason=f"{investigation.pending_count} pending proposals not yet committed",
            )

        score: float | None = None
        for gate in gates:
            verdict = gate.check(investigation)
            if verdict.quality_score is not None:
                score = verdict.quality_score
            if not verdict.can_end:
                logger.debug("End gate %s blocked: %s", type(gate).__name__, verdict.reason)
                return verdict

        return EndCheck(can_end=True, quality_score=score)
