"""Policy rules for the tree-of-thoughts protocol.

Pure functions over ``NodeState`` and round numbers: which states are
terminal, how many children a node needs, which child states are legal under
a parent, and how too-early terminal claims are downgraded.  Every numeric
threshold comes from an injected ``PolicyConfig``.

Classes
-------
DepthRule
    One ordered depth-enforcement rewrite.
PolicyRules
    Rule set bound to a ``PolicyConfig``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from tree_of_thoughts.domain.enums import TERMINAL_STATES, NodeState, WarningCode
from tree_of_thoughts.infrastructure.config import PolicyConfig

NODE_ID_PATTERN = re.compile(r"^R\d+\.[A-Za-z0-9]+$")
_ROUND_PREFIX = re.compile(r"^R(\d+)\.")

_ALL_STATES = frozenset(NodeState)

# Which states a child may hold, keyed by the parent's state.
VALID_CHILD_STATES: Mapping[NodeState, frozenset[NodeState]] = {
    NodeState.EXPLORE: _ALL_STATES,
    NodeState.FOUND: frozenset({NodeState.EXPLORE, NodeState.FOUND, NodeState.VERIFY}),
    NodeState.EXHAUST: frozenset({NodeState.EXPLORE, NodeState.EXHAUST, NodeState.DEAD}),
    NodeState.VERIFY: frozenset(),
    NodeState.DEAD: frozenset(),
}


def _check_exhaustive(table: Mapping[NodeState, object], name: str) -> None:
    missing = _ALL_STATES - set(table)
    if missing:
        raise RuntimeError(
            f"{name} is missing entries for {sorted(s.value for s in missing)}"
        )


_check_exhaustive(VALID_CHILD_STATES, "VALID_CHILD_STATES")


def parse_round(node_id: str, default: int = 1) -> int:
    """Extract the round from an ``R<round>.<suffix>`` id, else *default*."""
    match = _ROUND_PREFIX.match(node_id)
    return int(match.group(1)) if match else default


def is_valid_node_id(node_id: str) -> bool:
    return NODE_ID_PATTERN.match(node_id) is not None


# ---------------------------------------------------------------------------
# Depth enforcement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DepthRule:
    """Rewrite *state* to *fallback* when claimed before *min_round*."""

    state: NodeState
    min_round: int
    fallback: NodeState
    code: WarningCode

    def applies(self, state: NodeState, round: int) -> bool:
        return state == self.state and round < self.min_round


class PolicyRules:
    """Round-dependent policy surface bound to a ``PolicyConfig``.

    Parameters
    ----------
    config:
        Thresholds to apply.  Defaults to ``PolicyConfig()``.
    """

    def __init__(self, config: PolicyConfig | None = None) -> None:
        self.config = config or PolicyConfig()
        cfg = self.config
        # Evaluated top to bottom, first match wins.
        self.depth_rules: tuple[DepthRule, ...] = (
            DepthRule(NodeState.FOUND, cfg.min_round_found, NodeState.EXPLORE,
                      WarningCode.DEPTH_ENFORCED),
            DepthRule(NodeState.EXHAUST, cfg.min_round_exhaust, NodeState.EXPLORE,
                      WarningCode.EXHAUST_ENFORCED),
            DepthRule(NodeState.DEAD, cfg.min_round_exhaust, NodeState.EXPLORE,
                      WarningCode.DEAD_ENFORCED),
            DepthRule(NodeState.DEAD, cfg.min_round_dead, NodeState.EXHAUST,
                      WarningCode.DEAD_ENFORCED),
        )
        self._required: Mapping[NodeState, int | None] = {
            NodeState.EXPLORE: None,  # round-dependent
            NodeState.FOUND: cfg.found_required_children,
            NodeState.EXHAUST: cfg.exhaust_required_children,
            NodeState.VERIFY: 0,
            NodeState.DEAD: 0,
        }
        _check_exhaustive(self._required, "required-children table")

    # -- state classification ---------------------------------------------------

    @staticmethod
    def is_terminal(state: NodeState) -> bool:
        return state in TERMINAL_STATES

    def required_children(self, state: NodeState, round: int) -> int:
        """Children a node in *state*, committed in *round*, must have."""
        if state == NodeState.EXPLORE:
            if round <= self.config.explore_breadth_rounds:
                return self.config.explore_children_early
            return self.config.explore_children_late
        return self._required[state] or 0

    @staticmethod
    def valid_child_states(parent_state: NodeState) -> frozenset[NodeState]:
        return VALID_CHILD_STATES[parent_state]

    def is_valid_child_state(self, parent_state: NodeState, child_state: NodeState) -> bool:
        return child_state in self.valid_child_states(parent_state)

    # -- round gating -----------------------------------------------------------

    def enforce_depth(
        self, state: NodeState, round: int
    ) -> tuple[NodeState, DepthRule | None]:
        """Return the state to materialise and the rule that fired, if any."""
        for rule in self.depth_rules:
            if rule.applies(state, round):
                return rule.fallback, rule
        return state, None

    def min_round_for(self, state: NodeState) -> int:
        """First round in which *state* survives depth enforcement."""
        return max(
            (r.min_round for r in self.depth_rules if r.state == state),
            default=1,
        )

    def terminal_ratio_cap(self, round: int) -> float:
        caps = self.config.terminal_ratio_caps
        if round in caps:
            return caps[round]
        earlier = [r for r in caps if r < round]
        if not caps or round > max(caps):
            return 1.0
        return caps[max(earlier)] if earlier else 1.0

    def terminal_ratio(self, states: Sequence[NodeState]) -> float:
        if not states:
            return 0.0
        return sum(1 for s in states if self.is_terminal(s)) / len(states)
