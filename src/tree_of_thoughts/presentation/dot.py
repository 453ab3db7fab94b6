"""Graphviz DOT rendering of an investigation tree.

Nodes are grouped per round, filled by state, and linked parent -> child.
A legend cluster explains the colours and the child requirement of each
state.
"""

from __future__ import annotations

from collections.abc import Mapping

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.enums import NodeState
from tree_of_thoughts.infrastructure.config import PolicyConfig

STATE_COLORS: Mapping[NodeState, str] = {
    NodeState.EXPLORE: "lightblue",
    NodeState.FOUND: "lightgreen",
    NodeState.VERIFY: "green",
    NodeState.EXHAUST: "orange",
    NodeState.DEAD: "red",
}

_LEGEND: Mapping[NodeState, str] = {
    NodeState.EXPLORE: "EXPLORE (Lead)\\nSpawn {early}+ to R{breadth}, {late}+ after",
    NodeState.FOUND: "FOUND (Provisional)\\nNeeds VERIFY",
    NodeState.VERIFY: "VERIFY (Confirmed)\\nStop",
    NodeState.EXHAUST: "EXHAUST (Exhausted)\\nNeeds DEAD",
    NodeState.DEAD: "DEAD (Pruned)\\nStop",
}

_missing = (set(NodeState) - set(STATE_COLORS)) | (set(NodeState) - set(_LEGEND))
if _missing:
    raise RuntimeError(
        f"DOT tables are missing entries for {sorted(s.value for s in _missing)}"
    )


def sanitize_id(node_id: str) -> str:
    """DOT identifiers cannot contain dots: ``R1.A`` -> ``R1_A``."""
    return node_id.replace(".", "_")


def escape_label(label: str) -> str:
    return label.replace("\\", "\\\\").replace('"', '\\"').replace("<", "\\<").replace(">", "\\>")


def render_dot(investigation: Investigation) -> str:
    """Return the investigation tree as a Graphviz ``digraph``."""
    lines = [
        "digraph Investigation {",
        "  rankdir=TB;",
        '  node [shape=box, style="filled,rounded", fontname="Arial"];',
        "",
    ]

    for round_no in range(1, investigation.max_round + 1):
        nodes = investigation.nodes_by_round(round_no)
        if not nodes:
            continue
        lines.append(f"  // --- Round {round_no} ---")
        for node in nodes:
            label = escape_label(f"{node.id} | {node.title}") + f"\\n({node.state.value})"
            lines.append(
                f'  {sanitize_id(node.id)} [fillcolor={STATE_COLORS[node.state]}, '
                f'label="{label}"];'
            )
        lines.append("")

    lines.append("  // --- Edges ---")
    for node in investigation.all_nodes():
        if node.parent:
            lines.append(f"  {sanitize_id(node.parent)} -> {sanitize_id(node.id)};")
    lines.append("")

    policy = PolicyConfig.from_dict(investigation.policy) if investigation.policy else PolicyConfig()
    counts = {
        "early": policy.explore_children_early,
        "breadth": policy.explore_breadth_rounds,
        "late": policy.explore_children_late,
    }
    lines.append("  // --- Legend ---")
    lines.append("  subgraph cluster_legend {")
    lines.append('    label="Legend";')
    lines.append("    node [width=2];")
    for state in NodeState:
        lines.append(
            f'    L_{state.value} [label="{_LEGEND[state].format(**counts)}", '
            f"fillcolor={STATE_COLORS[state]}];"
        )
    lines.append("  }")
    lines.append("}")
    return "\n".join(lines)
