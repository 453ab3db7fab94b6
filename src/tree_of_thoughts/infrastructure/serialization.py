"""Serialization utilities for the tree-of-thoughts protocol.

Provides ``to_dict`` / ``from_dict`` conversion for nodes, proposals and the
``Investigation`` aggregate.  The investigation document is the unit of
persistence: one document per session, rewritten wholesale on every
mutation.

Design goals:
- Every ``to_dict`` output is JSON-serializable (no enums, no sets).
- ``from_dict`` reconstructors accept permissive input and raise
  ``ValueError`` for truly unrecoverable data.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import yaml

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.entities import Node
from tree_of_thoughts.domain.enums import NodeState
from tree_of_thoughts.domain.values import ProposedNode

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


# =========================================================================== #
#  Generic helpers                                                             #
# =========================================================================== #

def _enum_val(v: Any) -> Any:
    """Return the ``.value`` if *v* is an enum member, else *v* unchanged."""
    if hasattr(v, "value"):
        return v.value
    return v


def _require(data: dict[str, Any], key: str, what: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"{what} document is missing required key {key!r}") from None


# =========================================================================== #
#  Entities and values                                                         #
# =========================================================================== #

def node_to_dict(n: Node) -> dict[str, Any]:
    return {
        "id": n.id,
        "parent": n.parent,
        "state": _enum_val(n.state),
        "title": n.title,
        "findings": n.findings,
        "children": n.children,
        "round": n.round,
        "agent_id": n.agent_id,
        "committed_at": n.committed_at,
    }


def node_from_dict(data: dict[str, Any]) -> Node:
    return Node(
        id=str(_require(data, "id", "Node")),
        parent=data.get("parent"),
        state=NodeState.parse(_require(data, "state", "Node")),
        round=int(_require(data, "round", "Node")),
        title=str(data.get("title", "")),
        findings=str(data.get("findings") or ""),
        children=[str(c) for c in data.get("children", [])],
        agent_id=data.get("agent_id"),
        committed_at=float(data.get("committed_at", 0.0)),
    )


def proposed_node_to_dict(p: ProposedNode) -> dict[str, Any]:
    return {
        "id": p.id,
        "parent": p.parent,
        "title": p.title,
        "planned_action": p.planned_action,
        "proposed_at": p.proposed_at,
    }


def proposed_node_from_dict(data: dict[str, Any]) -> ProposedNode:
    return ProposedNode(
        id=str(_require(data, "id", "Proposal")),
        parent=data.get("parent"),
        title=str(data.get("title", "")),
        planned_action=str(data.get("planned_action", "")),
        proposed_at=float(data.get("proposed_at", 0.0)),
    )


# =========================================================================== #
#  Aggregate                                                                   #
# =========================================================================== #

def investigation_to_dict(inv: Investigation) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "session_id": inv.session_id,
        "query": inv.query,
        "min_roots": inv.min_roots,
        "policy": dict(inv.policy),
        "current_round": inv.current_round,
        "current_batch": inv.current_batch,
        "nodes": {n.id: node_to_dict(n) for n in inv.all_nodes()},
        "pending_proposals": {
            p.id: proposed_node_to_dict(p) for p in inv.pending_proposals()
        },
        "used_agent_ids": inv.used_agent_ids,
        "created_at": inv.created_at,
        "updated_at": inv.updated_at,
    }


def investigation_from_dict(data: dict[str, Any]) -> Investigation:
    if not isinstance(data, dict):
        raise ValueError("Investigation document must be a mapping")
    version = data.get("schema_version", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        logger.warning(
            "Loading investigation with schema_version=%s (expected %s)",
            version, SCHEMA_VERSION,
        )
    return Investigation.restore(
        session_id=str(_require(data, "session_id", "Investigation")),
        query=str(data.get("query", "")),
        min_roots=int(data.get("min_roots", 1)),
        policy=dict(data.get("policy") or {}),
        current_round=int(data.get("current_round", 1)),
        current_batch=int(data.get("current_batch", 0)),
        created_at=float(data.get("created_at", 0.0)),
        updated_at=float(data.get("updated_at", 0.0)),
        nodes=[node_from_dict(n) for n in (data.get("nodes") or {}).values()],
        pending=[
            proposed_node_from_dict(p)
            for p in (data.get("pending_proposals") or {}).values()
        ],
        used_agent_ids={
            str(k): str(v) for k, v in (data.get("used_agent_ids") or {}).items()
        },
    )


# =========================================================================== #
#  JSON / YAML helpers                                                         #
# =========================================================================== #

def to_json(inv: Investigation, *, indent: int | None = 2) -> str:
    """Serialize an investigation to a JSON string."""
    return json.dumps(investigation_to_dict(inv), indent=indent)


def from_json(json_str: str) -> Investigation:
    """Deserialize an investigation from a JSON string."""
    return investigation_from_dict(json.loads(json_str))


def to_yaml(inv: Investigation) -> str:
    """Serialize an investigation to a YAML string (for human inspection)."""
    return yaml.safe_dump(investigation_to_dict(inv), default_flow_style=False, sort_keys=False)


def from_yaml(yaml_str: str) -> Investigation:
    return investigation_from_dict(yaml.safe_load(yaml_str))
