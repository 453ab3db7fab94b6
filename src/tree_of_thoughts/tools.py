"""LangChain tool surface for the protocol.

:func:`build_tools` wraps an :class:`InvestigationOrchestrator` in six
``StructuredTool`` objects (``tot_start`` ... ``tot_end``) whose argument
schemas are pydantic models.  Each tool returns the JSON text of the
orchestrator response, so any tool-calling agent can drive an
investigation.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, Field

from tree_of_thoughts.domain.enums import NodeState
from tree_of_thoughts.services.orchestrator import InvestigationOrchestrator

logger = logging.getLogger(__name__)


# -- Argument schemas ---------------------------------------------------------


class StartInput(BaseModel):
    """Arguments of ``tot_start``."""

    query: str = Field(description="The investigation query/problem to solve")
    min_roots: int | None = Field(
        default=None, ge=1, description="Minimum number of round-1 root nodes"
    )


class ProposedNodeInput(BaseModel):
    id: str = Field(description="Node ID in format R[round].[id], e.g. R2.A1")
    parent: str | None = Field(default=None, description="Parent node ID or null for roots")
    title: str = Field(default="", description="Short title describing this node's focus")
    planned_action: str = Field(default="", description="What the agent will investigate")


class ProposeInput(BaseModel):
    """Arguments of ``tot_propose``."""

    session_id: str = Field(description="The investigation session ID")
    nodes: list[ProposedNodeInput] = Field(description="Nodes to stage for exploration")


class CommitResultInput(BaseModel):
    node_id: str = Field(description="The node ID that was executed")
    state: NodeState = Field(
        description=(
            "EXPLORE=dig deeper, FOUND=provisional solution (R4+, needs VERIFY), "
            "VERIFY=confirms FOUND, EXHAUST=subtree exhausted (R3+, needs DEAD), "
            "DEAD=dead end (R4+)"
        )
    )
    findings: str = Field(default="", description="What the agent discovered")
    agent_id: str | None = Field(
        default=None, description="ID of the agent that performed the research"
    )


class CommitInput(BaseModel):
    """Arguments of ``tot_commit``."""

    session_id: str = Field(description="The investigation session ID")
    results: list[CommitResultInput] = Field(description="Results from executed agents")


class ReclassifyInput(BaseModel):
    """Arguments of ``tot_reclassify``."""

    session_id: str = Field(description="The investigation session ID")
    node_id: str = Field(description="The node ID to reclassify")
    new_state: NodeState = Field(description="The new state for the node")


class SessionInput(BaseModel):
    """Arguments of ``tot_status`` and ``tot_end``."""

    session_id: str = Field(description="The investigation session ID")


def _as_dict(item: Any) -> dict[str, Any]:
    return item.model_dump() if isinstance(item, BaseModel) else dict(item)


# -- Tool factory -------------------------------------------------------------


def build_tools(orchestrator: InvestigationOrchestrator) -> list[StructuredTool]:
    """Return the six protocol tools bound to *orchestrator*."""

    def tot_start(query: str, min_roots: int | None = None) -> str:
        return json.dumps(orchestrator.start(query, min_roots=min_roots).to_dict())

    def tot_propose(session_id: str, nodes: list[Any]) -> str:
        response = orchestrator.propose(session_id, [_as_dict(n) for n in nodes])
        return json.dumps(response.to_dict())

    def tot_commit(session_id: str, results: list[Any]) -> str:
        response = orchestrator.commit(session_id, [_as_dict(r) for r in results])
        return json.dumps(response.to_dict())

    def tot_reclassify(session_id: str, node_id: str, new_state: Any) -> str:
        response = orchestrator.reclassify(session_id, node_id, NodeState.parse(new_state))
        return json.dumps(response.to_dict())

    def tot_status(session_id: str) -> str:
        return json.dumps(orchestrator.status(session_id).to_dict())

    def tot_end(session_id: str) -> str:
        return json.dumps(orchestrator.end(session_id).to_dict())

    tools = [
        StructuredTool.from_function(
            func=tot_start,
            name="tot_start",
            description=(
                "Start a new tree-of-thoughts investigation. Returns a session_id "
                "and the protocol rules."
            ),
            args_schema=StartInput,
        ),
        StructuredTool.from_function(
            func=tot_propose,
            name="tot_propose",
            description=(
                "Propose a batch of nodes to explore. Every node must be proposed "
                "before it can be committed. The whole batch is accepted or rejected."
            ),
            args_schema=ProposeInput,
        ),
        StructuredTool.from_function(
            func=tot_commit,
            name="tot_commit",
            description=(
                "Commit the results of executed agents for previously proposed nodes. "
                "Each result needs the id of a fresh agent. Early terminal states are "
                "downgraded with a warning."
            ),
            args_schema=CommitInput,
        ),
        StructuredTool.from_function(
            func=tot_reclassify,
            name="tot_reclassify",
            description="Change the state of a committed node in place.",
            args_schema=ReclassifyInput,
        ),
        StructuredTool.from_function(
            func=tot_status,
            name="tot_status",
            description=(
                "Show investigation progress, whether it can end, the next action "
                "and a DOT rendering of the tree."
            ),
            args_schema=SessionInput,
        ),
        StructuredTool.from_function(
            func=tot_end,
            name="tot_end",
            description=(
                "Finish the investigation. Refused until the minimum rounds are "
                "reached and every node has its required children."
            ),
            args_schema=SessionInput,
        ),
    ]
    logger.debug("Built %d protocol tools", len(tools))
    return tools
