"""Round orchestrator for the tree-of-thoughts protocol.

Sequences the six protocol calls against one investigation at a time.
Every call is a self-contained ``load -> validate -> mutate -> save`` step
executed inside ``store.lock(session_id)``; a call either applies its whole
effect or returns ``REJECTED`` and leaves the stored document untouched.

Classes
-------
InvestigationOrchestrator
    The protocol entry point.
StartResponse, ProposeResponse, CommitResponse, ReclassifyResponse,
StatusResponse, EndResponse
    Call results.  Each has ``to_dict()`` producing JSON-ready data.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Union

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.entities import Node
from tree_of_thoughts.domain.enums import ErrorCode, NodeState, OperationStatus, WarningCode
from tree_of_thoughts.domain.events import (
    DomainEvent,
    InvestigationConcluded,
    InvestigationStarted,
    NodeReclassified,
    NodesCommitted,
    NodesProposed,
    StateDowngraded,
)
from tree_of_thoughts.domain.exceptions import SessionNotFoundError
from tree_of_thoughts.domain.values import (
    CommitResult,
    NodeSummary,
    ProposedNode,
    ProtocolWarning,
    ValidationIssue,
)
from tree_of_thoughts.infrastructure.config import PolicyConfig
from tree_of_thoughts.infrastructure.event_bus import EventBus
from tree_of_thoughts.infrastructure.serialization import node_to_dict
from tree_of_thoughts.infrastructure.store import InvestigationStore
from tree_of_thoughts.measurement.quality import QualityCalculator, QualityGate
from tree_of_thoughts.presentation.dot import render_dot
from tree_of_thoughts.services.agent_verification import AcceptAllVerifier, AgentVerifier
from tree_of_thoughts.services.policy import PolicyRules, parse_round
from tree_of_thoughts.services.validation import EndGate, Validator

logger = logging.getLogger(__name__)

ProposalInput = Union[ProposedNode, Mapping[str, Any]]
ResultInput = Union[CommitResult, Mapping[str, Any]]


# ===================================================================== #
#  Responses                                                             #
# ===================================================================== #


def _issues(errors: Iterable[ValidationIssue]) -> list[dict[str, Any]]:
    return [e.to_dict() for e in errors]


def _warnings(warnings: Iterable[ProtocolWarning]) -> list[dict[str, Any]]:
    return [w.to_dict() for w in warnings]


@dataclass
class StartResponse:
    session_id: str
    query: str
    current_round: int
    instructions: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "query": self.query,
            "current_round": self.current_round,
            "instructions": self.instructions,
        }


@dataclass
class ProposeResponse:
    status: OperationStatus
    errors: list[ValidationIssue] = field(default_factory=list)
    approved_ids: list[str] = field(default_factory=list)
    warnings: list[ProtocolWarning] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OperationStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "errors": _issues(self.errors),
            "approved_ids": list(self.approved_ids),
            "warnings": _warnings(self.warnings),
            "message": self.message,
        }


@dataclass
class CommitResponse:
    """Outcome of a ``commit``.

    Attributes
    ----------
    pending_incomplete:
        Ids of nodes that still need children after this commit.
    """

    status: OperationStatus
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ProtocolWarning] = field(default_factory=list)
    current_round: int = 0
    can_end: bool = False
    pending_incomplete: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OperationStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "errors": _issues(self.errors),
            "warnings": _warnings(self.warnings),
            "current_round": self.current_round,
            "can_end": self.can_end,
            "pending_incomplete": list(self.pending_incomplete),
            "message": self.message,
        }


@dataclass
class ReclassifyResponse:
    status: OperationStatus
    node_id: str
    new_state: NodeState | None
    previous_state: NodeState | None = None
    errors: list[ValidationIssue] = field(default_factory=list)
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == OperationStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "errors": _issues(self.errors),
            "node_id": self.node_id,
            "previous_state": self.previous_state.value if self.previous_state else None,
            "new_state": self.new_state.value if self.new_state else None,
            "message": self.message,
        }


@dataclass
class StatusResponse:
    """Read-only snapshot of an investigation.

    Attributes
    ----------
    state_counts:
        Committed nodes per state name (every state present, zeros included).
    pending_children:
        Children still owed across all incomplete nodes.
    end_blocker:
        Why ``end`` would currently be refused (empty when it would pass).
    next_action:
        Human-readable hint for the caller's next step.
    """

    status: OperationStatus
    session_id: str
    query: str = ""
    current_round: int = 0
    current_batch: int = 0
    total_nodes: int = 0
    state_counts: dict[str, int] = field(default_factory=dict)
    pending_proposals: list[str] = field(default_factory=list)
    pending_children: int = 0
    can_end: bool = False
    end_blocker: str = ""
    next_action: str = ""
    dot: str = ""
    errors: list[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "session_id": self.session_id,
            "query": self.query,
            "current_round": self.current_round,
            "current_batch": self.current_batch,
            "total_nodes": self.total_nodes,
            "state_counts": dict(self.state_counts),
            "pending_proposals": list(self.pending_proposals),
            "pending_children": self.pending_children,
            "can_end": self.can_end,
            "end_blocker": self.end_blocker,
            "next_action": self.next_action,
            "dot": self.dot,
            "errors": _issues(self.errors),
        }


@dataclass
class EndResponse:
    status: OperationStatus
    session_id: str
    query: str = ""
    reason: str = ""
    solutions: list[NodeSummary] = field(default_factory=list)
    dead_end_count: int = 0
    total_rounds: int = 0
    total_nodes: int = 0
    nodes: list[dict[str, Any]] = field(default_factory=list)
    dot: str = ""
    quality: dict[str, Any] = field(default_factory=dict)
    errors: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == OperationStatus.OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "session_id": self.session_id,
            "query": self.query,
            "reason": self.reason,
            "solutions": [s.to_dict() for s in self.solutions],
            "dead_end_count": self.dead_end_count,
            "total_rounds": self.total_rounds,
            "total_nodes": self.total_nodes,
            "nodes": list(self.nodes),
            "dot": self.dot,
            "quality": dict(self.quality),
            "errors": _issues(self.errors),
        }


# ===================================================================== #
#  Payload parsing                                                       #
# ===================================================================== #

_STATE_SUGGESTION = "Use one of " + ", ".join(s.value for s in NodeState)


def _not_an_object(kind: str, index: int, item: Any) -> ValidationIssue:
    return ValidationIssue(
        "BATCH",
        ErrorCode.INVALID_PAYLOAD,
        f"{kind} #{index} must be an object, got {type(item).__name__}",
        f"Send one JSON object per {kind.lower()}",
    )


def _parse_proposals(
    nodes: Sequence[ProposalInput], now: float
) -> tuple[list[ProposedNode], list[ValidationIssue]]:
    """Turn caller payloads into stamped proposals, collecting malformed items."""
    proposals: list[ProposedNode] = []
    errors: list[ValidationIssue] = []
    for index, item in enumerate(nodes):
        if isinstance(item, ProposedNode):
            proposals.append(replace(item, proposed_at=now))
        elif not isinstance(item, Mapping):
            errors.append(_not_an_object("Node", index, item))
        elif item.get("id") is None:
            errors.append(ValidationIssue(
                "BATCH",
                ErrorCode.INVALID_PAYLOAD,
                f"Node #{index} has no id",
                "Give every node an id such as R1.A",
            ))
        else:
            proposals.append(ProposedNode.from_mapping(dict(item), proposed_at=now))
    return proposals, errors


def _parse_results(
    results: Sequence[ResultInput],
) -> tuple[list[CommitResult], list[ValidationIssue]]:
    """Turn caller payloads into commit results, collecting malformed items."""
    batch: list[CommitResult] = []
    errors: list[ValidationIssue] = []
    for index, item in enumerate(results):
        if isinstance(item, CommitResult):
            batch.append(item)
            continue
        if not isinstance(item, Mapping):
            errors.append(_not_an_object("Result", index, item))
            continue
        node_id = str(item.get("node_id", item.get("nodeId")) or "BATCH")
        if item.get("state") is None:
            errors.append(ValidationIssue(
                node_id,
                ErrorCode.INVALID_PAYLOAD,
                f"Result #{index} has no state",
                _STATE_SUGGESTION,
            ))
            continue
        try:
            batch.append(CommitResult.from_mapping(dict(item)))
        except ValueError as exc:
            errors.append(ValidationIssue(node_id, ErrorCode.INVALID_STATE, str(exc), _STATE_SUGGESTION))
    return batch, errors


# ===================================================================== #
#  Orchestrator                                                          #
# ===================================================================== #


class InvestigationOrchestrator:
    """Entry point for the ``start / propose / commit / reclassify / status /
    end`` protocol.

    Parameters
    ----------
    store:
        Persistence for investigation documents.  Also provides the
        per-session lock.
    config:
        Policy captured by new investigations.  Existing investigations keep
        the policy they were started with.
    verifier:
        Agent-existence check used by ``commit``.  Defaults to
        :class:`AcceptAllVerifier`.
    gates:
        Extra end-gate strategies consulted after the core termination
        checks.  A :class:`QualityGate` is appended automatically when the
        investigation's policy has ``quality_gate`` enabled.
    event_bus:
        Optional bus receiving lifecycle events.
    clock:
        Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        store: InvestigationStore,
        config: PolicyConfig | None = None,
        verifier: AgentVerifier | None = None,
        gates: Sequence[EndGate] | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config or PolicyConfig()
        self.config.validate()
        self.verifier = verifier or AcceptAllVerifier()
        self.gates: tuple[EndGate, ...] = tuple(gates or ())
        self.event_bus = event_bus
        self._clock = clock
        self._calculator = QualityCalculator()

    # -- helpers ------------------------------------------------------------

    def _policy_for(self, investigation: Investigation) -> PolicyConfig:
        if not investigation.policy:
            return self.config
        return PolicyConfig.from_dict(investigation.policy)

    def _validator_for(self, investigation: Investigation) -> Validator:
        return Validator(PolicyRules(self._policy_for(investigation)))

    def _gates_for(self, investigation: Investigation) -> list[EndGate]:
        gates = list(self.gates)
        policy = self._policy_for(investigation)
        if policy.quality_gate:
            gates.append(QualityGate(
                min_score=policy.min_quality_score,
                min_depth=policy.min_quality_depth,
                calculator=self._calculator,
            ))
        return gates

    def _publish(self, event: DomainEvent) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event)

    @staticmethod
    def _session_missing(session_id: str) -> ValidationIssue:
        return ValidationIssue(
            "SESSION",
            ErrorCode.SESSION_NOT_FOUND,
            f"Investigation {session_id} not found",
            "Call tot_start first",
        )

    def _load(self, session_id: str) -> Investigation | None:
        try:
            return self.store.load(session_id)
        except SessionNotFoundError:
            logger.warning("Unknown investigation %s", session_id)
            return None

    @staticmethod
    def instructions(policy: PolicyConfig, min_roots: int) -> str:
        """Protocol rules text handed to the caller by ``start``."""
        roots = "ONE root node R1.A" if min_roots == 1 else f"at least {min_roots} root nodes (R1.A, R1.B, ...)"
        return (
            "Investigation started.\n\n"
            f"1. Call tot_propose with {roots}; at most {policy.max_batch_size} nodes per batch\n"
            "2. Spawn a fresh agent per proposed node, then call tot_commit with its agent_id\n"
            f"3. Branch wide at R2 (at least {policy.r2_min_nodes} nodes recommended)\n"
            f"4. Keep deepening until R{policy.min_round_found}+ where FOUND is allowed\n"
            f"5. Each FOUND needs {policy.found_required_children}+ VERIFY children\n\n"
            "Rules:\n"
            f"- EXPLORE nodes need {policy.explore_children_early}+ children through "
            f"R{policy.explore_breadth_rounds}, {policy.explore_children_late}+ after\n"
            f"- FOUND only at R{policy.min_round_found}+ (converted to EXPLORE before)\n"
            f"- EXHAUST only at R{policy.min_round_exhaust}+ and needs "
            f"{policy.exhaust_required_children}+ DEAD children\n"
            f"- DEAD only at R{policy.min_round_dead}+ (converted to EXHAUST or EXPLORE before)\n"
            "- VERIFY and DEAD are terminal: no children may be attached\n"
            f"- Wait at least {policy.min_research_seconds:g}s between propose and commit\n"
            f"- Minimum {policy.min_rounds_to_end} rounds before ending"
        )

    # -- start --------------------------------------------------------------

    def start(self, query: str, min_roots: int | None = None) -> StartResponse:
        """Create and persist a new investigation."""
        if not query or not query.strip():
            raise ValueError("query must be a non-empty string")
        roots = self.config.default_min_roots if min_roots is None else min_roots
        if roots < 1:
            raise ValueError(f"min_roots must be >= 1, got {roots}")

        now = self._clock()
        investigation = Investigation(
            query,
            min_roots=roots,
            policy=self.config.to_dict(),
            created_at=now,
        )
        with self.store.lock(investigation.session_id):
            self.store.create(investigation)

        logger.info(
            "Started investigation %s (min_roots=%d): %s",
            investigation.session_id, roots, query,
        )
        self._publish(InvestigationStarted(
            timestamp=now,
            source_id=investigation.session_id,
            query=query,
            min_roots=roots,
        ))
        return StartResponse(
            session_id=investigation.session_id,
            query=query,
            current_round=investigation.current_round,
            instructions=self.instructions(self.config, roots),
        )

    # -- propose ------------------------------------------------------------

    def propose(self, session_id: str, nodes: Sequence[ProposalInput]) -> ProposeResponse:
        """Stage a batch of proposals.  All-or-nothing."""
        with self.store.lock(session_id):
            investigation = self._load(session_id)
            if investigation is None:
                return ProposeResponse(
                    status=OperationStatus.REJECTED,
                    errors=[self._session_missing(session_id)],
                    message="Session not found",
                )

            now = self._clock()
            proposals, errors = _parse_proposals(nodes, now)
            validator = self._validator_for(investigation)
            if not errors:
                errors = validator.validate_proposed_batch(proposals, investigation)
            if errors:
                logger.warning(
                    "Rejected proposal batch for %s: %s",
                    session_id, ", ".join(e.code.value for e in errors),
                )
                return ProposeResponse(
                    status=OperationStatus.REJECTED,
                    errors=errors,
                    message=f"Validation failed with {len(errors)} error(s)",
                )

            warnings = self._breadth_warnings(proposals, investigation, validator.rules.config)

            investigation.add_pending_proposals(proposals)
            investigation.touch(now)
            self.store.save(investigation)

        approved = [p.id for p in proposals]
        logger.info("Staged %d proposals for %s: %s", len(approved), session_id, approved)
        self._publish(NodesProposed(timestamp=now, source_id=session_id, node_ids=tuple(approved)))
        return ProposeResponse(
            status=OperationStatus.OK,
            approved_ids=approved,
            warnings=warnings,
            message=(
                f"NEXT: Spawn agents for {', '.join(approved)}. "
                "Then call tot_commit with their agent ids."
            ),
        )

    @staticmethod
    def _breadth_warnings(
        proposals: Sequence[ProposedNode],
        investigation: Investigation,
        policy: PolicyConfig,
    ) -> list[ProtocolWarning]:
        in_batch = {p.id for p in proposals if parse_round(p.id, 0) == 2}
        if not in_batch:
            return []
        staged = {
            p.id for p in investigation.pending_proposals()
            if parse_round(p.id, 0) == 2
        }
        total = len(investigation.nodes_by_round(2)) + len(in_batch | staged)
        if total >= policy.r2_min_nodes:
            return []
        return [ProtocolWarning(
            WarningCode.R2_BREADTH,
            f"R2 will have {total} nodes (minimum recommended: {policy.r2_min_nodes}). "
            "Consider adding more branches.",
        )]

    # -- commit -------------------------------------------------------------

    def commit(self, session_id: str, results: Sequence[ResultInput]) -> CommitResponse:
        """Materialise a batch of results.  All-or-nothing."""
        with self.store.lock(session_id):
            investigation = self._load(session_id)
            if investigation is None:
                return CommitResponse(
                    status=OperationStatus.REJECTED,
                    errors=[self._session_missing(session_id)],
                    message="Session not found",
                )

            validator = self._validator_for(investigation)
            rules = validator.rules
            policy = rules.config
            now = self._clock()
            batch, payload_errors = _parse_results(results)

            def reject(errors: list[ValidationIssue], warnings: list[ProtocolWarning],
                       message: str) -> CommitResponse:
                logger.warning(
                    "Rejected commit for %s: %s",
                    session_id, ", ".join(e.code.value for e in errors),
                )
                return CommitResponse(
                    status=OperationStatus.REJECTED,
                    errors=errors,
                    warnings=warnings,
                    current_round=investigation.current_round,
                    message=message,
                )

            if payload_errors:
                return reject(
                    payload_errors, [], f"Commit rejected: {len(payload_errors)} malformed result(s)"
                )

            # 1. structure
            errors = self._structural_issues(batch, investigation)
            if errors:
                return reject(errors, [], f"Commit rejected: {len(errors)} error(s)")

            warnings: list[ProtocolWarning] = []

            # 2. integrity
            errors = self._integrity_issues(batch, investigation, policy, now, warnings)
            if errors:
                return reject(
                    errors, warnings,
                    "REJECTED: Agent validation failed. Each node requires a fresh, real agent.",
                )

            # 3. depth enforcement
            applied: dict[str, NodeState] = {}
            downgrades: list[StateDowngraded] = []
            for result in batch:
                round_no = parse_round(result.node_id, investigation.current_round)
                state, rule = rules.enforce_depth(result.state, round_no)
                applied[result.node_id] = state
                if rule is not None:
                    needs = rules.required_children(state, round_no)
                    warnings.append(ProtocolWarning(
                        rule.code,
                        f"{result.node_id} converted {result.state.value}->{state.value} "
                        f"(round {round_no} < {rule.min_round}). "
                        f"You MUST add {needs}+ children.",
                        node_id=result.node_id,
                    ))
                    downgrades.append(StateDowngraded(
                        timestamp=now,
                        source_id=session_id,
                        node_id=result.node_id,
                        claimed=result.state,
                        applied=state,
                        rule=rule.code,
                    ))
                    logger.warning(
                        "Depth enforcement on %s/%s: %s -> %s",
                        session_id, result.node_id, result.state.value, state.value,
                    )

            # 4. placement under the parent as it is now
            errors = self._placement_issues(batch, applied, investigation, rules)
            if errors:
                return reject(errors, warnings, f"Commit rejected: {len(errors)} error(s)")

            # 5. terminal ratio
            warnings.extend(self._terminal_ratio_warnings(batch, applied, investigation, rules))

            # 6. materialise
            for result in batch:
                proposal = investigation.get_pending_proposal(result.node_id)
                assert proposal is not None
                investigation.add_node(Node(
                    id=result.node_id,
                    parent=proposal.parent,
                    state=applied[result.node_id],
                    round=parse_round(result.node_id, investigation.current_round),
                    title=proposal.title,
                    findings=result.findings,
                    agent_id=result.agent_id,
                    committed_at=now,
                ))
                investigation.remove_pending_proposal(result.node_id)
                if result.agent_id:
                    investigation.record_agent(result.agent_id, result.node_id)
            investigation.advance()
            investigation.touch(now)
            self.store.save(investigation)

            incomplete = validator.incomplete_nodes(investigation)
            for item in incomplete:
                warnings.append(ProtocolWarning(
                    WarningCode.INCOMPLETE,
                    f"Node {item.node_id} has {item.has} children but REQUIRES {item.needs}. "
                    "Propose more children for this node before calling tot_end.",
                    node_id=item.node_id,
                ))
            verdict = validator.can_end(investigation, self._gates_for(investigation))
            current_round = investigation.current_round
            batch_no = investigation.current_batch

        committed = tuple(r.node_id for r in batch)
        logger.info(
            "Committed %d nodes for %s (round %d, batch %d)",
            len(committed), session_id, current_round, batch_no,
        )
        for event in downgrades:
            self._publish(event)
        self._publish(NodesCommitted(
            timestamp=now,
            source_id=session_id,
            node_ids=committed,
            batch=batch_no,
            current_round=current_round,
        ))

        pending = [i.node_id for i in incomplete]
        if verdict.can_end:
            message = "Ready to end. Call tot_end."
        else:
            message = (
                f"CONTINUE REQUIRED: {len(pending)} nodes need children. "
                "Do NOT present results yet."
            )
        return CommitResponse(
            status=OperationStatus.OK,
            warnings=warnings,
            current_round=current_round,
            can_end=verdict.can_end,
            pending_incomplete=pending,
            message=message,
        )

    @staticmethod
    def _structural_issues(
        batch: Sequence[CommitResult], investigation: Investigation
    ) -> list[ValidationIssue]:
        if not batch:
            return [ValidationIssue(
                "BATCH", ErrorCode.EMPTY_BATCH, "Commit contains no results",
                "Commit at least one result",
            )]
        errors: list[ValidationIssue] = []
        for node_id, count in Counter(r.node_id for r in batch).items():
            if count > 1:
                errors.append(ValidationIssue(
                    node_id,
                    ErrorCode.DUPLICATE_IN_BATCH,
                    f"Node ID {node_id} appears {count} times in commit",
                    "Commit each node once",
                ))
        for result in batch:
            if investigation.get_pending_proposal(result.node_id) is None:
                errors.append(ValidationIssue(
                    result.node_id,
                    ErrorCode.NOT_PROPOSED,
                    f"Node {result.node_id} was not proposed. Call tot_propose first.",
                    "Ensure all nodes are proposed before committing",
                ))
        return errors

    def _integrity_issues(
        self,
        batch: Sequence[CommitResult],
        investigation: Investigation,
        policy: PolicyConfig,
        now: float,
        warnings: list[ProtocolWarning],
    ) -> list[ValidationIssue]:
        """Timing, findings and agent identity checks.  Appends warnings."""
        errors: list[ValidationIssue] = []
        seen_in_batch: dict[str, str] = {}

        for result in batch:
            proposal = investigation.get_pending_proposal(result.node_id)
            elapsed = now - proposal.proposed_at if proposal is not None else 0.0
            if elapsed < policy.min_research_seconds:
                warnings.append(ProtocolWarning(
                    WarningCode.SUSPICIOUS,
                    f"{result.node_id} committed {elapsed:.0f}s after propose "
                    f"(min {policy.min_research_seconds:g}s). This looks like gaming.",
                    node_id=result.node_id,
                ))
            if not result.findings.strip():
                warnings.append(ProtocolWarning(
                    WarningCode.MISSING_FINDINGS,
                    f"{result.node_id} was committed without findings",
                    node_id=result.node_id,
                ))

            agent_id = result.agent_id
            if not agent_id:
                errors.append(ValidationIssue(
                    result.node_id,
                    ErrorCode.MISSING_AGENT,
                    f"{result.node_id} has no agent_id. You MUST spawn an agent.",
                    "Spawn an agent and use its id in the commit",
                ))
                continue

            previous = investigation.node_for_agent(agent_id) or seen_in_batch.get(agent_id)
            if previous is not None and previous != result.node_id:
                errors.append(ValidationIssue(
                    result.node_id,
                    ErrorCode.REUSED_AGENT,
                    f"agent_id {agent_id} was already used for node {previous}. "
                    "Each node requires a NEW agent.",
                    "Spawn a fresh agent for each node; do not reuse agent ids",
                ))
                continue
            seen_in_batch.setdefault(agent_id, result.node_id)

            verification = self.verifier.verify(agent_id)
            if not verification.valid:
                errors.append(ValidationIssue(
                    result.node_id,
                    ErrorCode.FAKE_AGENT,
                    f"FAKE_AGENT: {verification.reason}",
                    "Spawn a real agent and use its id",
                ))
            elif verification.inconclusive:
                warnings.append(ProtocolWarning(
                    WarningCode.UNVERIFIED_AGENT,
                    f"{result.node_id} - {verification.reason}",
                    node_id=result.node_id,
                ))
        return errors

    @staticmethod
    def _placement_issues(
        batch: Sequence[CommitResult],
        applied: Mapping[str, NodeState],
        investigation: Investigation,
        rules: PolicyRules,
    ) -> list[ValidationIssue]:
        errors: list[ValidationIssue] = []
        for result in batch:
            proposal = investigation.get_pending_proposal(result.node_id)
            if proposal is None or proposal.parent is None:
                continue
            parent = investigation.get_node(proposal.parent)
            if parent is None:
                errors.append(ValidationIssue(
                    result.node_id,
                    ErrorCode.PARENT_NOT_FOUND,
                    f"Parent node {proposal.parent} does not exist",
                ))
                continue
            state = applied[result.node_id]
            if rules.is_terminal(parent.state):
                errors.append(ValidationIssue(
                    result.node_id,
                    ErrorCode.TERMINAL_PARENT,
                    f"Parent {parent.id} became {parent.state.value} (terminal) after "
                    f"{result.node_id} was proposed",
                    f"Reclassify {parent.id} to a non-terminal state first",
                ))
            elif not rules.is_valid_child_state(parent.state, state):
                allowed = ", ".join(sorted(s.value for s in rules.valid_child_states(parent.state)))
                errors.append(ValidationIssue(
                    result.node_id,
                    ErrorCode.INVALID_CHILD_STATE,
                    f"{state.value} is not allowed under {parent.state.value} parent {parent.id}",
                    f"Allowed states under {parent.state.value}: {allowed}",
                ))
        return errors

    @staticmethod
    def _terminal_ratio_warnings(
        batch: Sequence[CommitResult],
        applied: Mapping[str, NodeState],
        investigation: Investigation,
        rules: PolicyRules,
    ) -> list[ProtocolWarning]:
        by_round: dict[int, list[NodeState]] = defaultdict(list)
        for result in batch:
            round_no = parse_round(result.node_id, investigation.current_round)
            by_round[round_no].append(applied[result.node_id])

        warnings: list[ProtocolWarning] = []
        for round_no in sorted(by_round):
            states = by_round[round_no]
            ratio = rules.terminal_ratio(states)
            cap = rules.terminal_ratio_cap(round_no)
            if ratio > cap:
                terminal = sum(1 for s in states if rules.is_terminal(s))
                warnings.append(ProtocolWarning(
                    WarningCode.TERMINAL_RATIO,
                    f"Round {round_no} allows max {cap:.0%} terminal states. "
                    f"Batch has {ratio:.0%} ({terminal}/{len(states)})",
                ))
        return warnings

    # -- reclassify ---------------------------------------------------------

    def reclassify(
        self, session_id: str, node_id: str, new_state: NodeState | str
    ) -> ReclassifyResponse:
        """Overwrite one node's state in place."""
        try:
            state = NodeState.parse(new_state)
        except ValueError as exc:
            logger.warning("Rejected reclassification of %s/%s: %s", session_id, node_id, exc)
            return ReclassifyResponse(
                status=OperationStatus.REJECTED,
                node_id=node_id,
                new_state=None,
                errors=[ValidationIssue(node_id, ErrorCode.INVALID_STATE, str(exc), _STATE_SUGGESTION)],
                message=f"Cannot reclassify: {exc}",
            )
        with self.store.lock(session_id):
            investigation = self._load(session_id)
            if investigation is None:
                return ReclassifyResponse(
                    status=OperationStatus.REJECTED,
                    node_id=node_id,
                    new_state=state,
                    errors=[self._session_missing(session_id)],
                    message="Session not found",
                )

            node = investigation.get_node(node_id)
            previous = node.state if node is not None else None
            errors = self._validator_for(investigation).validate_reclassification(
                node_id, state, investigation
            )
            if errors:
                logger.warning(
                    "Rejected reclassification of %s/%s to %s: %s",
                    session_id, node_id, state.value,
                    ", ".join(e.code.value for e in errors),
                )
                return ReclassifyResponse(
                    status=OperationStatus.REJECTED,
                    node_id=node_id,
                    new_state=state,
                    previous_state=previous,
                    errors=errors,
                    message=f"Cannot reclassify: {'; '.join(e.message for e in errors)}",
                )

            now = self._clock()
            previous = investigation.set_state(node_id, state)
            investigation.touch(now)
            self.store.save(investigation)

        logger.info(
            "Reclassified %s/%s from %s to %s",
            session_id, node_id, previous.value, state.value,
        )
        self._publish(NodeReclassified(
            timestamp=now,
            source_id=session_id,
            node_id=node_id,
            previous_state=previous,
            new_state=state,
        ))
        return ReclassifyResponse(
            status=OperationStatus.OK,
            node_id=node_id,
            new_state=state,
            previous_state=previous,
            message=f"Node {node_id} reclassified from {previous.value} to {state.value}",
        )

    # -- status -------------------------------------------------------------

    def status(self, session_id: str) -> StatusResponse:
        """Read-only snapshot.  Never mutates the investigation."""
        with self.store.lock(session_id):
            investigation = self._load(session_id)
            if investigation is None:
                return StatusResponse(
                    status=OperationStatus.REJECTED,
                    session_id=session_id,
                    end_blocker="Session not found",
                    next_action="Call tot_start to create a new investigation",
                    errors=[self._session_missing(session_id)],
                )

            validator = self._validator_for(investigation)
            incomplete = validator.incomplete_nodes(investigation)
            verdict = validator.can_end(investigation, self._gates_for(investigation))

        pending_children = sum(i.missing for i in incomplete)
        if pending_children > 0:
            next_action = (
                f"Propose {pending_children} more children for "
                f"{', '.join(i.node_id for i in incomplete)}"
            )
        elif not verdict.can_end:
            next_action = verdict.reason or "Continue investigation"
        else:
            next_action = "Call tot_end to finalize"

        return StatusResponse(
            status=OperationStatus.OK,
            session_id=investigation.session_id,
            query=investigation.query,
            current_round=investigation.current_round,
            current_batch=investigation.current_batch,
            total_nodes=investigation.node_count,
            state_counts={
                s.value: len(investigation.nodes_by_state(s)) for s in NodeState
            },
            pending_proposals=[p.id for p in investigation.pending_proposals()],
            pending_children=pending_children,
            can_end=verdict.can_end,
            end_blocker=verdict.reason,
            next_action=next_action,
            dot=render_dot(investigation),
        )

    # -- end ----------------------------------------------------------------

    def end(self, session_id: str) -> EndResponse:
        """Produce the final report if the termination gate passes.

        Read-only: the investigation stays loadable afterwards.
        """
        with self.store.lock(session_id):
            investigation = self._load(session_id)
            if investigation is None:
                return EndResponse(
                    status=OperationStatus.REJECTED,
                    session_id=session_id,
                    reason="Session not found",
                    errors=[self._session_missing(session_id)],
                )
            verdict = self._validator_for(investigation).can_end(
                investigation, self._gates_for(investigation)
            )

        quality = self._calculator.calculate(investigation).to_dict()
        base: dict[str, Any] = dict(
            session_id=investigation.session_id,
            query=investigation.query,
            total_rounds=investigation.current_round,
            total_nodes=investigation.node_count,
            dot=render_dot(investigation),
            quality=quality,
        )
        if not verdict.can_end:
            logger.warning("Refused to end %s: %s", session_id, verdict.reason)
            return EndResponse(status=OperationStatus.REJECTED, reason=verdict.reason, **base)

        solutions = [
            NodeSummary(
                node_id=node.id,
                title=node.title,
                findings=node.findings,
                round=node.round,
                state=node.state,
                verified_by=tuple(
                    child.id for child in investigation.children_of(node.id)
                    if child.state == NodeState.VERIFY
                ),
            )
            for node in investigation.nodes_by_state(NodeState.FOUND)
        ]
        dead_ends = len(investigation.nodes_by_state(NodeState.DEAD))

        logger.info(
            "Concluded %s after %d rounds: %d solutions, %d dead ends",
            session_id, investigation.current_round, len(solutions), dead_ends,
        )
        self._publish(InvestigationConcluded(
            timestamp=self._clock(),
            source_id=session_id,
            total_rounds=investigation.current_round,
            solution_ids=tuple(s.node_id for s in solutions),
            dead_end_count=dead_ends,
        ))
        return EndResponse(
            status=OperationStatus.OK,
            solutions=solutions,
            dead_end_count=dead_ends,
            nodes=[node_to_dict(n) for n in investigation.all_nodes()],
            **base,
        )
