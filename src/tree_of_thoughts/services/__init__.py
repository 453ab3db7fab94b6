"""Service layer for the tree-of-thoughts protocol.

Public API
----------
- :class:`PolicyRules` / :class:`DepthRule` -- round-dependent policy
- :class:`Validator` / :class:`EndGate` -- stateless rule checks
- :class:`AgentVerifier`, :class:`AcceptAllVerifier`,
  :class:`SessionLogVerifier` -- agent identity checks

The orchestrator lives in :mod:`tree_of_thoughts.services.orchestrator`; it
is not re-exported here because it depends on the measurement layer, which
itself builds on :class:`EndGate`.
"""

from tree_of_thoughts.services.policy import (
    NODE_ID_PATTERN,
    VALID_CHILD_STATES,
    DepthRule,
    PolicyRules,
    is_valid_node_id,
    parse_round,
)
from tree_of_thoughts.services.validation import EndGate, Validator
from tree_of_thoughts.services.agent_verification import (
    AcceptAllVerifier,
    AgentVerifier,
    SessionLogVerifier,
)

__all__ = [
    # Policy
    "NODE_ID_PATTERN",
    "VALID_CHILD_STATES",
    "DepthRule",
    "PolicyRules",
    "is_valid_node_id",
    "parse_round",
    # Validation
    "EndGate",
    "Validator",
    # Agent verification
    "AgentVerifier",
    "AcceptAllVerifier",
    "SessionLogVerifier",
]
