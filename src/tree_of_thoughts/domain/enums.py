"""Domain enumerations for the tree-of-thoughts investigation protocol.

These enums capture the fixed vocabularies used across the domain layer:
node states, call outcomes, and the codes attached to rejections and
warnings.
"""

from enum import Enum


class NodeState(Enum):
    """Closed set of states a committed node can hold."""

    EXPLORE = "EXPLORE"  # needs more children (breadth)
    FOUND = "FOUND"  # provisional solution, needs VERIFY children
    VERIFY = "VERIFY"  # confirms a FOUND parent
    EXHAUST = "EXHAUST"  # claims a subtree is exhausted, needs DEAD children
    DEAD = "DEAD"  # dead end

    @classmethod
    def parse(cls, value: "NodeState | str") -> "NodeState":
        """Accept either a member or its (case-insensitive) name."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown node state {value!r}; expected one of {valid}") from None

    @property
    def is_terminal(self) -> bool:
        """True for states that close a branch (leaves only)."""
        return self in TERMINAL_STATES


class OperationStatus(Enum):
    """Outcome of a protocol call."""

    OK = "OK"
    REJECTED = "REJECTED"


class ErrorCode(Enum):
    """Codes for fatal validation issues.  Any of these blocks the call."""

    # structural
    DUPLICATE_ID = "DUPLICATE_ID"
    DUPLICATE_IN_BATCH = "DUPLICATE_IN_BATCH"
    INVALID_ID_FORMAT = "INVALID_ID_FORMAT"
    PARENT_NOT_FOUND = "PARENT_NOT_FOUND"
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    EMPTY_BATCH = "EMPTY_BATCH"
    BATCH_OVERFLOW = "BATCH_OVERFLOW"
    ROUND_NOT_AFTER_PARENT = "ROUND_NOT_AFTER_PARENT"
    # payload
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    INVALID_STATE = "INVALID_STATE"
    # policy
    TERMINAL_PARENT = "TERMINAL_PARENT"
    HAS_CHILDREN = "HAS_CHILDREN"
    NOT_PROPOSED = "NOT_PROPOSED"
    INSUFFICIENT_ROOTS = "INSUFFICIENT_ROOTS"
    INVALID_CHILD_STATE = "INVALID_CHILD_STATE"
    # integrity
    MISSING_AGENT = "MISSING_AGENT"
    REUSED_AGENT = "REUSED_AGENT"
    FAKE_AGENT = "FAKE_AGENT"


class WarningCode(Enum):
    """Codes for non-fatal diagnostics attached to accepted calls."""

    SUSPICIOUS = "SUSPICIOUS"
    UNVERIFIED_AGENT = "UNVERIFIED_AGENT"
    MISSING_FINDINGS = "MISSING_FINDINGS"
    DEPTH_ENFORCED = "DEPTH_ENFORCED"
    EXHAUST_ENFORCED = "EXHAUST_ENFORCED"
    DEAD_ENFORCED = "DEAD_ENFORCED"
    TERMINAL_RATIO = "TERMINAL_RATIO"
    R2_BREADTH = "R2_BREADTH"
    INCOMPLETE = "INCOMPLETE"


# States after which no further children may be attached.
TERMINAL_STATES: frozenset[NodeState] = frozenset({NodeState.DEAD, NodeState.VERIFY})
