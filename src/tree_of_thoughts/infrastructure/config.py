"""Configuration dataclasses for the tree-of-thoughts protocol.

Each config is a plain ``dataclass`` with a ``validate()`` method that raises
``ValueError`` on invalid combinations, plus ``to_dict`` / ``from_dict`` for
persistence.  Every numeric threshold of the protocol lives here so the
engine is policy-parametric: an investigation captures its ``PolicyConfig``
at start time and is judged by it for its whole life.

Configs are **frozen** (``frozen=True``) so they cannot be mutated once an
investigation has been started with them.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


def _default_terminal_caps() -> dict[int, float]:
    return {1: 0.0, 2: 0.35, 3: 0.5}


# ===================================================================== #
#  Policy Configuration                                                  #
# ===================================================================== #

@dataclass(frozen=True)
class PolicyConfig:
    """Thresholds governing breadth, depth and termination.

    Attributes
    ----------
    min_rounds_to_end:
        ``end`` is refused while ``current_round`` is below this.
    explore_breadth_rounds:
        Last round in which EXPLORE nodes need ``explore_children_early``
        children; later rounds need ``explore_children_late``.
    explore_children_early, explore_children_late:
        Required children for EXPLORE nodes, early and late.
    found_required_children:
        VERIFY children a FOUND node needs.
    exhaust_required_children:
        DEAD children an EXHAUST node needs.
    min_round_found, min_round_exhaust, min_round_dead:
        First round in which FOUND, EXHAUST and DEAD may be committed
        without being rewritten by depth enforcement.
    min_research_seconds:
        Commits arriving faster than this after their proposal are flagged
        as suspicious.
    max_batch_size:
        Maximum proposals per ``propose`` call.
    default_min_roots:
        ``min_roots`` used when ``start`` does not specify one.
    r2_min_nodes:
        Recommended number of round-2 nodes; fewer triggers a warning.
    terminal_ratio_caps:
        Per-round cap on the share of a commit batch landing in terminal
        states.  Rounds past the largest key are uncapped.
    quality_gate:
        When ``True`` the termination gate also consults the quality score.
    min_quality_score, min_quality_depth:
        Thresholds for the quality gate.
    """

    min_rounds_to_end: int = 5
    explore_breadth_rounds: int = 2
    explore_children_early: int = 2
    explore_children_late: int = 1
    found_required_children: int = 1
    exhaust_required_children: int = 1
    min_round_found: int = 4
    min_round_exhaust: int = 3
    min_round_dead: int = 4
    min_research_seconds: float = 10.0
    max_batch_size: int = 5
    default_min_roots: int = 1
    r2_min_nodes: int = 5
    terminal_ratio_caps: dict[int, float] = field(default_factory=_default_terminal_caps)
    quality_gate: bool = False
    min_quality_score: float = 0.5
    min_quality_depth: int = 4

    def __post_init__(self) -> None:
        # JSON/YAML documents carry round keys as strings.
        caps = self.terminal_ratio_caps
        if caps is None:
            caps = {}
        object.__setattr__(
            self,
            "terminal_ratio_caps",
            {int(k): float(v) for k, v in caps.items()},
        )

    def validate(self) -> None:
        """Raise ``ValueError`` if any field is out of valid range."""
        if self.min_rounds_to_end < 1:
            raise ValueError(
                f"min_rounds_to_end must be >= 1, got {self.min_rounds_to_end}"
            )
        if self.explore_breadth_rounds < 0:
            raise ValueError(
                f"explore_breadth_rounds must be >= 0, got {self.explore_breadth_rounds}"
            )
        for name in (
            "explore_children_early",
            "explore_children_late",
            "found_required_children",
            "exhaust_required_children",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        for name in ("min_round_found", "min_round_exhaust", "min_round_dead"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.min_round_dead < self.min_round_exhaust:
            raise ValueError(
                f"min_round_dead ({self.min_round_dead}) must be >= "
                f"min_round_exhaust ({self.min_round_exhaust})"
            )
        if self.min_research_seconds < 0:
            raise ValueError(
                f"min_research_seconds must be >= 0, got {self.min_research_seconds}"
            )
        if self.max_batch_size < 1:
            raise ValueError(f"max_batch_size must be >= 1, got {self.max_batch_size}")
        if self.default_min_roots < 1:
            raise ValueError(
                f"default_min_roots must be >= 1, got {self.default_min_roots}"
            )
        if self.r2_min_nodes < 0:
            raise ValueError(f"r2_min_nodes must be >= 0, got {self.r2_min_nodes}")
        for round_no, cap in self.terminal_ratio_caps.items():
            if round_no < 1:
                raise ValueError(f"terminal_ratio_caps keys must be >= 1, got {round_no}")
            if not (0.0 <= cap <= 1.0):
                raise ValueError(
                    f"terminal_ratio_caps[{round_no}] must be in [0, 1], got {cap}"
                )
        if not (0.0 <= self.min_quality_score <= 1.0):
            raise ValueError(
                f"min_quality_score must be in [0, 1], got {self.min_quality_score}"
            )
        if self.min_quality_depth < 0:
            raise ValueError(
                f"min_quality_depth must be >= 0, got {self.min_quality_depth}"
            )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["terminal_ratio_caps"] = {
            str(k): v for k, v in self.terminal_ratio_caps.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Store Configuration                                                   #
# ===================================================================== #

_VALID_BACKENDS = frozenset({"memory", "json"})


@dataclass(frozen=True)
class StoreConfig:
    """Where investigation documents live.

    Attributes
    ----------
    backend:
        ``"json"`` writes one file per session under *persist_dir*;
        ``"memory"`` keeps documents in process.
    persist_dir:
        Directory for the JSON backend.
    """

    backend: str = "json"
    persist_dir: str = "./investigations"

    def validate(self) -> None:
        if self.backend not in _VALID_BACKENDS:
            raise ValueError(
                f"backend must be one of {sorted(_VALID_BACKENDS)}, "
                f"got '{self.backend}'"
            )
        if self.backend == "json" and not self.persist_dir:
            raise ValueError("persist_dir is required for the json backend")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        valid_keys = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in valid_keys}
        cfg = cls(**filtered)
        cfg.validate()
        return cfg


# ===================================================================== #
#  Unified config loader                                                 #
# ===================================================================== #

_CONFIG_MAP: dict[str, type] = {
    "policy": PolicyConfig,
    "store": StoreConfig,
}


def _sections(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError("Top-level config document must be a mapping")
    result: dict[str, Any] = {}
    for section, data in raw.items():
        cls = _CONFIG_MAP.get(section)
        if cls is not None and isinstance(data, dict):
            result[section] = cls.from_dict(data)
        else:
            result[section] = data
    return result


def load_config_from_json(json_str: str) -> dict[str, Any]:
    """Parse a JSON string into a dict of typed config objects.

    The JSON is expected to be an object whose top-level keys correspond to
    config section names (``policy``, ``store``).  Unknown sections are
    preserved as raw values.
    """
    return _sections(json.loads(json_str))


def load_config_from_yaml(yaml_str: str) -> dict[str, Any]:
    """YAML counterpart of :func:`load_config_from_json`."""
    return _sections(yaml.safe_load(yaml_str) or {})


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load a ``.json``, ``.yaml`` or ``.yml`` config file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        return load_config_from_yaml(text)
    return load_config_from_json(text)
