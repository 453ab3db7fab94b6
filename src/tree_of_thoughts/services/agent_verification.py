"""Agent-existence verification strategies.

A commit names the agent that did the work.  Verifiers decide whether that
agent is real by looking at an external source of truth; the orchestrator
only sees a :class:`VerificationResult`.

Classes
-------
AgentVerifier
    Abstract base class for verification strategies.
AcceptAllVerifier
    Accepts every identity (used when no external source is configured).
SessionLogVerifier
    Looks for the agent's transcript among the most recent session logs of
    a project directory.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from tree_of_thoughts.domain.values import VerificationResult

logger = logging.getLogger(__name__)

_AGENT_ID_PATTERN = re.compile(r"^[a-f0-9]{7}$")


class AgentVerifier(ABC):
    """Strategy interface: is *agent_id* a real, spawned agent?"""

    @abstractmethod
    def verify(self, agent_id: str) -> VerificationResult:
        """Return ``valid=False`` for fabricated identities.

        ``valid=True`` with a ``reason`` means the check was inconclusive.
        """


class AcceptAllVerifier(AgentVerifier):
    """Trusts every agent identity."""

    def verify(self, agent_id: str) -> VerificationResult:
        return VerificationResult(valid=True, agent_id=agent_id)


class SessionLogVerifier(AgentVerifier):
    """Verify agents against session transcripts on disk.

    Session logs live under ``<projects_root>/<encoded project dir>/`` as
    ``<session>.jsonl`` files; each spawned agent leaves
    ``<session>/subagents/agent-<id>.jsonl`` next to them.

    Parameters
    ----------
    project_dir:
        Absolute path of the project whose sessions are searched.
    projects_root:
        Root holding per-project session folders.  Defaults to
        ``~/.claude/projects``.
    recent_sessions:
        How many of the newest sessions to search.
    """

    def __init__(
        self,
        project_dir: str | Path,
        projects_root: str | Path | None = None,
        recent_sessions: int = 5,
    ) -> None:
        self.project_dir = str(project_dir)
        self.projects_root = (
            Path(projects_root) if projects_root is not None
            else Path.home() / ".claude" / "projects"
        )
        self.recent_sessions = recent_sessions

    @staticmethod
    def encode_project_path(project_dir: str) -> str:
        """``/home/user/project`` -> ``-home-user-project``."""
        return project_dir.replace("/", "-")

    @property
    def project_path(self) -> Path:
        return self.projects_root / self.encode_project_path(self.project_dir)

    def recent_session_ids(self) -> list[str]:
        """Newest session ids first, at most ``recent_sessions`` of them."""
        if not self.project_path.is_dir():
            return []
        logs = sorted(
            self.project_path.glob("*.jsonl"),
            key=lambda p: p.stat().st_mtime,
            reverse=True,
        )
        return [p.stem for p in logs[: self.recent_sessions]]

    def verify(self, agent_id: str) -> VerificationResult:
        if not _AGENT_ID_PATTERN.match(agent_id):
            return VerificationResult(
                valid=False,
                agent_id=agent_id,
                reason=f'Invalid format. Expected 7-char hex (e.g., ae52219), got "{agent_id}"',
            )

        sessions = self.recent_session_ids()
        if not sessions:
            logger.debug("No session logs under %s; cannot verify %s", self.project_path, agent_id)
            return VerificationResult(
                valid=True,
                agent_id=agent_id,
                reason="Could not find session logs to verify against",
            )

        for session_id in sessions:
            agent_file = self.project_path / session_id / "subagents" / f"agent-{agent_id}.jsonl"
            if agent_file.exists():
                return VerificationResult(valid=True, agent_id=agent_id, found_in=session_id)

        return VerificationResult(
            valid=False,
            agent_id=agent_id,
            reason=(
                f"Agent file not found in top {len(sessions)} sessions. "
                "Did you actually spawn an agent?"
            ),
        )
