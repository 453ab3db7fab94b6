"""Investigation stores.

A store persists one document per session and serialises access to it:
every protocol call runs ``load -> mutate -> save`` inside
``store.lock(session_id)``, so concurrent callers on the same session never
interleave, while different sessions proceed independently.

Classes
-------
InvestigationStore
    Abstract base with per-session locking.
InMemoryInvestigationStore
    Keeps serialized documents in process.
JsonFileInvestigationStore
    One ``<session_id>.json`` file per investigation.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from filelock import FileLock

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.exceptions import PersistenceError, SessionNotFoundError
from tree_of_thoughts.infrastructure.config import StoreConfig
from tree_of_thoughts.infrastructure.serialization import (
    investigation_from_dict,
    investigation_to_dict,
)

logger = logging.getLogger(__name__)

_SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class InvestigationStore(ABC):
    """Key-value store of investigations keyed by session id."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # -- locking ------------------------------------------------------------

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """Critical section for one session id (re-entrant)."""
        with self._locks_guard:
            session_lock = self._locks.setdefault(session_id, threading.RLock())
        with session_lock:
            yield

    # -- persistence --------------------------------------------------------

    @abstractmethod
    def load(self, session_id: str) -> Investigation:
        """Return a fresh copy of the stored investigation.

        Raises ``SessionNotFoundError`` if no document exists.
        """

    @abstractmethod
    def save(self, investigation: Investigation) -> None:
        """Replace the stored document wholesale."""

    @abstractmethod
    def exists(self, session_id: str) -> bool: ...

    @abstractmethod
    def list_ids(self) -> list[str]: ...

    def create(self, investigation: Investigation) -> None:
        """Persist a brand-new investigation."""
        if self.exists(investigation.session_id):
            raise PersistenceError(
                f"Investigation {investigation.session_id!r} already exists",
                session_id=investigation.session_id,
            )
        self.save(investigation)


# ===================================================================== #
#  In-memory store                                                       #
# ===================================================================== #

class InMemoryInvestigationStore(InvestigationStore):
    """Process-local store.

    Documents are kept in serialized form, so every ``load`` hands out an
    independent copy and a rejected call can never leak partial mutations.
    """

    def __init__(self) -> None:
        super().__init__()
        self._documents: dict[str, dict[str, Any]] = {}

    def load(self, session_id: str) -> Investigation:
        document = self._documents.get(session_id)
        if document is None:
            raise SessionNotFoundError(session_id)
        return investigation_from_dict(copy.deepcopy(document))

    def save(self, investigation: Investigation) -> None:
        self._documents[investigation.session_id] = copy.deepcopy(
            investigation_to_dict(investigation)
        )

    def exists(self, session_id: str) -> bool:
        return session_id in self._documents

    def list_ids(self) -> list[str]:
        return list(self._documents)

    def __len__(self) -> int:
        return len(self._documents)


# ===================================================================== #
#  JSON file store                                                       #
# ===================================================================== #

class JsonFileInvestigationStore(InvestigationStore):
    """One JSON document per session under *persist_dir*.

    Writes go to a temporary file that then replaces the target, so a crash
    mid-write leaves the previous document intact.

    ``lock`` also holds ``<session_id>.lock`` in *persist_dir*, so separate
    processes (or separate store instances) sharing the directory serialise
    on the same session.
    """

    def __init__(self, persist_dir: str | Path = "./investigations") -> None:
        super().__init__()
        self.persist_dir = Path(persist_dir)
        self._file_locks: dict[str, FileLock] = {}

    def _path(self, session_id: str) -> Path:
        if not _SESSION_ID_PATTERN.match(session_id):
            raise SessionNotFoundError(
                session_id, message=f"Invalid session id {session_id!r}"
            )
        return self.persist_dir / f"{session_id}.json"

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        with super().lock(session_id):
            if not _SESSION_ID_PATTERN.match(session_id):
                # load() reports the bad id; nothing on disk to guard.
                yield
                return
            with self._locks_guard:
                file_lock = self._file_locks.get(session_id)
                if file_lock is None:
                    self.persist_dir.mkdir(parents=True, exist_ok=True)
                    file_lock = FileLock(str(self.persist_dir / f"{session_id}.lock"))
                    self._file_locks[session_id] = file_lock
            with file_lock:
                yield

    def load(self, session_id: str) -> Investigation:
        path = self._path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
            return investigation_from_dict(data)
        except (json.JSONDecodeError, ValueError, KeyError) as exc:
            raise PersistenceError(
                f"Corrupt investigation document {path}: {exc}",
                session_id=session_id,
                path=str(path),
            ) from exc

    def save(self, investigation: Investigation) -> None:
        path = self._path(investigation.session_id)
        self.persist_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(investigation_to_dict(investigation), indent=2)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.persist_dir, prefix=f".{investigation.session_id}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(
                f"Could not write {path}: {exc}",
                session_id=investigation.session_id,
                path=str(path),
            ) from exc
        logger.debug("Saved investigation %s to %s", investigation.session_id, path)

    def exists(self, session_id: str) -> bool:
        try:
            return self._path(session_id).exists()
        except SessionNotFoundError:
            return False

    def list_ids(self) -> list[str]:
        if not self.persist_dir.is_dir():
            return []
        return sorted(p.stem for p in self.persist_dir.glob("*.json"))


def create_store(config: StoreConfig | None = None) -> InvestigationStore:
    """Build the store described by *config*."""
    config = config or StoreConfig()
    config.validate()
    if config.backend == "memory":
        return InMemoryInvestigationStore()
    return JsonFileInvestigationStore(config.persist_dir)
