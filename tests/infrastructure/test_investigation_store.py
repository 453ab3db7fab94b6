"""Tests for the investigation stores."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from tree_of_thoughts.domain.aggregates import Investigation
from tree_of_thoughts.domain.enums import NodeState
from tree_of_thoughts.domain.exceptions import PersistenceError, SessionNotFoundError
from tree_of_thoughts.infrastructure.config import StoreConfig
from tree_of_thoughts.infrastructure.store import (
    InMemoryInvestigationStore,
    JsonFileInvestigationStore,
    create_store,
)
from tree_of_thoughts.services.orchestrator import InvestigationOrchestrator


@pytest.fixture(params=["memory", "json"])
def any_store(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "memory":
        return InMemoryInvestigationStore()
    return JsonFileInvestigationStore(tmp_path / "investigations")


class TestStoreContract:

    def test_create_and_load(self, any_store, investigation: Investigation, add_nodes) -> None:
        add_nodes(investigation, [("R1.A", None, NodeState.EXPLORE)])
        any_store.create(investigation)
        loaded = any_store.load("sess1")
        assert loaded.query == investigation.query
        assert loaded.require_node("R1.A").state == NodeState.EXPLORE
        assert any_store.exists("sess1")
        assert any_store.list_ids() == ["sess1"]

    def test_create_twice_raises(self, any_store, investigation: Investigation) -> None:
        any_store.create(investigation)
        with pytest.raises(PersistenceError):
            any_store.create(investigation)

    def test_load_unknown(self, any_store) -> None:
        with pytest.raises(SessionNotFoundError):
            any_store.load("nope")
        assert not any_store.exists("nope")

    def test_load_returns_independent_copy(
        self, any_store, investigation: Investigation, add_nodes
    ) -> None:
        add_nodes(investigation, [("R1.A", None, NodeState.EXPLORE)])
        any_store.create(investigation)
        copy = any_store.load("sess1")
        copy.set_state("R1.A", NodeState.DEAD)
        assert any_store.load("sess1").require_node("R1.A").state == NodeState.EXPLORE

    def test_save_replaces(self, any_store, investigation: Investigation, add_nodes) -> None:
        any_store.create(investigation)
        add_nodes(investigation, [("R1.A", None, NodeState.EXPLORE)])
        any_store.save(investigation)
        assert any_store.load("sess1").node_count == 1

    def test_lock_is_reentrant(self, any_store) -> None:
        with any_store.lock("s"):
            with any_store.lock("s"):
                pass

    def test_lock_serialises_same_session(self, any_store) -> None:
        entered = threading.Event()
        release = threading.Event()
        order: list[str] = []

        def holder() -> None:
            with any_store.lock("s"):
                entered.set()
                release.wait(timeout=5)
                order.append("holder")

        thread = threading.Thread(target=holder)
        thread.start()
        entered.wait(timeout=5)
        # a different session is not blocked
        with any_store.lock("other"):
            order.append("other")
        release.set()
        with any_store.lock("s"):
            order.append("waiter")
        thread.join(timeout=5)
        assert order == ["other", "holder", "waiter"]


class TestJsonFileStore:

    def test_document_on_disk(self, tmp_path: Path, investigation: Investigation) -> None:
        store = JsonFileInvestigationStore(tmp_path)
        store.create(investigation)
        assert (tmp_path / "sess1.json").is_file()
        assert not list(tmp_path.glob("*.tmp"))

    def test_corrupt_document(self, tmp_path: Path) -> None:
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        store = JsonFileInvestigationStore(tmp_path)
        with pytest.raises(PersistenceError):
            store.load("broken")

    def test_invalid_session_id(self, tmp_path: Path) -> None:
        store = JsonFileInvestigationStore(tmp_path)
        with pytest.raises(SessionNotFoundError):
            store.load("../etc/passwd")
        assert store.exists("../etc/passwd") is False

    def test_list_ids_without_dir(self, tmp_path: Path) -> None:
        assert JsonFileInvestigationStore(tmp_path / "missing").list_ids() == []

    def test_survives_new_instance(self, tmp_path: Path, investigation: Investigation) -> None:
        JsonFileInvestigationStore(tmp_path).create(investigation)
        assert JsonFileInvestigationStore(tmp_path).load("sess1").session_id == "sess1"

    def test_lock_file_not_listed(self, tmp_path: Path, investigation: Investigation) -> None:
        store = JsonFileInvestigationStore(tmp_path)
        with store.lock("sess1"):
            store.create(investigation)
        assert (tmp_path / "sess1.lock").exists()
        assert store.list_ids() == ["sess1"]

    def test_lock_shared_across_instances(self, tmp_path: Path) -> None:
        first = JsonFileInvestigationStore(tmp_path)
        second = JsonFileInvestigationStore(tmp_path)
        entered = threading.Event()
        release = threading.Event()
        waiter_done = threading.Event()
        order: list[str] = []

        def holder() -> None:
            with first.lock("s"):
                entered.set()
                release.wait(timeout=5)
                order.append("holder")

        def waiter() -> None:
            with second.lock("s"):
                order.append("waiter")
            waiter_done.set()

        holding = threading.Thread(target=holder)
        holding.start()
        entered.wait(timeout=5)
        waiting = threading.Thread(target=waiter)
        waiting.start()
        assert not waiter_done.wait(timeout=0.2)
        release.set()
        holding.join(timeout=5)
        waiting.join(timeout=5)
        assert order == ["holder", "waiter"]

    def test_concurrent_proposals_from_two_stores(self, tmp_path: Path) -> None:
        class PausingStore(JsonFileInvestigationStore):
            paused = False

            def __init__(self, persist_dir: Path) -> None:
                super().__init__(persist_dir)
                self.saving = threading.Event()
                self.resume = threading.Event()

            def save(self, investigation: Investigation) -> None:
                if self.paused:
                    self.saving.set()
                    self.resume.wait(timeout=5)
                super().save(investigation)

        slow_store = PausingStore(tmp_path)
        other_store = JsonFileInvestigationStore(tmp_path)
        slow = InvestigationOrchestrator(slow_store)
        other = InvestigationOrchestrator(other_store)
        sid = other.start("q").session_id
        slow_store.paused = True
        responses: dict[str, bool] = {}

        def propose(name: str, orchestrator: InvestigationOrchestrator, node_id: str) -> None:
            responses[name] = orchestrator.propose(sid, [{"id": node_id}]).ok

        first = threading.Thread(target=propose, args=("slow", slow, "R1.A"))
        first.start()
        assert slow_store.saving.wait(timeout=5)
        second = threading.Thread(target=propose, args=("other", other, "R1.B"))
        second.start()
        second.join(timeout=0.2)
        assert second.is_alive()
        slow_store.resume.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert responses == {"slow": True, "other": True}
        pending = sorted(p.id for p in other_store.load(sid).pending_proposals())
        assert pending == ["R1.A", "R1.B"]


class TestCreateStore:

    def test_memory_backend(self) -> None:
        assert isinstance(create_store(StoreConfig(backend="memory")), InMemoryInvestigationStore)

    def test_json_backend(self, tmp_path: Path) -> None:
        store = create_store(StoreConfig(persist_dir=str(tmp_path)))
        assert isinstance(store, JsonFileInvestigationStore)
        assert store.persist_dir == tmp_path

    def test_invalid_backend(self) -> None:
        with pytest.raises(ValueError):
            create_store(StoreConfig(backend="sqlite"))
