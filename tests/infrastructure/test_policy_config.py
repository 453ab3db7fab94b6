"""Tests for PolicyConfig, StoreConfig and the config loaders."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from tree_of_thoughts.infrastructure.config import (
    PolicyConfig,
    StoreConfig,
    load_config_file,
    load_config_from_json,
    load_config_from_yaml,
)


class TestPolicyConfig:

    def test_defaults(self) -> None:
        cfg = PolicyConfig()
        cfg.validate()
        assert cfg.min_rounds_to_end == 5
        assert cfg.explore_children_early == 2
        assert cfg.explore_children_late == 1
        assert cfg.min_round_found == 4
        assert cfg.min_round_exhaust == 3
        assert cfg.min_round_dead == 4
        assert cfg.terminal_ratio_caps == {1: 0.0, 2: 0.35, 3: 0.5}
        assert cfg.quality_gate is False

    def test_frozen(self) -> None:
        cfg = PolicyConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            cfg.max_batch_size = 9  # type: ignore[misc]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"min_rounds_to_end": 0},
            {"explore_children_early": -1},
            {"min_round_found": 0},
            {"min_round_dead": 2, "min_round_exhaust": 3},
            {"min_research_seconds": -1.0},
            {"max_batch_size": 0},
            {"default_min_roots": 0},
            {"terminal_ratio_caps": {0: 0.5}},
            {"terminal_ratio_caps": {2: 1.5}},
            {"min_quality_score": 2.0},
        ],
    )
    def test_validate_rejects(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            PolicyConfig(**kwargs).validate()

    def test_string_round_keys_are_coerced(self) -> None:
        cfg = PolicyConfig(terminal_ratio_caps={"2": "0.25"})
        assert cfg.terminal_ratio_caps == {2: 0.25}

    def test_dict_round_trip_through_json(self) -> None:
        cfg = PolicyConfig(max_batch_size=7, terminal_ratio_caps={2: 0.1})
        restored = PolicyConfig.from_dict(json.loads(json.dumps(cfg.to_dict())))
        assert restored == cfg

    def test_from_dict_ignores_unknown_keys(self) -> None:
        cfg = PolicyConfig.from_dict({"max_batch_size": 3, "colour": "blue"})
        assert cfg.max_batch_size == 3

    def test_from_dict_validates(self) -> None:
        with pytest.raises(ValueError):
            PolicyConfig.from_dict({"max_batch_size": 0})


class TestStoreConfig:

    def test_defaults(self) -> None:
        cfg = StoreConfig()
        cfg.validate()
        assert cfg.backend == "json"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="backend"):
            StoreConfig(backend="redis").validate()

    def test_json_needs_dir(self) -> None:
        with pytest.raises(ValueError):
            StoreConfig(persist_dir="").validate()


class TestLoaders:

    def test_json_sections(self) -> None:
        result = load_config_from_json(
            '{"policy": {"min_rounds_to_end": 3}, "store": {"backend": "memory"}, "x": 1}'
        )
        assert isinstance(result["policy"], PolicyConfig)
        assert result["policy"].min_rounds_to_end == 3
        assert result["store"].backend == "memory"
        assert result["x"] == 1

    def test_yaml_sections(self) -> None:
        result = load_config_from_yaml(
            "policy:\n  r2_min_nodes: 2\n  terminal_ratio_caps:\n    2: 0.5\n"
        )
        assert result["policy"].r2_min_nodes == 2
        assert result["policy"].terminal_ratio_caps == {2: 0.5}

    def test_empty_yaml(self) -> None:
        assert load_config_from_yaml("") == {}

    def test_non_mapping_rejected(self) -> None:
        with pytest.raises(ValueError):
            load_config_from_json("[1, 2]")

    def test_load_file_by_suffix(self, tmp_path: Path) -> None:
        yml = tmp_path / "tot.yml"
        yml.write_text("store:\n  backend: memory\n", encoding="utf-8")
        js = tmp_path / "tot.json"
        js.write_text('{"policy": {"max_batch_size": 2}}', encoding="utf-8")
        assert load_config_file(yml)["store"].backend == "memory"
        assert load_config_file(js)["policy"].max_batch_size == 2
