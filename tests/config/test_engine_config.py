"""Tests for hybridflow.config"""

import pytest

from hybridflow.config import (
    BreakerConfig,
    DependencyPolicy,
    EngineConfig,
    ExecutorConfig,
    load_config,
)


# =========================================================================
# load_config
# =========================================================================


class TestLoadConfig:

    def test_reads_sections(self, tmp_path):
        path = tmp_path / "hybridflow.yaml"
        path.write_text(
            "breaker:\n"
            "  failure_threshold: 3\n"
            "  recovery_timeout: 30\n"
            "executor:\n"
            "  max_retries: 1\n"
            "  unsatisfied_dependency_policy: proceed\n"
            "router:\n"
            "  hybrid_split: false\n"
        )

        config = load_config(str(path))

        assert config.breaker.failure_threshold == 3
        assert config.breaker.recovery_timeout == 30
        assert config.executor.max_retries == 1
        assert config.executor.unsatisfied_dependency_policy == DependencyPolicy.PROCEED
        assert config.router.hybrid_split is False
        assert config.pruning.max_messages == 15

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HF_MAX_MESSAGES", "20")
        path = tmp_path / "hybridflow.yaml"
        path.write_text("pruning:\n  max_messages: ${HF_MAX_MESSAGES}\n")

        assert load_config(str(path)).pruning.max_messages == 20

    def test_unset_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("HF_UNSET_VAR", raising=False)
        path = tmp_path / "hybridflow.yaml"
        path.write_text("cache:\n  default_ttl: ${HF_UNSET_VAR}\n")

        with pytest.raises(ValueError, match="HF_UNSET_VAR"):
            load_config(str(path))

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == EngineConfig()

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))


# =========================================================================
# Dict round trip
# =========================================================================


class TestEngineConfigDict:

    def test_defaults(self):
        config = EngineConfig()
        assert config.breaker.failure_threshold == 5
        assert config.breaker.recovery_timeout == 60.0
        assert config.executor.default_timeout == 15.0
        assert config.executor.max_retries == 2
        assert config.executor.unsatisfied_dependency_policy == DependencyPolicy.REJECT
        assert config.router.selection_staleness == 1800.0

    def test_round_trip(self):
        config = EngineConfig(
            breaker=BreakerConfig(failure_threshold=2),
            executor=ExecutorConfig(unsatisfied_dependency_policy=DependencyPolicy.PROCEED),
        )
        data = config.to_dict()
        assert data["executor"]["unsatisfied_dependency_policy"] == "proceed"
        assert EngineConfig.from_dict(data) == config

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            EngineConfig.from_dict({"executor": {"unsatisfied_dependency_policy": "maybe"}})

    def test_null_sections(self):
        assert EngineConfig.from_dict({"breaker": None}) == EngineConfig()
