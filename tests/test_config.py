"""
Unit tests for YAML configuration loading.
"""

import pytest
from pydantic import ValidationError

from mazemind.config import MazeMindConfig, load_config


class TestLoadConfig:

    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        config = load_config()

        assert config.reflection.threshold == 150
        assert config.retrieval.decay_factor == 0.995
        assert config.planning.divergence_threshold == 1.5
        assert config.decision.decision_interval == 3.0
        assert config.llm.api_key is None

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config == MazeMindConfig(llm=config.llm)

    def test_yaml_sections(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        path = tmp_path / "mazemind.yaml"
        path.write_text(
            "agent_name: Vera\n"
            "reflection:\n"
            "  threshold: 90\n"
            "planning:\n"
            "  stuck_multiplier: 4\n"
            "embedding:\n"
            "  provider: none\n",
            encoding="utf-8",
        )

        config = load_config(path)

        assert config.agent_name == "Vera"
        assert config.reflection.threshold == 90
        assert config.reflection.min_reflections_for_meta == 5
        assert config.planning.stuck_multiplier == 4
        assert config.embedding.provider == "none"

    def test_environment_key_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "mazemind.yaml"
        path.write_text("llm:\n  api_key: from-file\n", encoding="utf-8")
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")

        assert load_config(path).llm.api_key == "from-env"

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "mazemind.yaml"
        path.write_text("retrieval:\n  decay_factor: 1.5\n", encoding="utf-8")

        with pytest.raises(ValidationError):
            load_config(path)
