"""Tests for layered configuration loading."""

from __future__ import annotations

import os

import pytest
import yaml

from tokenstream.config import TokenStreamConfig, load_config


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "tokenstream.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "llm": {"model": "file-model", "api_base": "http://localhost:8080/v1"},
                "stream": {"max_tool_rounds": 5, "unknown_key": True},
                "memory": {"backend": "sqlite"},
                "profiles": {
                    "deep": {
                        "llm": {"model": "reasoner"},
                        "stream": {"show_reasoning": False},
                    }
                },
            }
        )
    )
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("TOKENSTREAM_"):
            monkeypatch.delenv(name)


class TestDefaults:
    def test_defaults_without_file(self):
        cfg = load_config(None)
        assert cfg == TokenStreamConfig()
        assert cfg.stream.max_tool_rounds == 20
        assert cfg.stream.reasoning_path == "$.reasoning_content"
        assert cfg.memory.backend == "memory"
        assert cfg.mcp.fail_if_one_server_fails is False

    def test_missing_file_is_ignored(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == TokenStreamConfig()

    @pytest.mark.parametrize("rounds,limit", [(20, 20), (0, None), (-1, None)])
    def test_tool_round_limit(self, rounds, limit):
        cfg = TokenStreamConfig()
        cfg.stream.max_tool_rounds = rounds
        assert cfg.stream.tool_round_limit == limit


class TestLayering:
    def test_file_values(self, config_file):
        cfg = load_config(config_file)
        assert cfg.llm.model == "file-model"
        assert cfg.llm.name == "openai"
        assert cfg.stream.max_tool_rounds == 5
        assert cfg.memory.backend == "sqlite"

    def test_profile_overlays_file(self, config_file):
        cfg = load_config(config_file, profile="deep")
        assert cfg.llm.model == "reasoner"
        assert cfg.llm.api_base == "http://localhost:8080/v1"
        assert cfg.stream.show_reasoning is False

    def test_unknown_profile(self, config_file):
        with pytest.raises(KeyError):
            load_config(config_file, profile="nope")

    def test_env_overrides_profile(self, config_file, monkeypatch):
        monkeypatch.setenv("TOKENSTREAM_LLM_MODEL", "env-model")
        monkeypatch.setenv("TOKENSTREAM_STREAM_MAX_TOOL_ROUNDS", "3")
        monkeypatch.setenv("TOKENSTREAM_MCP_FAIL_IF_ONE_SERVER_FAILS", "yes")
        monkeypatch.setenv("TOKENSTREAM_LLM_TEMPERATURE", "0.5")

        cfg = load_config(config_file, profile="deep")

        assert cfg.llm.model == "env-model"
        assert cfg.stream.max_tool_rounds == 3
        assert cfg.mcp.fail_if_one_server_fails is True
        assert cfg.llm.temperature == 0.5

    def test_cli_overrides_env(self, config_file, monkeypatch):
        monkeypatch.setenv("TOKENSTREAM_LOGGING_LEVEL", "INFO")
        cfg = load_config(
            config_file,
            cli_overrides={"logging.level": "DEBUG", "stream.show_reasoning": None},
        )
        assert cfg.logging.level == "DEBUG"
        assert cfg.stream.show_reasoning is True

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_to_dict(self, config_file):
        d = load_config(config_file).to_dict()
        assert d["llm"]["model"] == "file-model"
        assert "deep" in d["profiles"]
