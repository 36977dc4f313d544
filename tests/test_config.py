"""Tests for configuration loading and validation."""

from __future__ import annotations

import pytest

from noga_bot.config import AppConfig, load_config, validate_config
from noga_bot.core.cron import parse_cron
from noga_bot.errors import ValidationError

CONFIG_YAML = """
data_dir: /var/lib/noga
telegram:
  token: ${TEST_TELEGRAM_TOKEN}
  allowed_user_ids: ["111"]
ai:
  backend: gemini
  max_tool_rounds: 3
gemini:
  api_key: ${TEST_GEMINI_KEY}
storage:
  db_path: ${data_dir}/noga.db
"""


def _write(tmp_path, text: str = CONFIG_YAML):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_env_vars_and_data_dir_are_interpolated(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("TEST_TELEGRAM_TOKEN", "tg-token")
        monkeypatch.setenv("TEST_GEMINI_KEY", "gm-key")

        config = load_config(_write(tmp_path), env_path=tmp_path / "missing.env")

        assert config.telegram.token == "tg-token"
        assert config.gemini.api_key == "gm-key"
        assert config.storage.db_path == "/var/lib/noga/noga.db"
        assert config.ai.max_tool_rounds == 3
        assert config.router.session_timeout_minutes == 10

    def test_dotenv_file_is_loaded(self, tmp_path, monkeypatch) -> None:
        # Registered first so teardown removes whatever load_dotenv sets.
        monkeypatch.setenv("TEST_TELEGRAM_TOKEN", "unset")
        monkeypatch.delenv("TEST_TELEGRAM_TOKEN")
        monkeypatch.setenv("TEST_GEMINI_KEY", "gm-key")
        env_file = tmp_path / ".env"
        env_file.write_text("TEST_TELEGRAM_TOKEN=from-dotenv\n", encoding="utf-8")

        config = load_config(_write(tmp_path), env_path=env_file)

        assert config.telegram.token == "from-dotenv"

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", env_path=tmp_path / "missing.env")


class TestValidateConfig:
    def test_valid(self) -> None:
        config = AppConfig(telegram={"token": "t"}, gemini={"api_key": "k"})
        assert validate_config(config) == []

    def test_missing_backend_key(self) -> None:
        config = AppConfig(telegram={"token": "t"}, ai={"backend": "anthropic"})

        errors = validate_config(config)

        assert errors == ["ai.backend is 'anthropic' but anthropic.api_key is not set"]

    def test_unknown_backend_and_empty_token(self) -> None:
        config = AppConfig(telegram={"token": ""}, ai={"backend": "llama"})

        errors = validate_config(config)

        assert "Unknown AI backend: llama" in errors
        assert "telegram.token is required" in errors


class TestParseCron:
    def test_five_fields(self) -> None:
        trigger = parse_cron("30 7 * * 0-4", "Asia/Jerusalem")
        assert str(trigger.timezone) == "Asia/Jerusalem"

    @pytest.mark.parametrize("expr", ["* * * * * *", "0 25 * * *", "daily"])
    def test_rejected(self, expr: str) -> None:
        with pytest.raises(ValidationError):
            parse_cron(expr)
