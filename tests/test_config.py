"""Tests for Valves, EncryptedStr, GenerationConfig and SessionConfig."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from gemini_live_client.core.config import (
    EncryptedStr,
    GenerationConfig,
    SessionConfig,
    Valves,
    _DEFAULT_LIVE_MODEL_ID,
    _DEFAULT_LIVE_WS_URL,
    _DEFAULT_MODEL_ID,
)


class TestValves:
    def test_defaults_without_environment(self) -> None:
        valves = Valves()
        assert str(valves.API_KEY) == ""
        assert valves.LIVE_MODEL_ID == _DEFAULT_LIVE_MODEL_ID
        assert valves.MODEL_ID == _DEFAULT_MODEL_ID
        assert valves.LIVE_WS_URL == _DEFAULT_LIVE_WS_URL
        assert valves.CONNECT_TIMEOUT_SECONDS == 20
        assert valves.LOG_LEVEL == "INFO"

    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", " env-key ")
        monkeypatch.setenv("GEMINI_LIVE_MODEL_ID", "gemini-live-2.5-flash-preview")
        monkeypatch.setenv("GEMINI_MODEL_ID", "gemini-1.5-flash-002")
        monkeypatch.setenv("GLOBAL_LOG_LEVEL", "debug")

        valves = Valves()

        assert str(valves.API_KEY) == "env-key"
        assert valves.LIVE_MODEL_ID == "gemini-live-2.5-flash-preview"
        assert valves.MODEL_ID == "gemini-1.5-flash-002"
        assert valves.LOG_LEVEL == "DEBUG"

    def test_invalid_log_level_falls_back(self, monkeypatch) -> None:
        monkeypatch.setenv("GLOBAL_LOG_LEVEL", "chatty")
        assert Valves().LOG_LEVEL == "INFO"

    def test_blank_model_env_uses_default(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_LIVE_MODEL_ID", "   ")
        assert Valves().LIVE_MODEL_ID == _DEFAULT_LIVE_MODEL_ID

    @pytest.mark.parametrize(
        "field,value",
        [("TEMPERATURE", 3), ("TOP_P", 1.5), ("TOP_K", 0), ("CONNECT_TIMEOUT_SECONDS", 0)],
    )
    def test_out_of_range_values_rejected(self, field: str, value) -> None:
        with pytest.raises(ValidationError):
            Valves(**{field: value})

    def test_generation_config_from_valves(self) -> None:
        config = Valves(TEMPERATURE=0.1, TOP_K=5, TOP_P=0.2, MAX_OUTPUT_TOKENS=32).generation_config()
        assert config.to_wire() == {
            "temperature": 0.1,
            "topK": 5,
            "topP": 0.2,
            "maxOutputTokens": 32,
            "responseModalities": ["TEXT"],
        }


class TestEncryptedStr:
    def test_plain_value_without_secret(self) -> None:
        assert EncryptedStr.encrypt("abc") == "abc"
        assert EncryptedStr.decrypt("abc") == "abc"

    def test_round_trip_with_secret(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_CLIENT_SECRET_KEY", "unit-test-secret")
        encrypted = EncryptedStr.encrypt("my-api-key")
        assert encrypted.startswith("encrypted:")
        assert "my-api-key" not in encrypted
        assert EncryptedStr.decrypt(encrypted) == "my-api-key"

    def test_valve_stores_ciphertext(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_CLIENT_SECRET_KEY", "unit-test-secret")
        valves = Valves(API_KEY="secret-value")
        assert str(valves.API_KEY).startswith("encrypted:")
        assert SessionConfig.from_valves(valves).credential == "secret-value"

    def test_wrong_secret_returns_ciphertext(self, monkeypatch) -> None:
        monkeypatch.setenv("GEMINI_CLIENT_SECRET_KEY", "one")
        encrypted = EncryptedStr.encrypt("value")
        monkeypatch.setenv("GEMINI_CLIENT_SECRET_KEY", "two")
        assert EncryptedStr.decrypt(encrypted) == encrypted


class TestSessionConfig:
    def test_from_valves(self) -> None:
        valves = Valves(API_KEY="k", LIVE_MODEL_ID="live-model", CONNECT_TIMEOUT_SECONDS=5, SYSTEM_INSTRUCTION="hi")
        config = SessionConfig.from_valves(valves)
        assert config.credential == "k"
        assert config.model_id == "live-model"
        assert config.connect_timeout_seconds == 5
        assert config.system_instruction == "hi"
        assert config.generation == GenerationConfig()

    def test_credential_hidden_from_repr(self) -> None:
        assert "super-secret" not in repr(SessionConfig(credential="super-secret"))

    def test_frozen(self) -> None:
        config = SessionConfig(credential="k")
        with pytest.raises(ValidationError):
            config.credential = "other"  # type: ignore[misc]

    def test_empty_credential_is_accepted_until_connect(self) -> None:
        assert SessionConfig().credential == ""
