"""
Unit tests for configuration module.
"""
import pytest
from pydantic import ValidationError

from core.config import get_settings, reset_settings


def test_settings_defaults():
    """Test default configuration values."""
    settings = get_settings()
    assert settings.app_name == "Statement Ingestion Service"
    assert settings.host == "0.0.0.0"
    assert settings.port == 8000
    assert settings.log_level == "INFO"
    assert settings.model_id == "meta.llama3-8b-instruct-v1:0"
    assert settings.model_max_gen_len == 4000
    assert settings.model_temperature == 0.1
    assert settings.model_top_p == 0.9
    assert settings.upload_prefix == "uploads/"
    assert settings.upload_extension == ".pdf"
    assert settings.reprocess_policy == "keep"


def test_poll_schedule_defaults():
    """Polling starts at 1.5s, grows x1.5, caps at 8s and gives up after 4 minutes."""
    settings = get_settings()
    assert settings.poll_initial_delay == 1.5
    assert settings.poll_backoff_multiplier == 1.5
    assert settings.poll_max_delay == 8.0
    assert settings.poll_deadline == 240.0


def test_settings_validation_port(monkeypatch):
    """Test port validation."""
    monkeypatch.setenv("PORT", "99999")

    reset_settings()
    with pytest.raises(ValidationError):
        get_settings()


def test_settings_validation_log_level(monkeypatch):
    """Test log level validation."""
    monkeypatch.setenv("LOG_LEVEL", "INVALID")

    reset_settings()
    with pytest.raises(ValidationError):
        get_settings()


def test_settings_validation_reprocess_policy(monkeypatch):
    """Only keep and purge are accepted."""
    monkeypatch.setenv("REPROCESS_POLICY", "overwrite")

    reset_settings()
    with pytest.raises(ValidationError):
        get_settings()


def test_settings_validation_backoff_multiplier(monkeypatch):
    """A multiplier below 1 would shrink delays."""
    monkeypatch.setenv("POLL_BACKOFF_MULTIPLIER", "0.5")

    reset_settings()
    with pytest.raises(ValidationError):
        get_settings()


def test_settings_reads_environment(monkeypatch, tmp_path):
    """Environment values override defaults."""
    monkeypatch.setenv("POLL_DEADLINE", "30")
    monkeypatch.setenv("REPROCESS_POLICY", "PURGE")

    reset_settings()
    settings = get_settings()
    assert settings.poll_deadline == 30.0
    assert settings.reprocess_policy == "purge"
    assert settings.database_path == str(tmp_path / "statements.db")


def test_settings_singleton():
    """Test settings singleton behavior."""
    settings1 = get_settings()
    settings2 = get_settings()
    assert settings1 is settings2
