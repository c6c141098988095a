"""Tests for configuration validation and display."""

import pytest

from citypulse.config import Config


@pytest.fixture
def templated_only(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", None)
    monkeypatch.setattr(Config, "LLM_MODEL", None)
    monkeypatch.setattr(Config, "EVENT_PROBABILITY", 0.3)
    monkeypatch.setattr(Config, "TEXT_GENERATION_TIMEOUT_SECONDS", 25.0)
    monkeypatch.setattr(Config, "AGING_INTERVAL_SECONDS", 30.0)
    monkeypatch.setattr(Config, "MAX_CASCADE_DEPTH", 3)


def test_defaults_validate(templated_only):
    Config.validate()


def test_provider_and_model_go_together(templated_only, monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "openai")

    with pytest.raises(ValueError, match="must be set together"):
        Config.validate()


def test_provider_needs_api_key(templated_only, monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "anthropic")
    monkeypatch.setattr(Config, "LLM_MODEL", "claude-haiku")
    monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", None)

    with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
        Config.validate()


def test_event_probability_must_be_a_probability(templated_only, monkeypatch):
    monkeypatch.setattr(Config, "EVENT_PROBABILITY", 1.5)

    with pytest.raises(ValueError, match="EVENT_PROBABILITY"):
        Config.validate()


def test_generation_timeout_below_aging_period(templated_only, monkeypatch):
    monkeypatch.setattr(Config, "TEXT_GENERATION_TIMEOUT_SECONDS", 30.0)

    with pytest.raises(ValueError, match="TEXT_GENERATION_TIMEOUT_SECONDS"):
        Config.validate()


def test_display(templated_only, monkeypatch):
    text = Config.display()
    assert "LLM Provider: none (templated text)" in text
    assert "Max Cascade Depth: 3" in text

    monkeypatch.setattr(Config, "MAX_CASCADE_DEPTH", -1)
    assert "Max Cascade Depth: unbounded" in Config.display()
