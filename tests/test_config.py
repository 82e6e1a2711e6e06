import pytest

from lumen.config import Config


def test_validate_requires_provider_key(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "openai")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", None)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        Config.validate()


def test_validate_allows_local_provider_without_keys(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", None)
    monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", None)

    Config.validate()


def test_validate_rejects_nonpositive_limits(monkeypatch):
    monkeypatch.setattr(Config, "LLM_PROVIDER", "ollama")
    monkeypatch.setattr(Config, "MAX_ITERATIONS", 0)

    with pytest.raises(ValueError, match="LUMEN_MAX_ITERATIONS"):
        Config.validate()


def test_display_lists_limits(monkeypatch):
    monkeypatch.setattr(Config, "MAX_ITERATIONS", 5)
    monkeypatch.setattr(Config, "MAX_DENIALS", 2)

    text = Config.display()

    assert "Max Iterations: 5" in text
    assert "Max Denials: 2" in text


def test_log_threshold_follows_config(monkeypatch, capsys):
    from lumen.logging_utils import log_info, log_warning

    monkeypatch.setattr(Config, "LOG_LEVEL", "WARNING")
    monkeypatch.setenv("LUMEN_NO_COLOR", "1")

    log_info("quiet")
    log_warning("loud")

    out = capsys.readouterr().out
    assert "quiet" not in out
    assert "loud" in out
    assert "Log Level: WARNING" in Config.display()
