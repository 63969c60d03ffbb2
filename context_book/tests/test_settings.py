import pytest
from pydantic import ValidationError

from context_book.config.settings import Settings


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("PROVIDER", "TEMPERATURE", "OPENAI_API_KEY", "OPENAI_BASE_URL", "OPENAI_MODEL_ID"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_yaml_config_file(monkeypatch, clean_env):
    path = clean_env / "book.yaml"
    path.write_text(
        "provider: completion\n"
        "temperature: 0.2\n"
        "openai_api_key: sk-yaml\n"
        "openai_base_url: https://api.deepseek.com\n"
        "openai_model_id: deepseek-chat\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CONTEXT_BOOK_CONFIG_FILE", str(path))

    s = Settings()
    config = s.to_analyze_config(keep_original=True)

    assert config.provider == "completion"
    assert config.temperature == 0.2
    assert config.api_key == "sk-yaml"
    assert config.base_url == "https://api.deepseek.com"
    assert config.model_id == "deepseek-chat"
    assert config.keep_original is True
    assert config.timeout_seconds == s.request_timeout


def test_env_overrides_yaml(monkeypatch, clean_env):
    path = clean_env / "config.yaml"
    path.write_text("temperature: 0.2\n", encoding="utf-8")
    monkeypatch.delenv("CONTEXT_BOOK_CONFIG_FILE", raising=False)
    monkeypatch.setenv("TEMPERATURE", "1.5")
    assert Settings().temperature == 1.5


def test_defaults(monkeypatch, clean_env):
    monkeypatch.delenv("CONTEXT_BOOK_CONFIG_FILE", raising=False)
    s = Settings()
    assert s.provider == "structured"
    assert s.temperature == 0.7
    assert s.google_model_id == "gemini-3-flash-preview"
    assert s.openai_base_url == "https://api.openai.com/v1"
    assert "JSON array" in s.custom_prompt
    config = s.to_analyze_config()
    assert config.provider == "structured"
    assert config.model_id == "gemini-3-flash-preview"


def test_invalid_provider_rejected(clean_env):
    with pytest.raises(ValidationError):
        Settings(provider="unknown")


def test_temperature_range(clean_env):
    with pytest.raises(ValidationError):
        Settings(temperature=3)
