import pytest
from pydantic import ValidationError

from unillm.config import ProviderConfig, profile_config
from unillm.streaming import FragmentMode


class TestProviderConfig:
    def test_frozen(self, openai_config):
        with pytest.raises(ValidationError):
            openai_config.model = "other"

    def test_base_url_trailing_slash_stripped(self, openai_config):
        assert openai_config.base_url == "https://api.example.com/v1"

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            ProviderConfig(provider_id="p", model="m", base_url="http://x", temprature=0.1)

    def test_provider_options_read_only(self):
        config = ProviderConfig(
            provider_id="xai",
            model="grok",
            base_url="http://x",
            provider_options={"xai": {"search_parameters": {"mode": "auto"}}},
        )
        with pytest.raises(TypeError):
            config.provider_options["xai"]["search_parameters"] = None
        assert config.options_for() == {"search_parameters": {"mode": "auto"}}
        assert config.options_for("other") == {}

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")
        config = ProviderConfig(provider_id="p", model="m", base_url="http://x", api_key_env="MY_KEY")
        assert config.resolve_api_key() == "secret"

    def test_explicit_api_key_wins(self, monkeypatch):
        monkeypatch.setenv("MY_KEY", "secret")
        config = ProviderConfig(
            provider_id="p", model="m", base_url="http://x", api_key="explicit", api_key_env="MY_KEY",
        )
        assert config.resolve_api_key() == "explicit"


class TestProfiles:
    def test_ollama_profile(self):
        config = profile_config("ollama", "llama3")
        assert config.base_url == "http://localhost:11434"
        assert config.fragment_mode is FragmentMode.REPLACE

    def test_overrides_and_none_ignored(self):
        config = profile_config("openai", "gpt", base_url=None, timeout=5.0)
        assert config.base_url == "https://api.openai.com/v1"
        assert config.timeout == 5.0
        assert config.api_key_env == "OPENAI_API_KEY"

    def test_unknown_profile_needs_base_url(self):
        with pytest.raises(ValidationError):
            profile_config("somewhere", "m")
