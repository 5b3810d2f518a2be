"""Tests for configuration loading and validation."""

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from sourcing.core.config import (
    ProviderConfig,
    ScoringConfig,
    Settings,
    SourcingConfig,
)


class TestDefaults:
    def test_settings_defaults(self) -> None:
        settings = Settings()
        assert settings.database.path == "data/sourcing.db"
        assert settings.sourcing.batch_size == 5
        assert settings.sourcing.max_retries == 2
        assert settings.sourcing.batch_delay_ms == 2000
        assert settings.scoring.threshold == 70
        assert settings.scoring.match_indicator == 80
        assert settings.scoring.llm_provider == "xai"

    def test_provider_defaults(self) -> None:
        provider = ProviderConfig()
        assert provider.dataset_id == "gd_l1viktl72bvl7bjuj0"
        assert provider.poll_max_attempts == 60
        assert provider.poll_delay_s == 3.0
        assert provider.allowed_host == "linkedin.com"

    def test_base_url_trailing_slash_stripped(self) -> None:
        provider = ProviderConfig(base_url="https://api.example.com/v3/")
        assert provider.base_url == "https://api.example.com/v3"


class TestValidation:
    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            SourcingConfig(batch_size=0)

    def test_negative_retries_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SourcingConfig(max_retries=-1)

    def test_threshold_bounded(self) -> None:
        with pytest.raises(ValidationError):
            ScoringConfig(threshold=101)

    def test_zero_retries_allowed(self) -> None:
        assert SourcingConfig(max_retries=0).max_retries == 0


class TestResolveApiKey:
    def test_explicit_key_wins(self) -> None:
        provider = ProviderConfig(api_key="explicit")
        with patch.dict("os.environ", {"BRIGHTDATA_API_KEY": "from-env"}):
            assert provider.resolve_api_key() == "explicit"

    def test_falls_back_to_environment(self) -> None:
        provider = ProviderConfig()
        with patch.dict("os.environ", {"BRIGHTDATA_API_KEY": "from-env"}):
            assert provider.resolve_api_key() == "from-env"

    def test_custom_env_var(self) -> None:
        provider = ProviderConfig(api_key_env="MY_SCRAPER_KEY")
        with patch.dict("os.environ", {"MY_SCRAPER_KEY": "abc"}, clear=True):
            assert provider.resolve_api_key() == "abc"

    def test_missing_key_raises(self) -> None:
        provider = ProviderConfig()
        with (
            patch.dict("os.environ", {}, clear=True),
            pytest.raises(ValueError, match="BRIGHTDATA_API_KEY"),
        ):
            provider.resolve_api_key()


class TestFromYaml:
    def test_loads_partial_file(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text(
            "database:\n"
            "  path: /tmp/x.db\n"
            "sourcing:\n"
            "  batch_size: 3\n"
            "  target_count: 20\n"
            "scoring:\n"
            "  llm_provider: anthropic\n"
        )
        settings = Settings.from_yaml(path)
        assert settings.database.path == "/tmp/x.db"
        assert settings.sourcing.batch_size == 3
        assert settings.sourcing.target_count == 20
        assert settings.sourcing.max_retries == 2
        assert settings.scoring.llm_provider == "anthropic"

    def test_empty_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Settings.from_yaml(path) == Settings()

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            Settings.from_yaml(tmp_path / "nope.yaml")

    def test_invalid_values_raise(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("sourcing:\n  batch_size: 0\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(path)
