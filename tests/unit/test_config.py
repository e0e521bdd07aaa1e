"""
Unit tests for configuration loading.
"""
import pytest

from claimsync.control_plane.config import SyncConfig, get_config


class TestSyncConfig:
    """Test environment and YAML configuration."""

    def test_defaults(self, monkeypatch):
        for name in ("DOWNLOAD_INTERVAL_SECONDS", "DOWNLOAD_RETRY_DELAY_MINUTES",
                     "DOWNLOAD_MAX_ATTEMPTS", "ACCEPTED_CLAIM_TYPES"):
            monkeypatch.delenv(f"CLAIMSYNC_{name}", raising=False)

        config = SyncConfig()

        assert config.download_interval_seconds == 30
        assert config.download_retry_delay_minutes == 10
        assert config.download_max_attempts == 20
        assert config.retry_delay_ms == 600000
        assert config.accepted_claim_types == ["Work"]

    def test_require_token(self, monkeypatch):
        monkeypatch.delenv("CLAIMSYNC_API_TOKEN")

        with pytest.raises(ValueError, match="CLAIMSYNC_API_TOKEN"):
            get_config(require_token=True)

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("CLAIMSYNC_DOWNLOAD_INTERVAL_SECONDS", "2.5")
        monkeypatch.setenv("CLAIMSYNC_DOWNLOAD_RETRY_DELAY_MINUTES", "1")
        monkeypatch.setenv("CLAIMSYNC_DOWNLOAD_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CLAIMSYNC_ACCEPTED_CLAIM_TYPES", "Work, License")

        config = SyncConfig()

        assert config.download_interval_seconds == 2.5
        assert config.retry_delay_ms == 60000
        assert config.download_max_attempts == 5
        assert config.accepted_claim_types == ["Work", "License"]

    def test_yaml_file_below_env(self, monkeypatch, tmp_path):
        path = tmp_path / "claimsync.yaml"
        path.write_text(
            "download_max_attempts: 7\n"
            "download_interval_seconds: 5\n"
            "accepted_claim_types:\n"
            "  - Work\n"
            "  - Identity\n"
        )
        monkeypatch.delenv("CLAIMSYNC_DOWNLOAD_INTERVAL_SECONDS", raising=False)
        monkeypatch.delenv("CLAIMSYNC_ACCEPTED_CLAIM_TYPES", raising=False)
        monkeypatch.setenv("CLAIMSYNC_DOWNLOAD_MAX_ATTEMPTS", "9")

        config = SyncConfig(path=str(path))

        assert config.download_max_attempts == 9
        assert config.download_interval_seconds == 5
        assert config.accepted_claim_types == ["Work", "Identity"]

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "claimsync.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ValueError, match="must be a YAML dict"):
            SyncConfig(path=str(path))

    def test_non_numeric_value(self, monkeypatch):
        monkeypatch.setenv("CLAIMSYNC_DOWNLOAD_MAX_ATTEMPTS", "many")

        with pytest.raises(ValueError, match="must be a number"):
            SyncConfig()

    def test_interval_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("CLAIMSYNC_DOWNLOAD_INTERVAL_SECONDS", "0")

        with pytest.raises(ValueError, match="must be positive"):
            SyncConfig()
