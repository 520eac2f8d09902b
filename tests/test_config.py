"""
Tests for environment loading and settings.
"""

import os
from pathlib import Path

from venuedesk.config import RESTRICTED_CATEGORY, Settings
from venuedesk.env import load_env


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("VENUEDESK_DB_PATH", "VENUEDESK_RESTRICTED_CATEGORY", "VENUEDESK_STORE_RETRIES"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.db_path == Path("data/venuedesk.db")
        assert settings.restricted_category == RESTRICTED_CATEGORY
        assert settings.store_retries == 2

    def test_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VENUEDESK_DB_PATH", str(tmp_path / "x.db"))
        monkeypatch.setenv("VENUEDESK_RESTRICTED_CATEGORY", "Club")
        monkeypatch.setenv("VENUEDESK_BREAKER_THRESHOLD", "9")
        monkeypatch.setenv("VENUEDESK_STORE_RETRY_DELAY", "0.5")

        settings = Settings.from_env()

        assert settings.db_path == tmp_path / "x.db"
        assert settings.restricted_category == "Club"
        assert settings.breaker_threshold == 9
        assert settings.store_retry_delay == 0.5


class TestLoadEnv:
    def test_missing_file(self, tmp_path):
        assert load_env(tmp_path / ".env") is False

    def test_loads_values(self, tmp_path, monkeypatch):
        monkeypatch.delenv("VENUEDESK_TEST_VALUE", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("VENUEDESK_TEST_VALUE=from-file\n")

        assert load_env(env_file) is True
        assert os.environ["VENUEDESK_TEST_VALUE"] == "from-file"
        os.environ.pop("VENUEDESK_TEST_VALUE", None)

    def test_process_environment_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("VENUEDESK_TEST_VALUE", "from-process")
        env_file = tmp_path / ".env"
        env_file.write_text("VENUEDESK_TEST_VALUE=from-file\n")

        load_env(env_file)

        assert os.environ["VENUEDESK_TEST_VALUE"] == "from-process"
