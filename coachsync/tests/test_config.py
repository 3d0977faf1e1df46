"""Tests for config loading, env overrides and persistence."""

import json
import os
from unittest.mock import patch


class TestDefaults:
    def test_defaults(self):
        from coachsync.common.config import CoachSyncConfig
        cfg = CoachSyncConfig()
        assert cfg.server.port == 3001
        assert cfg.server.history_retention_days == 30
        assert cfg.client.backoff_cap == 5.0
        assert cfg.client.max_retries == 10
        assert cfg.detection.similarity_threshold == 0.3
        assert cfg.detection.alert_cooldown_seconds == 30.0

    def test_missing_file_gives_defaults(self, tmp_path):
        from coachsync.common.config import load_config
        with patch("coachsync.common.config.CONFIG_PATH", tmp_path / "absent.json"), \
             patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
        assert cfg.server.host == "0.0.0.0"
        assert cfg.log_level == "INFO"


class TestLoadConfig:
    def test_load_sections(self, tmp_path):
        from coachsync.common.config import load_config
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "server": {"port": 4000, "jwt_secret": "s3cret", "seed_path": "/data/objections.json"},
            "client": {"server_url": "https://sync.example.com", "team_id": "team-1"},
            "detection": {"alert_cooldown_seconds": 10},
            "log_level": "DEBUG",
        }))

        with patch("coachsync.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, {}, clear=True):
            cfg = load_config()

        assert cfg.server.port == 4000
        assert cfg.server.jwt_secret == "s3cret"
        assert cfg.server.seed_path == "/data/objections.json"
        assert cfg.client.server_url == "https://sync.example.com"
        assert cfg.detection.alert_cooldown_seconds == 10
        assert cfg.detection.min_word_length == 3
        assert cfg.log_level == "DEBUG"

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        from coachsync.common.config import load_config
        config_file = tmp_path / "config.json"
        config_file.write_text("{not json")

        with patch("coachsync.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, {}, clear=True):
            cfg = load_config()

        assert cfg.server.port == 3001

    def test_env_overrides_file(self, tmp_path):
        from coachsync.common.config import load_config
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"server": {"port": 4000}}))

        env = {"COACHSYNC_PORT": "5000", "JWT_SECRET": "from-env", "DETECTION_THRESHOLD": "0.5", "LOG_LEVEL": "warning"}
        with patch("coachsync.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, env, clear=True):
            cfg = load_config()

        assert cfg.server.port == 5000
        assert cfg.server.jwt_secret == "from-env"
        assert cfg.detection.similarity_threshold == 0.5
        assert cfg.log_level == "WARNING"
        assert "jwt_secret" in cfg._env_sourced_keys

    def test_invalid_env_value_ignored(self, tmp_path):
        from coachsync.common.config import load_config
        config_file = tmp_path / "config.json"
        config_file.write_text("{}")

        with patch("coachsync.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, {"COACHSYNC_PORT": "eighty"}, clear=True):
            cfg = load_config()

        assert cfg.server.port == 3001


class TestSaveConfig:
    def test_save_round_trips(self, tmp_path):
        from coachsync.common.config import CoachSyncConfig, load_config, save_config
        config_file = tmp_path / "config.json"
        cfg = CoachSyncConfig()
        cfg.server.port = 4100
        cfg.client.auth_token = "tok"

        with patch("coachsync.common.config.CONFIG_DIR", tmp_path), \
             patch("coachsync.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, {}, clear=True):
            save_config(cfg)
            loaded = load_config()

        assert loaded.server.port == 4100
        assert loaded.client.auth_token == "tok"
        assert (config_file.stat().st_mode & 0o777) == 0o600

    def test_save_omits_env_secrets(self, tmp_path):
        from coachsync.common.config import load_config, save_config
        config_file = tmp_path / "config.json"
        config_file.write_text("{}")

        env = {"JWT_SECRET": "from-env", "COACHSYNC_TOKEN": "token-env", "COACHSYNC_PORT": "5000"}
        with patch("coachsync.common.config.CONFIG_DIR", tmp_path), \
             patch("coachsync.common.config.CONFIG_PATH", config_file), \
             patch.dict(os.environ, env, clear=True):
            cfg = load_config()
            save_config(cfg)

        saved = json.loads(config_file.read_text())
        assert saved["server"]["jwt_secret"] == ""
        assert saved["client"]["auth_token"] == ""
        assert saved["server"]["port"] == 5000
