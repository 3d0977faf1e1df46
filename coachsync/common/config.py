"""
Configuration Management for CoachSync

Loads configuration from ~/.coachsync/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("coachsync.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".coachsync"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"

# Fields holding secrets; never written back if they came from the environment
SECRET_FIELDS = {"jwt_secret", "auth_token"}


@dataclass
class ServerConfig:
    """Sync server configuration"""
    host: str = "0.0.0.0"
    port: int = 3001
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    history_retention_days: int = 30  # 0 = serve any incremental window
    send_timeout: float = 5.0
    seed_path: str = ""
    seed_team_id: str = ""


@dataclass
class ClientConfig:
    """Client cache / sync client configuration"""
    server_url: str = "http://localhost:3001"
    auth_token: str = ""
    team_id: str = ""
    request_timeout: float = 10.0
    backoff_base: float = 1.0
    backoff_cap: float = 5.0
    max_retries: int = 10


@dataclass
class DetectionConfig:
    """Detection engine and alert coordinator configuration"""
    similarity_threshold: float = 0.3
    min_word_length: int = 3
    alert_cooldown_seconds: float = 30.0


@dataclass
class CoachSyncConfig:
    """Main CoachSync configuration"""
    server: ServerConfig = field(default_factory=ServerConfig)
    client: ClientConfig = field(default_factory=ClientConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    log_level: str = "INFO"
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        host=server_data.get("host", "0.0.0.0"),
        port=server_data.get("port", 3001),
        jwt_secret=server_data.get("jwt_secret", ""),
        jwt_algorithm=server_data.get("jwt_algorithm", "HS256"),
        history_retention_days=server_data.get("history_retention_days", 30),
        send_timeout=server_data.get("send_timeout", 5.0),
        seed_path=server_data.get("seed_path", ""),
        seed_team_id=server_data.get("seed_team_id", ""),
    )


def _parse_client_config(data: dict) -> ClientConfig:
    """Parse client section from config dict"""
    client_data = data.get("client", {})
    return ClientConfig(
        server_url=client_data.get("server_url", "http://localhost:3001"),
        auth_token=client_data.get("auth_token", ""),
        team_id=client_data.get("team_id", ""),
        request_timeout=client_data.get("request_timeout", 10.0),
        backoff_base=client_data.get("backoff_base", 1.0),
        backoff_cap=client_data.get("backoff_cap", 5.0),
        max_retries=client_data.get("max_retries", 10),
    )


def _parse_detection_config(data: dict) -> DetectionConfig:
    """Parse detection section from config dict"""
    detection_data = data.get("detection", {})
    return DetectionConfig(
        similarity_threshold=detection_data.get("similarity_threshold", 0.3),
        min_word_length=detection_data.get("min_word_length", 3),
        alert_cooldown_seconds=detection_data.get("alert_cooldown_seconds", 30.0),
    )


def load_config() -> CoachSyncConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.coachsync/config.json)
    3. Default values
    """
    config = CoachSyncConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.server = _parse_server_config(data)
            config.client = _parse_client_config(data)
            config.detection = _parse_detection_config(data)
            config.log_level = data.get("log_level", "INFO")
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Failed to load config file: %s", e)

    # Environment variable overrides: env var -> (section, attribute, type)
    _env_map = {
        "COACHSYNC_HOST": ("server", "host", str),
        "COACHSYNC_PORT": ("server", "port", int),
        "JWT_SECRET": ("server", "jwt_secret", str),
        "JWT_ALGORITHM": ("server", "jwt_algorithm", str),
        "COACHSYNC_HISTORY_DAYS": ("server", "history_retention_days", int),
        "COACHSYNC_SEED_PATH": ("server", "seed_path", str),
        "COACHSYNC_SEED_TEAM_ID": ("server", "seed_team_id", str),
        "COACHSYNC_SERVER_URL": ("client", "server_url", str),
        "COACHSYNC_TOKEN": ("client", "auth_token", str),
        "COACHSYNC_TEAM_ID": ("client", "team_id", str),
        "DETECTION_THRESHOLD": ("detection", "similarity_threshold", float),
        "ALERT_COOLDOWN_SECONDS": ("detection", "alert_cooldown_seconds", float),
    }
    for env_var, (section, attr, cast) in _env_map.items():
        val = os.getenv(env_var)
        if not val:
            continue
        try:
            setattr(getattr(config, section), attr, cast(val))
        except ValueError:
            logger.warning("Ignoring invalid value for %s: %r", env_var, val)
            continue
        config._env_sourced_keys.add(attr)

    if os.getenv("LOG_LEVEL"):
        config.log_level = os.getenv("LOG_LEVEL").upper()

    return config


def save_config(config: CoachSyncConfig) -> None:
    """Save configuration to file.

    Secret fields that were sourced from environment variables are written
    as empty strings so that they are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    server_section = {
        "host": config.server.host,
        "port": config.server.port,
        "jwt_secret": config.server.jwt_secret,
        "jwt_algorithm": config.server.jwt_algorithm,
        "history_retention_days": config.server.history_retention_days,
        "send_timeout": config.server.send_timeout,
        "seed_path": config.server.seed_path,
        "seed_team_id": config.server.seed_team_id,
    }
    client_section = {
        "server_url": config.client.server_url,
        "auth_token": config.client.auth_token,
        "team_id": config.client.team_id,
        "request_timeout": config.client.request_timeout,
        "backoff_base": config.client.backoff_base,
        "backoff_cap": config.client.backoff_cap,
        "max_retries": config.client.max_retries,
    }
    for key in SECRET_FIELDS & env_sourced:
        for section in (server_section, client_section):
            if key in section:
                section[key] = ""

    data = {
        "server": server_section,
        "client": client_section,
        "detection": {
            "similarity_threshold": config.detection.similarity_threshold,
            "min_word_length": config.detection.min_word_length,
            "alert_cooldown_seconds": config.detection.alert_cooldown_seconds,
        },
        "log_level": config.log_level,
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for command line entry points"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
