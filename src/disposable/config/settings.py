"""
Configuration loader and validator for the session broker.

Settings come from an optional YAML file and are then overridden from
environment variables. Environment variable names match the ones the
deployment (docker-compose, .env files) already uses.
"""

from pathlib import Path
from typing import ClassVar, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from disposable.config.env_guard import get_system_env_value, is_truthy

MIN_SESSION_MS = 60_000
MAX_SESSION_MS = 3_600_000


class ServerConfig(BaseModel):
    """HTTP listener settings."""

    host: str = Field("0.0.0.0", description="Bind address")
    port: int = Field(4000, ge=1, le=65535, description="Bind port")
    api_key: Optional[str] = Field(None, description="Bearer token required on /api and /status when set")
    log_level: str = Field("INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")

    @property
    def auth_required(self) -> bool:
        return bool(self.api_key)


class RuntimeConfig(BaseModel):
    """Container runtime and container spec settings."""

    BROWSER_PORT: ClassVar[str] = "3000/tcp"

    image: str = Field("linuxserver/firefox:latest", description="Browser image reference")
    memory_limit: str = Field("2g", description="Memory limit (e.g. '2g', '512m')")
    cpu_limit: float = Field(1.0, gt=0, description="CPU limit in cores")
    shm_size: int = Field(1_073_741_824, gt=0, description="/dev/shm size in bytes")
    environment: Dict[str, str] = Field(
        default_factory=lambda: {"PUID": "1000", "PGID": "1000", "TZ": "Etc/UTC"},
    )
    exposed_ports: List[str] = Field(default_factory=lambda: ["3000/tcp", "3001/tcp"])
    browser_port: str = Field(BROWSER_PORT, description="Container port whose host binding is the session endpoint")
    endpoint_host: str = Field("127.0.0.1", description="Host used to reach published ports")
    label_prefix: str = Field("disposable-suite", description="Label namespace for managed containers")
    security_opt: List[str] = Field(default_factory=lambda: ["seccomp=unconfined"])
    start_attempts: int = Field(3, ge=1, description="Container start attempts before giving up")
    start_retry_delay: float = Field(1.0, ge=0, description="Base delay between start attempts (linear)")
    endpoint_timeout: float = Field(5.0, gt=0, description="Seconds to wait for a published host port")
    endpoint_poll_interval: float = Field(0.1, gt=0, description="Seconds between endpoint polls")
    stop_grace_seconds: int = Field(10, ge=0, description="Grace period for container stop")
    call_timeout: float = Field(30.0, gt=0, description="Timeout applied to teardown/inspect runtime calls")
    pull_timeout: float = Field(600.0, gt=0, description="Timeout applied to image pulls")
    docker_timeout: int = Field(60, gt=0, description="Docker API client timeout in seconds")

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        """Basic image name validation."""
        if not v or not v.strip():
            raise ValueError("image cannot be empty")
        return v.strip()

    @field_validator("memory_limit")
    @classmethod
    def validate_memory_limit(cls, v: str) -> str:
        parse_memory_limit(v)
        return v.strip().lower()

    @property
    def nano_cpus(self) -> int:
        return int(self.cpu_limit * 1_000_000_000)

    @property
    def memory_bytes(self) -> int:
        return parse_memory_limit(self.memory_limit)


class SessionConfig(BaseModel):
    """Session lifetime and capacity policy."""

    default_duration_ms: int = Field(300_000, ge=MIN_SESSION_MS, le=MAX_SESSION_MS)
    max_sessions: int = Field(10, ge=1, description="Concurrent Active + Pending ceiling")
    cleanup_interval_ms: int = Field(300_000, ge=1_000, description="Expiry sweep interval")
    terminate_unroutable: bool = Field(
        False,
        description="Tear down sessions whose endpoint never appeared instead of keeping them",
    )

    @property
    def cleanup_interval_seconds(self) -> float:
        return self.cleanup_interval_ms / 1000


class MirrorConfig(BaseModel):
    """Durable session mirror (Redis) settings."""

    enabled: bool = Field(False, description="Persist sessions to Redis")
    url: str = Field("redis://localhost:6379", description="Redis connection URL")
    password: Optional[str] = None
    db: int = Field(0, ge=0)
    key_prefix: str = Field("session", description="Key prefix; records live at <prefix>:<id>")
    socket_timeout: float = Field(5.0, gt=0)
    socket_connect_timeout: float = Field(5.0, gt=0)
    max_connections: int = Field(20, ge=1)


class BrokerConfig(BaseModel):
    """Complete broker configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)

    @model_validator(mode="after")
    def validate_browser_port(self) -> "BrokerConfig":
        if self.runtime.browser_port not in self.runtime.exposed_ports:
            raise ValueError(
                f"browser_port {self.runtime.browser_port} must be one of exposed_ports {self.runtime.exposed_ports}"
            )
        return self


_MEMORY_UNITS = {"b": 1, "k": 1024, "m": 1024**2, "g": 1024**3}


def parse_memory_limit(value: str) -> int:
    """
    Convert a Docker-style memory limit ("512m", "2g", "1048576") to bytes.

    Raises:
        ValueError: If the value is not a positive integer with an optional b/k/m/g suffix.
    """
    text = str(value).strip().lower()
    if not text:
        raise ValueError("memory limit cannot be empty")
    unit = "b"
    if text[-1] in _MEMORY_UNITS:
        unit = text[-1]
        text = text[:-1]
    if not text.isdigit():
        raise ValueError(f"Invalid memory limit format: {value}")
    return int(text) * _MEMORY_UNITS[unit]


def load_config(config_path: str) -> BrokerConfig:
    """
    Load and validate broker configuration from a YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If configuration is invalid or the YAML is malformed.
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_file, "r") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e

    if raw_config is None:
        raw_config = {}
    if not isinstance(raw_config, dict):
        raise ValueError("Config file must contain a mapping")

    try:
        return BrokerConfig(**raw_config)
    except Exception as e:
        raise ValueError(f"Invalid configuration: {e}") from e


def _env_int(key: str) -> Optional[int]:
    value = get_system_env_value(key)
    if value is None or str(value).strip() == "":
        return None
    return int(value)


def _env_float(key: str) -> Optional[float]:
    value = get_system_env_value(key)
    if value is None or str(value).strip() == "":
        return None
    return float(value)


def load_config_with_env(config_path: Optional[str] = None) -> BrokerConfig:
    """
    Load configuration (YAML when a path is given, defaults otherwise) and
    apply environment variable overrides.

    Recognised variables: HOST, PORT, API_KEY, LOG_LEVEL, BROWSER_IMAGE,
    CONTAINER_MEMORY_LIMIT, CONTAINER_CPU_LIMIT, DEFAULT_SESSION_MS,
    MAX_SESSIONS, SESSION_CLEANUP_INTERVAL_MS, SESSION_PERSISTENCE_ENABLED,
    REDIS_URL, REDIS_PASSWORD, REDIS_DB.
    """
    config = load_config(config_path) if config_path else BrokerConfig()
    data = config.model_dump()

    server = data["server"]
    if get_system_env_value("HOST"):
        server["host"] = get_system_env_value("HOST")
    if (port := _env_int("PORT")) is not None:
        server["port"] = port
    if get_system_env_value("API_KEY"):
        server["api_key"] = get_system_env_value("API_KEY")
    if get_system_env_value("LOG_LEVEL"):
        server["log_level"] = str(get_system_env_value("LOG_LEVEL")).upper()

    runtime = data["runtime"]
    if get_system_env_value("BROWSER_IMAGE"):
        runtime["image"] = get_system_env_value("BROWSER_IMAGE")
    if get_system_env_value("CONTAINER_MEMORY_LIMIT"):
        runtime["memory_limit"] = get_system_env_value("CONTAINER_MEMORY_LIMIT")
    if (cpu := _env_float("CONTAINER_CPU_LIMIT")) is not None:
        runtime["cpu_limit"] = cpu

    sessions = data["sessions"]
    if (duration := _env_int("DEFAULT_SESSION_MS")) is not None:
        sessions["default_duration_ms"] = duration
    if (max_sessions := _env_int("MAX_SESSIONS")) is not None:
        sessions["max_sessions"] = max_sessions
    if (interval := _env_int("SESSION_CLEANUP_INTERVAL_MS")) is not None:
        sessions["cleanup_interval_ms"] = interval

    mirror = data["mirror"]
    if get_system_env_value("SESSION_PERSISTENCE_ENABLED") is not None:
        mirror["enabled"] = is_truthy(get_system_env_value("SESSION_PERSISTENCE_ENABLED"))
    if get_system_env_value("REDIS_URL"):
        mirror["url"] = get_system_env_value("REDIS_URL")
    if get_system_env_value("REDIS_PASSWORD"):
        mirror["password"] = get_system_env_value("REDIS_PASSWORD")
    if (db := _env_int("REDIS_DB")) is not None:
        mirror["db"] = db

    return BrokerConfig(**data)
