"""
Client Configuration

Type-safe configuration record for a config service client.
Supplied once at construction, from a dict, a YAML file, or code.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .logging_setup import get_service_logger
from .models import MAX_TENANT_LENGTH, is_valid_name

logger = get_service_logger("config.settings")

DEFAULT_ENCODE = "utf-8"
DEFAULT_PORT = 8848
DEFAULT_CONTEXT_PATH = "/nacos"
DEFAULT_CACHE_DIR = Path.home() / "nacos" / "config"

# The server refuses to hold a long poll for less than this
MIN_LONG_POLL_TIMEOUT_MS = 10000

# camelCase property names accepted as aliases
_ALIASES = {
    "serverAddr": "server_addr",
    "namespace": "namespace",
    "encode": "encode",
    "contextPath": "context_path",
    "configLongPollTimeout": "long_poll_timeout_ms",
    "configRetryTime": "retry_base_s",
    "enableRemoteSyncConfig": "enable_remote_sync_config",
    "maxRetry": "max_retry",
}

# Environment overrides
_ENV_OVERRIDES = {
    "CONFSYNC_SERVER_ADDR": "server_addr",
    "CONFSYNC_NAMESPACE": "namespace",
    "CONFSYNC_CACHE_DIR": "cache_dir",
    "CONFSYNC_USERNAME": "username",
    "CONFSYNC_PASSWORD": "password",
}


@dataclass
class ClientConfig:
    """Connection and polling settings for one client instance"""
    server_addr: str
    namespace: str = ""
    encode: str = DEFAULT_ENCODE
    context_path: str = DEFAULT_CONTEXT_PATH

    # Optional login
    username: str | None = None
    password: str | None = None

    # Local cache root (failover + snapshot tiers)
    cache_dir: Path = field(default_factory=lambda: DEFAULT_CACHE_DIR)
    snapshot_enabled: bool = True

    # Long polling
    long_poll_timeout_ms: int = 30000
    poll_fetch_timeout_ms: int = 3000
    keys_per_poll: int = 3000
    min_cycle_interval_s: float = 0.5
    enable_remote_sync_config: bool = False

    # Retry policy
    retry_base_s: float = 2.0
    retry_max_s: float = 60.0
    max_retry: int = 3

    # Listener delivery
    listener_workers: int = 4

    def __post_init__(self) -> None:
        self.server_addr = (self.server_addr or "").strip()
        self.namespace = (self.namespace or "").strip()
        self.encode = (self.encode or "").strip() or DEFAULT_ENCODE
        self.cache_dir = Path(self.cache_dir).expanduser()
        if self.long_poll_timeout_ms < MIN_LONG_POLL_TIMEOUT_MS:
            self.long_poll_timeout_ms = MIN_LONG_POLL_TIMEOUT_MS
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError on an unusable configuration"""
        if not self.servers():
            raise ConfigError("server_addr is required")

        if self.namespace:
            if len(self.namespace) > MAX_TENANT_LENGTH:
                raise ConfigError(f"namespace longer than {MAX_TENANT_LENGTH} characters")
            if not is_valid_name(self.namespace):
                raise ConfigError(f"namespace contains invalid characters: {self.namespace!r}")

        if self.read_timeout_s <= self.long_poll_timeout_ms / 1000:
            raise ConfigError("client long-poll timeout must exceed the server hold time")

        if self.keys_per_poll < 1:
            raise ConfigError("keys_per_poll must be positive")

        if self.retry_base_s <= 0 or self.retry_max_s < self.retry_base_s:
            raise ConfigError("retry_max_s must be >= retry_base_s > 0")

    def servers(self) -> list[str]:
        """Base URLs of the configured servers, in order"""
        urls = []
        for raw in self.server_addr.split(","):
            addr = raw.strip()
            if not addr:
                continue
            if addr.startswith(("http://", "https://")):
                scheme, _, host_port = addr.partition("://")
            else:
                scheme, host_port = "http", addr
            host_port = host_port.rstrip("/")
            if ":" not in host_port:
                host_port = f"{host_port}:{DEFAULT_PORT}"
            urls.append(f"{scheme}://{host_port}")
        return urls

    @property
    def read_timeout_s(self) -> float:
        """Client-side long-poll timeout: hold time plus half again"""
        return (self.long_poll_timeout_ms + self.long_poll_timeout_ms // 2) / 1000

    @property
    def poll_fetch_timeout_s(self) -> float:
        return self.poll_fetch_timeout_ms / 1000


def load_client_config(data: dict[str, Any], use_env: bool = True) -> ClientConfig:
    """
    Load ClientConfig from a dictionary.

    Accepts snake_case keys and the camelCase aliases (serverAddr, namespace,
    encode, ...). Unknown keys are ignored with a warning. Environment
    variables (CONFSYNC_SERVER_ADDR, ...) fill in missing values.
    """
    known = {f.name for f in fields(ClientConfig)}
    values: dict[str, Any] = {}

    for key, value in (data or {}).items():
        name = _ALIASES.get(key, key)
        if name in known:
            values[name] = value
        else:
            logger.warning(f"Ignoring unknown client option: {key}")

    if use_env:
        for env_name, name in _ENV_OVERRIDES.items():
            env_value = os.environ.get(env_name)
            if env_value and not values.get(name):
                values[name] = env_value

    if "server_addr" not in values:
        raise ConfigError("server_addr is required")

    return ClientConfig(**values)


def load_client_config_file(path: str | Path, use_env: bool = True) -> ClientConfig:
    """
    Load ClientConfig from a YAML file.

    A missing or unparsable file is treated as empty, so environment
    variables alone can still configure the client.
    """
    data: dict[str, Any] = {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        logger.error(f"Error parsing config: {e}")

    if not isinstance(data, dict):
        logger.error(f"Config file {path} must contain a mapping")
        data = {}

    # Allow the settings to sit under a top-level "confsync" section
    section = data.get("confsync")
    if isinstance(section, dict):
        data = section

    return load_client_config(data, use_env=use_env)
