"""
Common Utilities

Shared modules used across the client:
- models.py - Key, content and cache tier types
- content.py - Fingerprints and log-safe truncation
- config.py - Client configuration dataclass
- exceptions.py - Custom exception classes
- files.py - Crash-safe local file I/O
- logging_setup.py - Structured logging setup
"""

from .models import (
    DEFAULT_GROUP,
    CacheEntry,
    CacheTier,
    ConfigContent,
    ConfigKey,
    ServerStatus,
    normalize_group,
)
from .content import fingerprint, truncate_content
from .config import (
    ClientConfig,
    load_client_config,
    load_client_config_file,
)
from .exceptions import (
    ConfSyncError,
    ConfigError,
    ParameterError,
    ContentRejectedError,
    AccessDenied,
    NetworkFailure,
    ServerError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    setup_logging_from_env,
    log_config_read,
    log_config_write,
)

__all__ = [
    # Models
    "DEFAULT_GROUP",
    "CacheEntry",
    "CacheTier",
    "ConfigContent",
    "ConfigKey",
    "ServerStatus",
    "normalize_group",
    # Content
    "fingerprint",
    "truncate_content",
    # Config
    "ClientConfig",
    "load_client_config",
    "load_client_config_file",
    # Exceptions
    "ConfSyncError",
    "ConfigError",
    "ParameterError",
    "ContentRejectedError",
    "AccessDenied",
    "NetworkFailure",
    "ServerError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "setup_logging_from_env",
    "log_config_read",
    "log_config_write",
]
