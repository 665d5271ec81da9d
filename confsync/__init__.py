"""
confsync - Configuration Sync Client

Fetch, publish, delete and watch configuration items held by a remote
configuration server, serving failover or last-known-good content while the
server is unreachable.
"""

from .common import (
    DEFAULT_GROUP,
    AccessDenied,
    ClientConfig,
    ConfSyncError,
    ParameterError,
    ServerStatus,
)
from .factory import ConfigServiceAPI, create_config_service
from .services.config import (
    CallbackListener,
    ConfigChangeEvent,
    ConfigChangeListener,
    ConfigFilter,
    ConfigService,
    Listener,
)

__version__ = "1.0.0"

__all__ = [
    "DEFAULT_GROUP",
    "AccessDenied",
    "ClientConfig",
    "ConfSyncError",
    "ParameterError",
    "ServerStatus",
    "ConfigServiceAPI",
    "create_config_service",
    "CallbackListener",
    "ConfigChangeEvent",
    "ConfigChangeListener",
    "ConfigFilter",
    "ConfigService",
    "Listener",
]
