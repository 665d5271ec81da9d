"""
Config Service - Configuration Synchronization

Responsibilities:
- Resolve reads through failover, live and snapshot tiers
- Publish and remove config items
- Long-poll the server for changes to watched keys
- Deliver changes to registered listeners
"""

from .change import ConfigChangeEvent, ConfigChangeItem, PropertyChangeType
from .filters import ConfigFilter, FilterChain
from .listeners import CallbackListener, ConfigChangeListener, Listener
from .service import ConfigService

__all__ = [
    "ConfigService",
    "ConfigFilter",
    "FilterChain",
    "Listener",
    "CallbackListener",
    "ConfigChangeListener",
    "ConfigChangeEvent",
    "ConfigChangeItem",
    "PropertyChangeType",
]
