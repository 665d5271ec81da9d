"""
Service Factory

Builds a ConfigService from whatever configuration the caller has at hand.
"""

from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

from .common.config import ClientConfig, load_client_config, load_client_config_file
from .common.models import ServerStatus
from .services.config.filters import ConfigFilter
from .services.config.listeners import Listener
from .services.config.service import ConfigService
from .services.transport.base import Transport


@runtime_checkable
class ConfigServiceAPI(Protocol):
    """Capability set of a config client: get, publish, remove, listen"""

    async def get_config(self, data_id: str, group: str | None = None, timeout: float = 3.0) -> str:
        ...

    async def get_config_and_sign_listener(
        self,
        data_id: str,
        group: str | None,
        timeout: float,
        listener: Listener | Callable[[str], Any],
    ) -> str:
        ...

    async def add_listener(self, data_id: str, group: str | None, listener: Listener | Callable[[str], Any]) -> None:
        ...

    async def remove_listener(self, data_id: str, group: str | None, listener: Listener | Callable[[str], Any]) -> None:
        ...

    async def publish_config(self, data_id: str, group: str | None, content: str, **kwargs: Any) -> bool:
        ...

    async def remove_config(self, data_id: str, group: str | None = None, **kwargs: Any) -> bool:
        ...

    def get_server_status(self) -> ServerStatus:
        ...

    async def shutdown(self) -> None:
        ...


def create_config_service(
    properties: ClientConfig | Mapping[str, Any] | str | Path,
    transport: Transport | None = None,
    filters: Iterable[ConfigFilter] = (),
) -> ConfigService:
    """
    Create a config service.

    Args:
        properties: A ClientConfig, a mapping of options (serverAddr,
            namespace, encode, ...), or the path of a YAML file
        transport: Transport to use instead of HTTP
        filters: Content filters, applied in ascending order

    Raises:
        ConfigError: Options do not form a usable configuration
    """
    if isinstance(properties, ClientConfig):
        config = properties
    elif isinstance(properties, (str, Path)):
        config = load_client_config_file(properties)
    else:
        config = load_client_config(dict(properties))

    return ConfigService(config, transport=transport, filters=filters)
