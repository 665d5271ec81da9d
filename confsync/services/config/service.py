"""
Config Service

Public face of the client: get, publish, remove and listen.

Reads resolve through three tiers:
1. failover file (operator override)
2. live fetch from the server (snapshot updated on success)
3. snapshot file (last value fetched live) when the server is unreachable

Only ParameterError and AccessDenied are raised to callers. Network and
server failures fall back to cached content on reads and return False on
writes.
"""

from concurrent.futures import Executor
from typing import Any, Callable, Iterable

from confsync.common.config import ClientConfig
from confsync.common.exceptions import AccessDenied, ConfSyncError, NetworkFailure
from confsync.common.logging_setup import get_service_logger, log_config_read, log_config_write
from confsync.common.models import ConfigKey, ServerStatus, normalize_group
from confsync.services.transport.base import CONFIG_PATH, HTTP_FORBIDDEN, Transport
from confsync.services.transport.http import HttpTransport

from .cache import LocalConfigCache
from .filters import ConfigFilter, FilterChain
from .listeners import Listener, ListenerRegistry, as_listener
from .sync import ConfigSync
from .validator import ConfigValidator

logger = get_service_logger("config.service")

DEFAULT_GET_TIMEOUT_S = 3.0

# Publish and remove are never held by the server
WRITE_TIMEOUT_S = 3.0

ListenerLike = Listener | Callable[[str], Any]


class ConfigService:
    """
    Configuration client for one server cluster and namespace.

    Use as an async context manager, or call start()/shutdown(). The poller
    also starts on the first listener registration.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Transport | None = None,
        filters: FilterChain | Iterable[ConfigFilter] = (),
        listener_executor: Executor | None = None,
    ):
        self.config = config
        self.namespace = config.namespace
        self.transport = transport if transport is not None else HttpTransport(config)
        self.agent_name = self.transport.name

        self.cache = LocalConfigCache(
            agent_name=self.agent_name,
            cache_dir=config.cache_dir,
            encoding=config.encode,
            snapshot_enabled=config.snapshot_enabled,
        )
        self.validator = ConfigValidator()
        self.validator.validate_tenant(self.namespace)
        self.filters = filters if isinstance(filters, FilterChain) else FilterChain(filters)
        self.registry = ListenerRegistry(
            agent_name=self.agent_name,
            executor=listener_executor,
            max_workers=config.listener_workers,
            content_filter=self.filters.inbound,
        )
        self.sync = ConfigSync(config, self.transport, self.cache, self.registry)

        self._started = False

    # ============================================
    # LIFECYCLE
    # ============================================

    async def start(self) -> None:
        """Start the change poller"""
        if self._started:
            return
        self._started = True
        await self.sync.start()
        logger.info(
            f"[{self.agent_name}] config service started (namespace: {self.namespace or 'public'})",
            extra={"namespace": self.namespace},
        )

    async def shutdown(self) -> None:
        """Stop polling, finish in-flight deliveries, release the transport"""
        logger.info(f"[{self.agent_name}] shutting down config service")
        await self.sync.stop()
        await self.registry.close()
        self.sync.clear()
        await self.transport.close()
        self._started = False
        logger.info(f"[{self.agent_name}] config service stopped")

    async def __aenter__(self) -> "ConfigService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ============================================
    # READS
    # ============================================

    def _key(self, data_id: str | None, group: str | None) -> ConfigKey:
        """Normalize and validate a key before any I/O"""
        group = normalize_group(group)
        data_id = data_id.strip() if data_id else data_id
        self.validator.validate_key(data_id, group)
        return ConfigKey(data_id=data_id, group=group, tenant=self.namespace)

    async def get_config(self, data_id: str, group: str | None = None, timeout: float = DEFAULT_GET_TIMEOUT_S) -> str:
        """
        Get the content of a config item.

        Args:
            data_id: Config item name
            group: Group; blank means DEFAULT_GROUP
            timeout: Seconds allowed for the live fetch

        Returns:
            Content after inbound filters; "" when no tier has a value

        Raises:
            ParameterError: Invalid dataId or group
            AccessDenied: Server answered 403
        """
        key = self._key(data_id, group)
        content = await self._get_config_inner(key, timeout)
        return self.filters.inbound(key, content)

    async def _get_config_inner(self, key: ConfigKey, timeout: float) -> str:
        # 1. Failover file wins over everything
        content = self.cache.get_failover(key)
        if content is not None:
            log_config_read(logger, self.agent_name, "failover", key.data_id, key.group, key.tenant, content)
            return content

        # 2. Live fetch
        try:
            content = await self.sync.get_server_config(key, timeout)
            log_config_read(logger, self.agent_name, "live", key.data_id, key.group, key.tenant, content)
            return content or ""

        except AccessDenied:
            raise

        except ConfSyncError as e:
            logger.warning(
                f"[{self.agent_name}] [get-config] get from server error, dataId={key.data_id}, "
                f"group={key.group}, tenant={key.tenant}, msg={e.message}",
                extra={"data_id": key.data_id, "group": key.group, "tenant": key.tenant},
            )

        # 3. Snapshot of the last live value
        content = self.cache.get_snapshot(key)
        if content is not None:
            log_config_read(logger, self.agent_name, "snapshot", key.data_id, key.group, key.tenant, content)
            return content

        logger.warning(
            f"[{self.agent_name}] [get-config] no value in any tier, dataId={key.data_id}, "
            f"group={key.group}, tenant={key.tenant}"
        )
        return ""

    async def get_config_and_sign_listener(
        self,
        data_id: str,
        group: str | None,
        timeout: float,
        listener: ListenerLike,
    ) -> str:
        """
        Get content and register a listener seeded with it.

        The listener is only called on a change after the returned content.
        """
        key = self._key(data_id, group)
        listener = as_listener(listener)

        content = await self._get_config_inner(key, timeout)
        self.registry.add(key, listener, seed=content)
        await self.start()
        self.sync.watch(key)

        return self.filters.inbound(key, content)

    # ============================================
    # LISTENERS
    # ============================================

    async def add_listener(self, data_id: str, group: str | None, listener: ListenerLike) -> None:
        """
        Register a listener and make sure the key is polled.

        The listener receives the newest known content right away, then
        every change.
        """
        key = self._key(data_id, group)
        self.registry.add(key, as_listener(listener))
        await self.start()
        self.sync.watch(key)

    async def remove_listener(self, data_id: str, group: str | None, listener: ListenerLike) -> None:
        """Unregister a listener; the key stops being polled when none are left"""
        key = self._key(data_id, group)
        if self.registry.remove(key, as_listener(listener)):
            self.sync.unwatch(key)

    # ============================================
    # WRITES
    # ============================================

    async def publish_config(
        self,
        data_id: str,
        group: str | None,
        content: str,
        *,
        config_type: str | None = None,
        app_name: str | None = None,
        tag: str | None = None,
        beta_ips: str | None = None,
    ) -> bool:
        """
        Publish content for a config item.

        Returns:
            True only if the server answered 200

        Raises:
            ParameterError: Invalid key or blank content, or a filter rejected it
            AccessDenied: Server answered 403
        """
        group = normalize_group(group)
        data_id = data_id.strip() if data_id else data_id
        self.validator.validate_publish(data_id, group, content)
        key = ConfigKey(data_id=data_id, group=group, tenant=self.namespace)

        content = self.filters.outbound(key, content)

        params = {"dataId": key.data_id, "group": key.group, "content": content}
        if key.tenant:
            params["tenant"] = key.tenant
        if app_name:
            params["appName"] = app_name
        if tag:
            params["tag"] = tag
        if config_type:
            params["type"] = config_type

        headers = {"betaIps": beta_ips} if beta_ips else None

        return await self._write("publish-single", key, "post", headers, params)

    async def remove_config(self, data_id: str, group: str | None = None, *, tag: str | None = None) -> bool:
        """
        Delete a config item on the server.

        On success the local snapshot is removed and the poll cursor reset,
        so any content the server holds later is treated as new.

        Returns:
            True only if the server answered 200

        Raises:
            ParameterError: Invalid dataId or group
            AccessDenied: Server answered 403
        """
        key = self._key(data_id, group)

        params = {"dataId": key.data_id, "group": key.group}
        if key.tenant:
            params["tenant"] = key.tenant
        if tag:
            params["tag"] = tag

        removed = await self._write("remove", key, "delete", None, params)
        if not removed:
            return False

        async with self.sync.key_lock(key):
            self.cache.save_snapshot(key, None)
            self.sync.reset_cursor(key)

        if self.registry.has_listeners(key):
            self.registry.notify(key, "")

        return True

    async def _write(
        self,
        operation: str,
        key: ConfigKey,
        method: str,
        headers: dict[str, str] | None,
        params: dict[str, str],
    ) -> bool:
        """Send a publish/remove request and map the answer to True/False/AccessDenied"""
        send = self.transport.post if method == "post" else self.transport.delete

        try:
            result = await send(CONFIG_PATH, headers, params, self.config.encode, WRITE_TIMEOUT_S)

        except NetworkFailure as e:
            log_config_write(
                logger, self.agent_name, operation, key.data_id, key.group, key.tenant,
                status=None, detail=e.message, success=False,
            )
            return False

        if result.ok:
            log_config_write(logger, self.agent_name, operation, key.data_id, key.group, key.tenant, result.code)
            return True

        log_config_write(
            logger, self.agent_name, operation, key.data_id, key.group, key.tenant,
            status=result.code, detail=result.content, success=False,
        )

        if result.code == HTTP_FORBIDDEN:
            raise AccessDenied(result.content or "no right")

        return False

    # ============================================
    # STATUS
    # ============================================

    def get_server_status(self) -> ServerStatus:
        """UP while the poller reaches the server, DOWN after a network failure"""
        return self.sync.server_status
