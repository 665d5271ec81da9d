"""
Configuration Sync

Change-detection poller. One long-lived task that keeps a long poll open
against the server for every watched key and refreshes the keys the server
reports as changed.

Each cycle:
1. Checks operator failover files for every watched key
2. Sends each batch of keys with its last known fingerprint (the cursor);
   the server holds the request until something changes or the hold expires
3. Fetches full content for changed keys, updates cursor and snapshot,
   and raises change events into the listener registry

On network failure the poller backs off exponentially and reports the
server DOWN until a cycle succeeds again.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator
from urllib.parse import unquote_plus

from confsync.common.config import ClientConfig
from confsync.common.content import EMPTY_FINGERPRINT, fingerprint, truncate_content
from confsync.common.exceptions import AccessDenied, ConfSyncError, NetworkFailure, ServerError
from confsync.common.logging_setup import get_service_logger
from confsync.common.models import ConfigKey, ServerStatus
from confsync.services.transport.base import (
    CONFIG_PATH,
    HTTP_CONFLICT,
    HTTP_FORBIDDEN,
    HTTP_NOT_FOUND,
    HTTP_OK,
    LISTENER_PATH,
    Transport,
)

from .cache import LocalConfigCache
from .listeners import ListenerRegistry

logger = get_service_logger("config.sync")

WORD_SEPARATOR = "\x02"
LINE_SEPARATOR = "\x01"

PROBE_PARAM = "Listening-Configs"
LONG_POLL_TIMEOUT_HEADER = "Long-Pulling-Timeout"
NO_HANGUP_HEADER = "Long-Pulling-Timeout-No-Hangup"


# ============================================
# WIRE FORMAT
# ============================================

def build_probe(items: list["CacheItem"]) -> str:
    """
    Build the long-poll probe for a batch.

    One line per key: dataId ^B group ^B md5 [^B tenant] ^A
    """
    parts = []
    for item in items:
        key = item.key
        parts.append(key.data_id)
        parts.append(WORD_SEPARATOR)
        parts.append(key.group)
        parts.append(WORD_SEPARATOR)
        if key.tenant:
            parts.append(item.fingerprint)
            parts.append(WORD_SEPARATOR)
            parts.append(key.tenant)
        else:
            parts.append(item.fingerprint)
        parts.append(LINE_SEPARATOR)
    return "".join(parts)


def parse_changed_keys(response: str | None) -> list[ConfigKey]:
    """
    Parse a long-poll answer into the keys the server reports as changed.

    Lines that are not dataId ^B group [^B tenant] are logged and skipped.
    """
    if not response:
        return []

    decoded = unquote_plus(response)
    changed = []
    for line in decoded.split(LINE_SEPARATOR):
        if not line.strip():
            continue
        fields = line.split(WORD_SEPARATOR)
        if len(fields) == 2:
            changed.append(ConfigKey(data_id=fields[0], group=fields[1]))
        elif len(fields) == 3:
            changed.append(ConfigKey(data_id=fields[0], group=fields[1], tenant=fields[2]))
        else:
            logger.error(f"[polling-resp] invalid line in long-poll answer: {line!r}")
    return changed


# ============================================
# STATE
# ============================================

@dataclass
class CacheItem:
    """Per-key watch state. `fingerprint` is the poll cursor."""
    key: ConfigKey
    content: str = ""
    fingerprint: str = EMPTY_FINGERPRINT
    # True until the server has answered a poll that included this key
    is_initializing: bool = True
    # Served from the failover file instead of the server
    use_local: bool = False
    local_version: float | None = None


@dataclass
class _KeyLock:
    """Per-key lock plus the number of tasks holding or waiting for it"""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass
class CycleReport:
    """Outcome of one poll cycle"""
    changed: list[ConfigKey] = field(default_factory=list)
    failed: list[ConfigKey] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConfigSync:
    """
    Change-detection poller.

    The watch set is only mutated on the event loop thread. Fetch, snapshot
    write and cursor update for one key run under that key's lock.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Transport,
        cache: LocalConfigCache,
        registry: ListenerRegistry,
    ):
        self.config = config
        self.transport = transport
        self.cache = cache
        self.registry = registry
        self.agent_name = transport.name

        self._items: dict[ConfigKey, CacheItem] = {}
        self._locks: dict[ConfigKey, _KeyLock] = {}

        self._status = ServerStatus.UP
        self._consecutive_failures = 0

        self._running = False
        self._task: asyncio.Task | None = None
        self._wakeup = asyncio.Event()
        self._background: set[asyncio.Task] = set()

    # ============================================
    # WATCH SET
    # ============================================

    @asynccontextmanager
    async def key_lock(self, key: ConfigKey) -> AsyncIterator[None]:
        """
        Hold the lock serializing fetch + snapshot write + cursor update for a key.

        The lock is shared by every holder and waiter of the key and is
        dropped once the last of them leaves, so reading many distinct keys
        does not accumulate locks.
        """
        entry = self._locks.get(key)
        if entry is None:
            entry = _KeyLock()
            self._locks[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(key) is entry:
                del self._locks[key]

    def watch(self, key: ConfigKey) -> CacheItem:
        """
        Start watching a key. Idempotent.

        A new key is seeded from the failover record, else the snapshot
        record, and listeners are offered that content at once.
        """
        item = self._items.get(key)
        if item is not None:
            return item

        item = CacheItem(key=key)
        failover = self.cache.get_failover(key)
        if failover is not None:
            item.use_local = True
            item.local_version = self.cache.failover_version(key)
            item.content = failover
            item.fingerprint = fingerprint(failover)
        else:
            snapshot = self.cache.get_snapshot(key)
            if snapshot is not None:
                item.content = snapshot
                item.fingerprint = fingerprint(snapshot)

        self._items[key] = item
        logger.info(
            f"[{self.agent_name}] [subscribe] {key}, md5={item.fingerprint or '-'}, local={item.use_local}",
            extra={"data_id": key.data_id, "group": key.group, "tenant": key.tenant},
        )

        if item.content:
            self.registry.notify(key, item.content)

        if self.config.enable_remote_sync_config and not item.use_local and self._running:
            self._spawn(self._refresh(key))

        self._wakeup.set()
        return item

    def unwatch(self, key: ConfigKey) -> None:
        """Stop including a key in future polls. An in-flight cycle is not interrupted."""
        item = self._items.pop(key, None)
        if item is None:
            return
        logger.info(f"[{self.agent_name}] [unsubscribe] {key}")

    def is_watched(self, key: ConfigKey) -> bool:
        return key in self._items

    def get_item(self, key: ConfigKey) -> CacheItem | None:
        return self._items.get(key)

    def watched_keys(self) -> list[ConfigKey]:
        return list(self._items)

    def clear(self) -> None:
        """Forget every watched key. Used on shutdown, after the loop has stopped."""
        if self._items:
            logger.info(f"[{self.agent_name}] [unsubscribe] {len(self._items)} keys")
        self._items.clear()
        self._consecutive_failures = 0

    def reset_cursor(self, key: ConfigKey) -> None:
        """
        Forget what the client knows about a key, after it was removed.

        Caller must hold the key lock. The next poll treats any content as new.
        """
        item = self._items.get(key)
        if item is None:
            return
        item.fingerprint = EMPTY_FINGERPRINT
        item.content = ""
        item.is_initializing = True
        self._wakeup.set()

    # ============================================
    # HEALTH
    # ============================================

    @property
    def server_status(self) -> ServerStatus:
        return self._status

    def is_healthy(self) -> bool:
        return self._status == ServerStatus.UP

    def _set_status(self, status: ServerStatus) -> None:
        if status != self._status:
            log_method = logger.info if status == ServerStatus.UP else logger.warning
            log_method(
                f"[{self.agent_name}] server status {self._status.value} -> {status.value}",
                extra={"server_status": status.value},
            )
        self._status = status

    def backoff_delay(self, failures: int) -> float:
        """Exponential backoff with cap: base * 2^(n-1), at most retry_max_s"""
        if failures <= 0:
            return 0.0
        return min(self.config.retry_base_s * (2 ** (failures - 1)), self.config.retry_max_s)

    # ============================================
    # CONTENT FETCH
    # ============================================

    async def get_server_config(self, key: ConfigKey, timeout: float) -> str | None:
        """
        Fetch current content of a key from the server and update the snapshot.

        Args:
            key: Config key
            timeout: Seconds, covering the wait for the key lock and the request

        Returns:
            Content, or None if the server has no value

        Raises:
            NetworkFailure: Server unreachable or timeout expired
            AccessDenied: Server answered 403
            ServerError: Any other non-200, non-404 answer
        """
        try:
            return await asyncio.wait_for(self._locked_fetch(key, timeout), timeout)
        except asyncio.TimeoutError:
            raise NetworkFailure(f"no answer for {key} within {timeout}s", server=self.agent_name)

    async def _locked_fetch(self, key: ConfigKey, timeout: float) -> str | None:
        async with self.key_lock(key):
            return await self._fetch(key, timeout)

    async def _fetch(self, key: ConfigKey, timeout: float) -> str | None:
        """Fetch without taking the key lock. Snapshot is updated on 200 and 404."""
        params = {"dataId": key.data_id, "group": key.group}
        if key.tenant:
            params["tenant"] = key.tenant

        result = await self.transport.get(CONFIG_PATH, None, params, self.config.encode, timeout)

        if result.code == HTTP_OK:
            self.cache.save_snapshot(key, result.content)
            return result.content

        if result.code == HTTP_NOT_FOUND:
            self.cache.save_snapshot(key, None)
            return None

        if result.code == HTTP_CONFLICT:
            logger.error(
                f"[{self.agent_name}] [sub-server-error] get server config being modified concurrently, "
                f"dataId={key.data_id}, group={key.group}, tenant={key.tenant}"
            )
            raise ServerError(result.code, "config being modified concurrently")

        if result.code == HTTP_FORBIDDEN:
            logger.error(
                f"[{self.agent_name}] [sub-server-error] no right, dataId={key.data_id}, "
                f"group={key.group}, tenant={key.tenant}"
            )
            raise AccessDenied(result.content or "no right")

        logger.error(
            f"[{self.agent_name}] [sub-server-error] dataId={key.data_id}, group={key.group}, "
            f"tenant={key.tenant}, code={result.code}"
        )
        raise ServerError(result.code, result.content)

    async def _refresh(self, key: ConfigKey) -> bool:
        """
        Re-fetch a changed key and raise a change event.

        Returns:
            True if the content differs from what the client held
        """
        async with self.key_lock(key):
            item = self._items.get(key)
            if item is None or item.use_local:
                return False

            try:
                content = await self._fetch(key, self.config.poll_fetch_timeout_s)
            except ConfSyncError as e:
                logger.error(f"[{self.agent_name}] [get-update] refresh data error, key={key}: {e.message}")
                return False

            # Unwatched or switched to failover while the fetch was in flight
            if self._items.get(key) is not item or item.use_local:
                return False

            text = content or ""
            new_fingerprint = fingerprint(text)
            if new_fingerprint == item.fingerprint:
                return False

            item.content = text
            item.fingerprint = new_fingerprint
            logger.info(
                f"[{self.agent_name}] [data-received] dataId={key.data_id}, group={key.group}, "
                f"tenant={key.tenant}, md5={new_fingerprint}, content={truncate_content(text)}",
                extra={"data_id": key.data_id, "group": key.group, "tenant": key.tenant},
            )
            self.registry.notify(key, text)
            return True

    # ============================================
    # POLL CYCLE
    # ============================================

    def _check_failover(self, report: CycleReport) -> None:
        """Pick up failover files that appeared, changed or disappeared"""
        for key, item in list(self._items.items()):
            version = self.cache.failover_version(key)

            if version is None:
                if item.use_local:
                    item.use_local = False
                    item.local_version = None
                    item.is_initializing = True
                    logger.warning(f"[{self.agent_name}] [failover-change] failover file deleted, {key}")
                continue

            if item.use_local and version == item.local_version:
                continue

            content = self.cache.get_failover(key)
            if content is None:
                continue

            appeared = not item.use_local
            item.use_local = True
            item.local_version = version
            logger.warning(
                f"[{self.agent_name}] [failover-change] failover file "
                f"{'created' if appeared else 'changed'}, {key}, content={truncate_content(content)}"
            )

            new_fingerprint = fingerprint(content)
            if new_fingerprint != item.fingerprint:
                item.content = content
                item.fingerprint = new_fingerprint
                self.registry.notify(key, content)
                report.changed.append(key)

    async def _long_poll(self, batch: list[CacheItem]) -> list[ConfigKey]:
        """
        Hold one long poll for a batch.

        Raises:
            NetworkFailure: Server unreachable
            ServerError: Server answered anything but 200
        """
        hold_ms = self.config.long_poll_timeout_ms
        headers = {LONG_POLL_TIMEOUT_HEADER: str(hold_ms)}
        if any(item.is_initializing for item in batch):
            # New keys must not wait for the hold time
            headers[NO_HANGUP_HEADER] = "true"

        result = await self.transport.post(
            LISTENER_PATH,
            headers,
            {PROBE_PARAM: build_probe(batch)},
            self.config.encode,
            self.config.read_timeout_s,
        )

        if result.code != HTTP_OK:
            if result.code == HTTP_FORBIDDEN:
                logger.error(f"[{self.agent_name}] [check-update] no right to poll")
            raise ServerError(result.code, result.content)

        return parse_changed_keys(result.content)

    async def run_cycle(self) -> CycleReport:
        """
        Run one poll cycle.

        Never raises for network or server failures; they are carried in the
        report and reflected in server status.
        """
        report = CycleReport()
        self._check_failover(report)

        polled = [item for item in self._items.values() if not item.use_local]
        if not polled:
            return report

        size = self.config.keys_per_poll
        batches = [polled[i:i + size] for i in range(0, len(polled), size)]

        results = await asyncio.gather(
            *(self._long_poll(batch) for batch in batches),
            return_exceptions=True,
        )

        changed_keys: list[ConfigKey] = []
        for batch, result in zip(batches, results):
            if isinstance(result, Exception):
                report.error = result
                report.failed.extend(item.key for item in batch)
                message = result.message if isinstance(result, ConfSyncError) else str(result)
                logger.error(f"[{self.agent_name}] [check-update] long poll failed: {message}")
                continue
            if isinstance(result, BaseException):
                raise result

            for item in batch:
                item.is_initializing = False
            for key in result:
                if key in self._items and key not in changed_keys:
                    changed_keys.append(key)

        if changed_keys:
            logger.info(f"[{self.agent_name}] [polling-resp] config changed: {[str(k) for k in changed_keys]}")
            refreshed = await asyncio.gather(*(self._refresh(key) for key in changed_keys))
            report.changed.extend(key for key, changed in zip(changed_keys, refreshed) if changed)

        if report.error is None:
            self._set_status(ServerStatus.UP)
            self.registry.redeliver_pending()
        elif isinstance(report.error, NetworkFailure):
            self._set_status(ServerStatus.DOWN)

        return report

    # ============================================
    # LIFECYCLE
    # ============================================

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def start(self) -> None:
        """Start the poll loop"""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"[{self.agent_name}] config poller started")

    async def stop(self) -> None:
        """Stop the poll loop. An in-flight long poll is cancelled."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        logger.info(f"[{self.agent_name}] config poller stopped")

    async def _poll_loop(self) -> None:
        """Perpetual cycle loop with bounded sleep between iterations"""
        while self._running:
            if not self._items:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            try:
                report = await self.run_cycle()
                failed = not report.ok
            except Exception as e:
                logger.error(f"[{self.agent_name}] [check-update] unexpected error in poll cycle: {e}")
                failed = True

            if failed:
                self._consecutive_failures += 1
                delay = self.backoff_delay(self._consecutive_failures)
                logger.warning(
                    f"[{self.agent_name}] backing off {delay:.1f}s "
                    f"(failure {self._consecutive_failures})"
                )
            else:
                self._consecutive_failures = 0
                delay = self.config.min_cycle_interval_s

            await asyncio.sleep(delay)
