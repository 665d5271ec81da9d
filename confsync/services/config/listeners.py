"""
Listener Registry

Maps each config key to the listeners interested in it and delivers change
events to them.

- Each binding tracks the fingerprint it was last given, so it never sees
  the same content twice in a row
- Deliveries to one binding run one at a time in discovery order
- Bindings are independent: a slow or failing listener delays only itself
- Callbacks run on the listener's executor, else on a shared thread pool;
  coroutine callbacks are awaited on the event loop
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from confsync.common.content import EMPTY_FINGERPRINT, fingerprint, truncate_content
from confsync.common.logging_setup import get_service_logger
from confsync.common.models import ConfigKey

from .change import ConfigChangeEvent, build_change_event

logger = get_service_logger("config.listeners")


# ============================================
# LISTENER CONTRACT
# ============================================

class Listener(ABC):
    """
    Receives the new content of a config item whenever it changes.

    Implementations must not assume any particular delivery thread.
    Override `executor` to choose where on_change runs.
    """

    @abstractmethod
    def on_change(self, content: str) -> Any:
        """Called with the new content ("" when the item was deleted)"""

    @property
    def executor(self) -> Executor | None:
        return None


class CallbackListener(Listener):
    """Wraps a plain callable (sync or async) as a Listener"""

    def __init__(self, callback: Callable[[str], Any], executor: Executor | None = None):
        self.callback = callback
        self._executor = executor

    def on_change(self, content: str) -> Any:
        return self.callback(content)

    @property
    def executor(self) -> Executor | None:
        return self._executor

    # Wrapping the same callable twice yields the same listener
    def __eq__(self, other: object) -> bool:
        if isinstance(other, CallbackListener):
            return self.callback == other.callback
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.callback)

    def __repr__(self) -> str:
        return f"CallbackListener({self.callback!r})"


class ConfigChangeListener(Listener):
    """
    Listener that also receives a per-property change event.

    The event is computed by diffing the previously delivered content with
    the new content, parsed by `config_type` (or the dataId extension).
    Events without items are not delivered.
    """

    config_type: str | None = None

    def on_change(self, content: str) -> Any:
        return None

    @abstractmethod
    def on_change_event(self, event: ConfigChangeEvent) -> Any:
        """Called with the properties that changed"""


def as_listener(listener: "Listener | Callable[[str], Any]") -> Listener:
    """Accept a Listener or a bare callable"""
    if isinstance(listener, Listener):
        return listener
    if callable(listener):
        return CallbackListener(listener)
    raise TypeError(f"listener must be a Listener or callable, got {type(listener).__name__}")


# ============================================
# BINDINGS
# ============================================

@dataclass(eq=False)
class ListenerBinding:
    """One listener registered against one key"""
    key: ConfigKey
    listener: Listener
    last_fingerprint: str = EMPTY_FINGERPRINT
    last_content: str | None = None
    # Fingerprint of the newest delivery queued but not yet finished
    pending_fingerprint: str | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def expected_fingerprint(self) -> str:
        """Fingerprint the listener will hold once queued deliveries finish"""
        if self.pending_fingerprint is not None:
            return self.pending_fingerprint
        return self.last_fingerprint


class ListenerRegistry:
    """
    Registry of listener bindings.

    All methods except drain/close are synchronous and must be called on the
    event loop thread. They only schedule deliveries, never wait for them.
    """

    def __init__(
        self,
        agent_name: str,
        executor: Executor | None = None,
        max_workers: int = 4,
        content_filter: Callable[[ConfigKey, str], str] | None = None,
    ):
        self.agent_name = agent_name
        self.max_workers = max_workers
        # Inbound filters, applied to content before a listener sees it
        self.content_filter = content_filter
        self._executor = executor
        self._owns_executor = executor is None

        self._bindings: dict[ConfigKey, list[ListenerBinding]] = {}
        # Newest content seen per key, offered to late registrations
        self._latest: dict[ConfigKey, str] = {}
        self._tasks: set[asyncio.Task] = set()

    def _get_executor(self) -> Executor:
        """Get or create the default delivery pool"""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="confsync-listener",
            )
            self._owns_executor = True
        return self._executor

    # ============================================
    # REGISTRATION
    # ============================================

    def add(self, key: ConfigKey, listener: Listener, seed: str | None = None) -> ListenerBinding:
        """
        Register a listener for a key. Idempotent per listener.

        Args:
            key: Config key
            listener: Listener to register
            seed: Content the caller already holds. The binding starts at its
                fingerprint, so only a later genuine change is delivered.
                Without a seed, the newest known content is delivered at once.

        Returns:
            The (new or existing) binding
        """
        bindings = self._bindings.setdefault(key, [])
        for binding in bindings:
            if binding.listener == listener:
                return binding

        binding = ListenerBinding(key=key, listener=listener)
        if seed is not None:
            binding.last_fingerprint = fingerprint(seed)
            binding.last_content = seed
        bindings.append(binding)

        logger.info(
            f"[{self.agent_name}] [add-listener] ok, key={key}, cnt={len(bindings)}",
            extra={"data_id": key.data_id, "group": key.group, "tenant": key.tenant},
        )

        latest = self._latest.get(key)
        if seed is None and latest is not None and fingerprint(latest) != binding.last_fingerprint:
            self._schedule(binding, latest)

        return binding

    def remove(self, key: ConfigKey, listener: Listener) -> bool:
        """
        Unregister a listener. Queued deliveries to it are dropped.

        Returns:
            True if the key has no listeners left
        """
        bindings = self._bindings.get(key)
        if not bindings:
            return True

        bindings[:] = [b for b in bindings if b.listener != listener]
        logger.info(
            f"[{self.agent_name}] [remove-listener] ok, key={key}, cnt={len(bindings)}",
            extra={"data_id": key.data_id, "group": key.group, "tenant": key.tenant},
        )

        if bindings:
            return False

        del self._bindings[key]
        self._latest.pop(key, None)
        return True

    def has_listeners(self, key: ConfigKey) -> bool:
        return bool(self._bindings.get(key))

    def bindings(self, key: ConfigKey) -> list[ListenerBinding]:
        return list(self._bindings.get(key, ()))

    def keys(self) -> list[ConfigKey]:
        return list(self._bindings)

    # ============================================
    # DELIVERY
    # ============================================

    def notify(self, key: ConfigKey, content: str | None) -> int:
        """
        Raise a change event for a key.

        Returns:
            Number of deliveries scheduled
        """
        text = content or ""
        self._latest[key] = text
        new_fingerprint = fingerprint(text)

        scheduled = 0
        for binding in self._bindings.get(key, ()):
            if binding.expected_fingerprint != new_fingerprint:
                self._schedule(binding, text)
                scheduled += 1
        return scheduled

    def redeliver_pending(self) -> int:
        """
        Offer the newest content again to bindings whose last delivery failed.

        Returns:
            Number of deliveries scheduled
        """
        scheduled = 0
        for key, bindings in self._bindings.items():
            latest = self._latest.get(key)
            if latest is None:
                continue
            latest_fingerprint = fingerprint(latest)
            for binding in bindings:
                if binding.pending_fingerprint is None and binding.last_fingerprint != latest_fingerprint:
                    logger.debug(f"[{self.agent_name}] retrying delivery to {binding.listener!r} for {key}")
                    self._schedule(binding, latest)
                    scheduled += 1
        return scheduled

    def _schedule(self, binding: ListenerBinding, content: str) -> None:
        binding.pending_fingerprint = fingerprint(content)
        task = asyncio.get_running_loop().create_task(self._deliver(binding, content))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, binding: ListenerBinding, content: str) -> None:
        """Deliver one content version to one binding"""
        new_fingerprint = fingerprint(content)

        # asyncio.Lock wakes waiters in FIFO order, so deliveries keep the
        # order they were scheduled in
        async with binding.lock:
            if binding not in self._bindings.get(binding.key, ()):
                return

            if binding.last_fingerprint == new_fingerprint:
                if binding.pending_fingerprint == new_fingerprint:
                    binding.pending_fingerprint = None
                return

            key = binding.key
            try:
                await self._invoke(binding, content)

            except Exception as e:
                logger.error(
                    f"[{self.agent_name}] [notify-error] dataId={key.data_id}, group={key.group}, "
                    f"tenant={key.tenant}, md5={new_fingerprint}, listener={binding.listener!r}, error={e}",
                    extra={"data_id": key.data_id, "group": key.group, "tenant": key.tenant},
                )
                if binding.pending_fingerprint == new_fingerprint:
                    binding.pending_fingerprint = None
                return

            binding.last_fingerprint = new_fingerprint
            binding.last_content = content
            if binding.pending_fingerprint == new_fingerprint:
                binding.pending_fingerprint = None

            logger.info(
                f"[{self.agent_name}] [notify-ok] dataId={key.data_id}, group={key.group}, "
                f"tenant={key.tenant}, md5={new_fingerprint}, listener={binding.listener!r}, "
                f"content={truncate_content(content)}"
            )

    def _filtered(self, key: ConfigKey, content: str | None) -> str | None:
        if content is None or self.content_filter is None:
            return content
        return self.content_filter(key, content)

    async def _invoke(self, binding: ListenerBinding, content: str) -> None:
        listener = binding.listener
        new_content = self._filtered(binding.key, content)
        await self._call(listener, listener.on_change, new_content)

        if isinstance(listener, ConfigChangeListener):
            old_content = self._filtered(binding.key, binding.last_content)
            event = build_change_event(binding.key, old_content, new_content, listener.config_type)
            if event:
                await self._call(listener, listener.on_change_event, event)

    async def _call(self, listener: Listener, func: Callable[[Any], Any], arg: Any) -> None:
        """Run a callback on the listener's executor, or await it if it is a coroutine"""
        if inspect.iscoroutinefunction(func):
            await func(arg)
            return

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(listener.executor or self._get_executor(), func, arg)
        if inspect.isawaitable(result):
            await result

    # ============================================
    # LIFECYCLE
    # ============================================

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Finish in-flight deliveries, drop all bindings, stop the default pool"""
        await self.drain()
        self._bindings.clear()
        self._latest.clear()
        if self._executor is not None and self._owns_executor:
            self._executor.shutdown(wait=False)
            self._executor = None
