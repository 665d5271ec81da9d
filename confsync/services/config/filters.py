"""
Content Filters

An explicit, ordered chain of transform steps applied to content on its way
out (publish) and on its way in (getConfig). The chain is handed to the
ConfigService at construction; there is no global filter registry.

A filter modifies content by returning a new string and rejects it by
raising ContentRejectedError.
"""

from abc import ABC
from typing import Iterable

from confsync.common.exceptions import ContentRejectedError
from confsync.common.logging_setup import get_service_logger
from confsync.common.models import ConfigKey

logger = get_service_logger("config.filters")


class ConfigFilter(ABC):
    """
    One step of the filter chain.

    Lower `order` runs first. Both hooks default to pass-through so a
    filter only overrides the direction it cares about.
    """

    order: int = 0

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def filter_outbound(self, key: ConfigKey, content: str) -> str:
        """Transform content before it is published"""
        return content

    def filter_inbound(self, key: ConfigKey, content: str) -> str:
        """Transform content before it is returned to the caller"""
        return content


class FilterChain:
    """Ordered, immutable list of filters"""

    def __init__(self, filters: Iterable[ConfigFilter] = ()):
        # sorted() is stable: equal orders keep registration order
        self._filters: tuple[ConfigFilter, ...] = tuple(sorted(filters, key=lambda f: f.order))

    @property
    def filters(self) -> tuple[ConfigFilter, ...]:
        return self._filters

    def __len__(self) -> int:
        return len(self._filters)

    def outbound(self, key: ConfigKey, content: str) -> str:
        """Run every filter's outbound hook in order"""
        for config_filter in self._filters:
            try:
                content = config_filter.filter_outbound(key, content)
            except ContentRejectedError as e:
                self._log_rejection(e, config_filter, key, "outbound")
                raise
        return content

    def inbound(self, key: ConfigKey, content: str | None) -> str:
        """Run every filter's inbound hook in order. None is treated as empty."""
        text = content or ""
        for config_filter in self._filters:
            try:
                text = config_filter.filter_inbound(key, text)
            except ContentRejectedError as e:
                self._log_rejection(e, config_filter, key, "inbound")
                raise
        return text

    def _log_rejection(
        self,
        error: ContentRejectedError,
        config_filter: ConfigFilter,
        key: ConfigKey,
        direction: str,
    ) -> None:
        if error.filter_name is None:
            error.filter_name = config_filter.name
        logger.warning(
            f"Filter {config_filter.name} rejected {direction} content for {key}: {error.message}",
            extra={"filter": config_filter.name, "direction": direction},
        )
