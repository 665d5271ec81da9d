"""Tests for the content filter chain."""

import pytest

from confsync.common.exceptions import ContentRejectedError, ParameterError
from confsync.common.models import ConfigKey
from confsync.services.config.filters import ConfigFilter, FilterChain

KEY = ConfigKey("app.properties")


class Suffix(ConfigFilter):
    def __init__(self, suffix: str, order: int = 0):
        self.suffix = suffix
        self.order = order

    def filter_outbound(self, key: ConfigKey, content: str) -> str:
        return content + self.suffix

    def filter_inbound(self, key: ConfigKey, content: str) -> str:
        return content + self.suffix.upper()


class RejectSecrets(ConfigFilter):
    def filter_outbound(self, key: ConfigKey, content: str) -> str:
        if "password" in content:
            raise ContentRejectedError("plain-text password")
        return content


class TestFilterChain:
    def test_empty_chain_passes_through(self) -> None:
        chain = FilterChain()
        assert len(chain) == 0
        assert chain.outbound(KEY, "a=1") == "a=1"
        assert chain.inbound(KEY, None) == ""

    def test_runs_in_ascending_order(self) -> None:
        chain = FilterChain([Suffix("-b", order=2), Suffix("-a", order=1)])
        assert chain.outbound(KEY, "x") == "x-a-b"
        assert chain.inbound(KEY, "x") == "x-A-B"

    def test_equal_order_keeps_registration_order(self) -> None:
        chain = FilterChain([Suffix("-1"), Suffix("-2"), Suffix("-3")])
        assert chain.outbound(KEY, "") == "-1-2-3"

    def test_base_filter_is_pass_through(self) -> None:
        class Noop(ConfigFilter):
            pass

        chain = FilterChain([Noop()])
        assert chain.outbound(KEY, "a") == "a"
        assert chain.inbound(KEY, "a") == "a"

    def test_rejection_names_the_filter(self) -> None:
        chain = FilterChain([Suffix("-a"), RejectSecrets()])
        with pytest.raises(ContentRejectedError) as exc_info:
            chain.outbound(KEY, "password=1")
        assert exc_info.value.filter_name == "RejectSecrets"
        assert isinstance(exc_info.value, ParameterError)
        assert exc_info.value.field == "content"
