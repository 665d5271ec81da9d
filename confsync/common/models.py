"""
Core Data Model

Identity of a configuration item, its content, cache tiers and server status.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from .content import fingerprint

DEFAULT_GROUP = "DEFAULT_GROUP"

# Letters, digits and _ - . : only
VALID_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-.:]+$")

# Would address a directory instead of a record in the cache tree
RESERVED_NAMES = frozenset({".", ".."})

MAX_TENANT_LENGTH = 128


def is_valid_name(value: str | None) -> bool:
    """Whether a dataId/group/tenant uses only the allowed alphabet and is not a bare dot name"""
    if not value or value in RESERVED_NAMES:
        return False
    return VALID_NAME_PATTERN.match(value) is not None


class CacheTier(str, Enum):
    """Local cache tiers"""
    FAILOVER = "failover"
    SNAPSHOT = "snapshot"


class ServerStatus(str, Enum):
    """Reachability of the configuration service as seen by the poller"""
    UP = "UP"
    DOWN = "DOWN"


def normalize_group(group: str | None) -> str:
    """Null/blank group resolves to DEFAULT_GROUP"""
    if group is None or not group.strip():
        return DEFAULT_GROUP
    return group.strip()


@dataclass(frozen=True)
class ConfigKey:
    """Identity tuple (dataId, group, tenant)"""
    data_id: str
    group: str = DEFAULT_GROUP
    tenant: str = ""

    @classmethod
    def of(cls, data_id: str, group: str | None = None, tenant: str | None = None) -> "ConfigKey":
        """Build a key with trimmed fields and the default group applied"""
        return cls(
            data_id=(data_id or "").strip(),
            group=normalize_group(group),
            tenant=(tenant or "").strip(),
        )

    @property
    def group_key(self) -> str:
        """Single-string form used in logs and lock tables"""
        if self.tenant:
            return f"{self.data_id}+{self.group}+{self.tenant}"
        return f"{self.data_id}+{self.group}"

    def __str__(self) -> str:
        return self.group_key


@dataclass(frozen=True)
class ConfigContent:
    """Raw text value plus its fingerprint"""
    content: str = ""
    fingerprint: str = field(default="")

    @classmethod
    def of(cls, content: str | None) -> "ConfigContent":
        text = content or ""
        return cls(content=text, fingerprint=fingerprint(text))

    @property
    def is_empty(self) -> bool:
        return not self.content


@dataclass(frozen=True)
class CacheEntry:
    """A locally persisted record for one key"""
    key: ConfigKey
    content: ConfigContent
    tier: CacheTier
