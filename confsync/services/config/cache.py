"""
Configuration Cache

Local file caching for offline operation.

Two tiers, one plain-text file per key:
- failover: operator-managed overrides, never written by the client
- snapshot: last content the client fetched live, survives restarts

Layout under <cache_dir>/<agent name>_nacos/:
    data/config-data/<group>/<dataId>
    data/config-data-tenant/<tenant>/<group>/<dataId>
    snapshot/<group>/<dataId>
    snapshot-tenant/<tenant>/<group>/<dataId>
"""

from pathlib import Path

from confsync.common.files import delete_file, file_version, read_text, write_text_atomic
from confsync.common.logging_setup import get_service_logger
from confsync.common.models import CacheEntry, CacheTier, ConfigContent, ConfigKey

logger = get_service_logger("config.cache")


class LocalConfigCache:
    """
    Local configuration cache.

    A missing record is a normal miss (empty content), never an error.
    """

    def __init__(
        self,
        agent_name: str,
        cache_dir: Path,
        encoding: str = "utf-8",
        snapshot_enabled: bool = True,
    ):
        self.agent_name = agent_name
        self.root = Path(cache_dir).expanduser() / f"{agent_name}_nacos"
        self.encoding = encoding
        self.snapshot_enabled = snapshot_enabled

    # ============================================
    # PATHS
    # ============================================

    def failover_path(self, key: ConfigKey) -> Path:
        """Path of the failover record for a key"""
        base = self.root / "data"
        if key.tenant:
            return base / "config-data-tenant" / key.tenant / key.group / key.data_id
        return base / "config-data" / key.group / key.data_id

    def snapshot_path(self, key: ConfigKey) -> Path:
        """Path of the snapshot record for a key"""
        if key.tenant:
            return self.root / "snapshot-tenant" / key.tenant / key.group / key.data_id
        return self.root / "snapshot" / key.group / key.data_id

    # ============================================
    # READS
    # ============================================

    def read(self, key: ConfigKey, tier: CacheTier) -> CacheEntry | None:
        """
        Read one record.

        Returns:
            CacheEntry, or None on a miss (including unreadable files)
        """
        path = self.failover_path(key) if tier == CacheTier.FAILOVER else self.snapshot_path(key)

        try:
            content = read_text(path, self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"[{self.agent_name}] failed to read {tier.value} record {path}: {e}")
            return None

        if content is None:
            return None

        return CacheEntry(key=key, content=ConfigContent.of(content), tier=tier)

    def get_failover(self, key: ConfigKey) -> str | None:
        """Failover content, or None if no override exists"""
        entry = self.read(key, CacheTier.FAILOVER)
        return entry.content.content if entry else None

    def failover_version(self, key: ConfigKey) -> float | None:
        """mtime of the failover record, or None if it does not exist"""
        return file_version(self.failover_path(key))

    def get_snapshot(self, key: ConfigKey) -> str | None:
        """Snapshot content, or None on a miss"""
        if not self.snapshot_enabled:
            return None
        entry = self.read(key, CacheTier.SNAPSHOT)
        return entry.content.content if entry else None

    # ============================================
    # WRITES (snapshot tier only)
    # ============================================

    def save_snapshot(self, key: ConfigKey, content: str | None) -> None:
        """
        Save content fetched live.

        None removes the record (the server reported no value).
        Write failures are logged: a snapshot is an optimization and must
        never fail the read that produced it.
        """
        if not self.snapshot_enabled:
            return

        path = self.snapshot_path(key)
        try:
            if content is None:
                if delete_file(path):
                    logger.debug(f"[{self.agent_name}] snapshot removed: {key}")
                return

            write_text_atomic(path, content, self.encoding)
            logger.debug(f"[{self.agent_name}] snapshot saved: {key}")

        except OSError as e:
            logger.error(f"[{self.agent_name}] failed to save snapshot {path}: {e}")

    def clean_snapshots(self) -> int:
        """
        Delete every snapshot record of this client.

        Returns:
            Number of records deleted
        """
        removed = 0
        for tier_dir in (self.root / "snapshot", self.root / "snapshot-tenant"):
            if not tier_dir.exists():
                continue
            for path in tier_dir.rglob("*"):
                if path.is_file() and delete_file(path):
                    removed += 1
        logger.info(f"[{self.agent_name}] cleaned {removed} snapshot records")
        return removed
