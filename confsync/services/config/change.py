"""
Config Change Parsing

Turns an old/new content pair into per-property change items, so listeners
can react to "timeout changed from 3 to 5" instead of re-parsing the whole
document.

Supported content types, picked from the dataId extension:
- properties: Java-style key=value / key: value lines
- yaml / yml: nested mappings flattened to dotted keys
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import yaml

from confsync.common.logging_setup import get_service_logger
from confsync.common.models import ConfigKey

logger = get_service_logger("config.change")


class PropertyChangeType(str, Enum):
    """Kind of change for one property"""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class ConfigChangeItem:
    """One changed property"""
    key: str
    old_value: Any
    new_value: Any
    type: PropertyChangeType


@dataclass(frozen=True)
class ConfigChangeEvent:
    """All property changes between two versions of one config item"""
    config_key: ConfigKey
    items: dict[str, ConfigChangeItem] = field(default_factory=dict)

    def get(self, key: str) -> ConfigChangeItem | None:
        return self.items.get(key)

    def __bool__(self) -> bool:
        return bool(self.items)


def config_type_for(data_id: str) -> str | None:
    """Content type inferred from a dataId extension"""
    _, dot, ext = data_id.rpartition(".")
    if not dot:
        return None
    ext = ext.lower()
    if ext == "properties":
        return "properties"
    if ext in ("yaml", "yml"):
        return "yaml"
    return None


def parse_properties(content: str | None) -> dict[str, str]:
    """
    Parse Java-style properties.

    Handles '#'/'!' comments, '=' or ':' separators and trailing-backslash
    line continuations. Unicode escapes are not interpreted.
    """
    result: dict[str, str] = {}
    if not content:
        return result

    logical_lines: list[str] = []
    pending = ""
    for raw_line in content.splitlines():
        line = raw_line.strip() if not pending else raw_line.lstrip()
        if not pending and (not line or line[0] in "#!"):
            continue
        if line.endswith("\\") and not line.endswith("\\\\"):
            pending += line[:-1]
            continue
        logical_lines.append(pending + line)
        pending = ""
    if pending:
        logical_lines.append(pending)

    for line in logical_lines:
        # First unescaped '=' or ':' separates key from value
        split_at = -1
        for index, char in enumerate(line):
            if char in "=:" and (index == 0 or line[index - 1] != "\\"):
                split_at = index
                break
        if split_at == -1:
            key, value = line, ""
        else:
            key, value = line[:split_at], line[split_at + 1:]
        result[key.strip()] = value.strip()

    return result


def _flatten(data: Any, prefix: str, out: dict[str, Any]) -> None:
    if isinstance(data, dict):
        for key, value in data.items():
            child = f"{prefix}.{key}" if prefix else str(key)
            _flatten(value, child, out)
    elif isinstance(data, list):
        for index, value in enumerate(data):
            _flatten(value, f"{prefix}[{index}]", out)
    else:
        out[prefix] = data


def parse_yaml(content: str | None) -> dict[str, Any]:
    """
    Parse YAML into a flat dict of dotted keys.

    Raises:
        yaml.YAMLError: Content is not valid YAML
    """
    if not content or not content.strip():
        return {}
    data = yaml.safe_load(content)
    out: dict[str, Any] = {}
    if isinstance(data, (dict, list)):
        _flatten(data, "", out)
    elif data is not None:
        out[""] = data
    return out


_PARSERS = {
    "properties": parse_properties,
    "yaml": parse_yaml,
}


def diff_properties(old: dict[str, Any], new: dict[str, Any]) -> dict[str, ConfigChangeItem]:
    """Compare two flat property maps"""
    items: dict[str, ConfigChangeItem] = {}

    for key, old_value in old.items():
        if key not in new:
            items[key] = ConfigChangeItem(key, old_value, None, PropertyChangeType.DELETED)
        elif new[key] != old_value:
            items[key] = ConfigChangeItem(key, old_value, new[key], PropertyChangeType.MODIFIED)

    for key, new_value in new.items():
        if key not in old:
            items[key] = ConfigChangeItem(key, None, new_value, PropertyChangeType.ADDED)

    return items


def build_change_event(
    config_key: ConfigKey,
    old_content: str | None,
    new_content: str | None,
    config_type: str | None = None,
) -> ConfigChangeEvent | None:
    """
    Diff two versions of a config item.

    Args:
        config_key: Item the contents belong to
        old_content: Previously delivered content (None on first delivery)
        new_content: Newly delivered content
        config_type: "properties" or "yaml"; inferred from the dataId if None

    Returns:
        ConfigChangeEvent, or None if the type is unsupported or a side
        fails to parse
    """
    config_type = config_type or config_type_for(config_key.data_id)
    parser = _PARSERS.get(config_type or "")
    if parser is None:
        return None

    try:
        old_map = parser(old_content)
        new_map = parser(new_content)
    except yaml.YAMLError as e:
        logger.warning(f"Cannot diff {config_key}: invalid {config_type} content: {e}")
        return None

    return ConfigChangeEvent(config_key=config_key, items=diff_properties(old_map, new_map))
