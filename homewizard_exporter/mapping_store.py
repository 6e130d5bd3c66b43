"""Field mapping document loader.

This module handles:
- Reading the mounted mapping document (YAML or JSON)
- Validating each rule and the uniqueness of source field keys
- Building the immutable MeasurementMapping used for one run

Document format:
    location: My Home
    measurements:
      - key: active_power_w
        metric: power_watts
        unit: W
        entity: device
        type: gauge
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import yaml

from homewizard_exporter.errors import ConfigError

# Configure module logger
logger = logging.getLogger(__name__)

METRIC_TYPES = ("gauge", "counter")
DEFAULT_ENTITY = "device"


@dataclass(frozen=True)
class MappingRule:
    """Maps one raw device field to a canonical measurement.

    Attributes:
        source_key: Field key in the device reading (unique within a mapping)
        metric: Target metric name
        unit: Unit of the value, carried as metadata only
        entity: Entity/sensor type tag
        metric_type: "gauge" or "counter"
    """
    source_key: str
    metric: str
    unit: str = ""
    entity: str = DEFAULT_ENTITY
    metric_type: str = "gauge"


@dataclass(frozen=True)
class MeasurementMapping:
    """Ordered, validated set of mapping rules.

    Attributes:
        rules: Rules in document order
        location: Optional location label copied to every envelope
    """
    rules: Tuple[MappingRule, ...]
    location: Optional[str] = None

    def __post_init__(self):
        """Enforce non-empty, unique source keys."""
        seen = set()
        for rule in self.rules:
            if not rule.source_key:
                raise ConfigError("Mapping rule has an empty source key")
            if rule.source_key in seen:
                raise ConfigError(f"Duplicate source key in mapping: {rule.source_key}")
            seen.add(rule.source_key)

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def source_keys(self) -> Tuple[str, ...]:
        return tuple(rule.source_key for rule in self.rules)


def _optional_str(entry: dict, name: str, index: int, default: str) -> str:
    value = entry.get(name)
    if value is None:
        return default
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise ConfigError(f"Rule {index}: '{name}' must be a string")
    return str(value).strip()


def _parse_rule(entry: Any, index: int) -> MappingRule:
    """Build a MappingRule from one document entry.

    Args:
        entry: Parsed rule (must be a mapping)
        index: Position in the rule list, for error messages

    Returns:
        Validated MappingRule

    Raises:
        ConfigError: If the entry is malformed
    """
    if not isinstance(entry, dict):
        raise ConfigError(f"Rule {index}: expected a mapping, got {type(entry).__name__}")

    # "source" is accepted as an alias of "key"
    source_key = entry.get("key", entry.get("source"))
    if not isinstance(source_key, str) or not source_key.strip():
        raise ConfigError(f"Rule {index}: missing or empty source field key")

    metric = entry.get("metric")
    if not isinstance(metric, str) or not metric.strip():
        raise ConfigError(f"Rule {index} ({source_key}): missing or empty metric name")

    metric_type = _optional_str(entry, "type", index, "gauge").lower()
    if metric_type not in METRIC_TYPES:
        raise ConfigError(
            f"Rule {index} ({source_key}): type must be one of {', '.join(METRIC_TYPES)}, "
            f"got {metric_type!r}"
        )

    return MappingRule(
        source_key=source_key.strip(),
        metric=metric.strip(),
        unit=_optional_str(entry, "unit", index, ""),
        entity=_optional_str(entry, "entity", index, DEFAULT_ENTITY) or DEFAULT_ENTITY,
        metric_type=metric_type,
    )


def parse_mapping(document: Any) -> MeasurementMapping:
    """Validate a parsed mapping document.

    Args:
        document: Result of parsing the mapping file, either a dict with a
            "measurements" list or a bare list of rules

    Returns:
        MeasurementMapping with rules in document order

    Raises:
        ConfigError: If the document shape or any rule is invalid
    """
    location = None

    if isinstance(document, dict):
        entries = document.get("measurements")
        location = document.get("location")
        if location is not None and not isinstance(location, str):
            raise ConfigError("Mapping 'location' must be a string")
    elif isinstance(document, list):
        entries = document
    else:
        raise ConfigError("Mapping document must be a mapping or a list of rules")

    if not isinstance(entries, list):
        raise ConfigError("Mapping document must contain a 'measurements' list")

    if not entries:
        raise ConfigError("Mapping document contains no rules")

    rules = tuple(_parse_rule(entry, index) for index, entry in enumerate(entries))
    return MeasurementMapping(rules=rules, location=location or None)


def load_mapping(path: Union[str, Path]) -> MeasurementMapping:
    """Load and validate the mapping document at path.

    Args:
        path: Filesystem path of the mounted mapping document

    Returns:
        Immutable MeasurementMapping

    Raises:
        ConfigError: If the file is missing, unreadable, unparseable or invalid
    """
    path = Path(path)
    logger.info(f"Loading mapping from {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Mapping file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read mapping file {path}: {e}") from e
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot parse mapping file {path}: {e}") from e

    mapping = parse_mapping(document)
    logger.info(f"Loaded {len(mapping)} mapping rules")
    return mapping
