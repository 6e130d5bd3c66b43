"""Environment configuration module.

This module handles:
- Reading exporter settings from environment variables (after .env loading)
- Validating required settings and the run timeout
- Parsing the broker address into host and port
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from homewizard_exporter.errors import ConfigError

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_CONFIG_MOUNT_PATH = "/configs"
DEFAULT_MAPPING_FILE = "mapping.yaml"
DEFAULT_SOURCE_NAME = "homewizard-exporter"
DEFAULT_BROKER_PORT = 1883

# Deployment name first, then the alternative
BROKER_HOST_VARS = ("NATS_HOST", "BROKER_HOST")
BROKER_SUBJECT_VARS = ("NATS_SUBJECT", "BROKER_SUBJECT")


@dataclass(frozen=True)
class BrokerAddress:
    """Message broker network address.

    Attributes:
        host: Broker hostname or IP address
        port: Broker TCP port
    """
    host: str
    port: int = DEFAULT_BROKER_PORT

    @classmethod
    def parse(cls, value: str) -> "BrokerAddress":
        """Parse a "host" or "host:port" string.

        Args:
            value: Address string, e.g. "nats.local:1883"

        Returns:
            BrokerAddress with the default port when none is given

        Raises:
            ConfigError: If the host is empty or the port is not a valid TCP port
        """
        value = value.strip()
        host, sep, port_str = value.rpartition(":")
        if not sep:
            host, port_str = value, ""

        if not host:
            raise ConfigError(f"Invalid broker address: {value!r}")

        if not port_str:
            return cls(host=host)

        try:
            port = int(port_str)
        except ValueError as e:
            raise ConfigError(f"Invalid broker port in {value!r}") from e

        if not (1 <= port <= 65535):
            raise ConfigError(f"Broker port out of range in {value!r}")

        return cls(host=host, port=port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ExporterConfig:
    """Settings for one exporter run.

    Attributes:
        timeout_seconds: Overall run deadline in seconds
        device_endpoint: Device telemetry URL
        broker: Message broker address
        broker_subject: Subject (topic) the envelope is published to
        mapping_path: Path of the mounted mapping document
        source_name: Source identifier stamped on every envelope
        log_level: Root log level name
    """
    timeout_seconds: int
    device_endpoint: str
    broker: BrokerAddress
    broker_subject: str
    mapping_path: Path
    source_name: str = DEFAULT_SOURCE_NAME
    log_level: str = "INFO"


def _parse_timeout(raw: str) -> int:
    try:
        timeout = int(raw)
    except ValueError as e:
        raise ConfigError(f"TIMEOUT_SECONDS must be an integer, got {raw!r}") from e

    if timeout <= 0:
        raise ConfigError(f"TIMEOUT_SECONDS must be positive, got {timeout}")

    return timeout


def _first_set(env: Mapping[str, str], names: Tuple[str, ...]) -> str:
    """Return the first non-empty value among the given variable names."""
    for name in names:
        value = env.get(name, "").strip()
        if value:
            return value
    return ""


def _mapping_file_name(env: Mapping[str, str]) -> str:
    config_map_name = env.get("MEASUREMENT_FILE_CONFIG_MAP_NAME", "").strip()
    if config_map_name:
        # The config map is mounted as one file named after it
        return config_map_name if Path(config_map_name).suffix else f"{config_map_name}.yaml"
    return env.get("MAPPING_FILE", DEFAULT_MAPPING_FILE).strip() or DEFAULT_MAPPING_FILE


def load_config(environ: Optional[Mapping[str, str]] = None) -> ExporterConfig:
    """Load configuration from environment variables.

    The deployment sets NATS_HOST, NATS_SUBJECT and
    MEASUREMENT_FILE_CONFIG_MAP_NAME; BROKER_HOST, BROKER_SUBJECT and
    MAPPING_FILE are accepted as alternatives.

    Required:
        DEVICE_ENDPOINT: Device telemetry URL
        NATS_HOST (or BROKER_HOST): Broker "host" or "host:port"
        NATS_SUBJECT (or BROKER_SUBJECT): Publish subject

    Optional:
        TIMEOUT_SECONDS: Overall run deadline (default: 10)
        CONFIG_MOUNT_PATH: Mapping mount directory (default: /configs)
        MEASUREMENT_FILE_CONFIG_MAP_NAME: Mapping config map name under the mount
        MAPPING_FILE: Mapping document name under the mount (default: mapping.yaml)
        SOURCE_NAME: Envelope source identifier (default: homewizard-exporter)
        LOG_LEVEL: Log level name (default: INFO)

    Args:
        environ: Environment mapping to read (default: os.environ)

    Returns:
        Validated ExporterConfig

    Raises:
        ConfigError: If required variables are missing or a value is invalid
    """
    env = os.environ if environ is None else environ

    device_endpoint = env.get("DEVICE_ENDPOINT", "").strip()
    broker_host = _first_set(env, BROKER_HOST_VARS)
    broker_subject = _first_set(env, BROKER_SUBJECT_VARS)

    # Validate required config
    missing = []
    if not device_endpoint:
        missing.append("DEVICE_ENDPOINT")
    if not broker_host:
        missing.append(" or ".join(BROKER_HOST_VARS))
    if not broker_subject:
        missing.append(" or ".join(BROKER_SUBJECT_VARS))

    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    timeout_seconds = _parse_timeout(env.get("TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))

    # An absolute file name replaces the mount directory entirely
    mount_path = Path(env.get("CONFIG_MOUNT_PATH", DEFAULT_CONFIG_MOUNT_PATH))
    mapping_path = mount_path / _mapping_file_name(env)

    config = ExporterConfig(
        timeout_seconds=timeout_seconds,
        device_endpoint=device_endpoint,
        broker=BrokerAddress.parse(broker_host),
        broker_subject=broker_subject,
        mapping_path=mapping_path,
        source_name=env.get("SOURCE_NAME", DEFAULT_SOURCE_NAME).strip() or DEFAULT_SOURCE_NAME,
        log_level=env.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )

    logger.info(f"Configuration loaded: device={config.device_endpoint}, "
                f"broker={config.broker}, subject={config.broker_subject}, "
                f"mapping={config.mapping_path}, timeout={config.timeout_seconds}s")
    return config
