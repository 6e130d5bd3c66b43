"""HomeWizard device telemetry client.

This module handles:
- Fetching one telemetry snapshot from the device's local HTTP API
- Flattening the JSON payload into numeric field values
- Stamping the snapshot with its receipt time

The device API needs no authentication. A typical P1 meter payload:
    {"wifi_ssid": "home", "total_power_import_t1_kwh": 1234.5, "active_power_w": 120.5}
"""

import json
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

import requests

from homewizard_exporter import __version__
from homewizard_exporter.errors import DeviceUnreachableError

# Configure module logger
logger = logging.getLogger(__name__)

# Small reads so the body deadline is checked as bytes arrive
READ_CHUNK_SIZE = 1


@dataclass(frozen=True)
class RawReading:
    """One telemetry snapshot from the device.

    Attributes:
        values: Read-only field key to numeric value mapping
        captured_at: UTC time the response was received
    """
    values: Mapping[str, float]
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        """Freeze the value mapping."""
        if not isinstance(self.values, MappingProxyType):
            object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __contains__(self, key: str) -> bool:
        return key in self.values

    def __getitem__(self, key: str) -> float:
        return self.values[key]

    def __len__(self) -> int:
        return len(self.values)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def flatten_payload(payload: Mapping[str, Any], prefix: str = "") -> Iterator[Tuple[str, float]]:
    """Yield (key, value) pairs for every numeric leaf of a JSON object.

    Nested objects produce dotted keys. Strings, booleans, nulls, lists and
    non-finite numbers are skipped.

    Example:
        >>> dict(flatten_payload({"a": 1, "b": {"c": 2.5}, "ssid": "x"}))
        {'a': 1, 'b.c': 2.5}
    """
    for key, value in payload.items():
        full_key = f"{prefix}{key}"
        if isinstance(value, dict):
            yield from flatten_payload(value, prefix=f"{full_key}.")
        elif _is_number(value):
            yield full_key, value


class DeviceClient:
    """Client for a HomeWizard device's local telemetry endpoint.

    Performs a single request per fetch; there is no retry.

    Attributes:
        session: requests session used for the telemetry request
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the client.

        Args:
            session: Optional session to use (default: a new requests.Session)
            clock: Monotonic clock bounding the body read (injectable for tests)
        """
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": f"homewizard-exporter/{__version__}",
        })
        self._clock = clock

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> "DeviceClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def fetch(self, endpoint: str, timeout: float) -> RawReading:
        """Fetch one telemetry snapshot.

        The connect and each socket read are bounded by ``timeout``; the body
        is streamed and abandoned once ``timeout`` seconds have passed since
        the request started, however slowly the device sends it.

        Args:
            endpoint: Telemetry URL, e.g. http://192.168.1.20/api/v1/data
            timeout: Time budget in seconds for the whole request

        Returns:
            RawReading with numeric fields and receipt timestamp

        Raises:
            DeviceUnreachableError: On network failure, timeout, non-success
                status or a body that is not a JSON object
        """
        if timeout <= 0:
            raise DeviceUnreachableError("No time left to query the device")

        logger.info(f"Fetching telemetry from {endpoint}")
        logger.debug(f"Device request timeout: {timeout:.2f}s")

        expires_at = self._clock() + timeout

        try:
            response = self.session.get(endpoint, timeout=(timeout, timeout), stream=True)
            try:
                response.raise_for_status()
                body = self._read_body(response, expires_at, timeout)
            finally:
                response.close()
        except requests.Timeout as e:
            raise DeviceUnreachableError(f"Device request timed out: {e}") from e
        except requests.RequestException as e:
            raise DeviceUnreachableError(f"Device request failed: {e}") from e

        captured_at = datetime.now(timezone.utc)

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise DeviceUnreachableError(f"Device returned an unparseable body: {e}") from e

        if not isinstance(payload, dict):
            raise DeviceUnreachableError(
                f"Device returned {type(payload).__name__}, expected a JSON object"
            )

        values: Dict[str, float] = dict(flatten_payload(payload))
        logger.info(f"Received {len(values)} numeric fields from device")
        logger.debug(f"Device fields: {sorted(values)}")

        return RawReading(values=values, captured_at=captured_at)

    def _read_body(self, response: requests.Response, expires_at: float, timeout: float) -> bytes:
        """Read the streamed response body until it ends or time runs out."""
        chunks = []
        for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
            chunks.append(chunk)
            if self._clock() >= expires_at:
                raise DeviceUnreachableError(
                    f"Device response not completed within {timeout:.2f}s"
                )
        return b"".join(chunks)
