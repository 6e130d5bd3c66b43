"""Shared fixtures for exporter tests."""

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from homewizard_exporter.config import BrokerAddress, ExporterConfig
from homewizard_exporter.device_client import RawReading
from homewizard_exporter.mapping_store import MappingRule, MeasurementMapping

CAPTURED_AT = datetime(2026, 10, 18, 10, 0, 0, tzinfo=timezone.utc)

MAPPING_YAML = """\
location: My Home
measurements:
  - key: p1
    metric: power_watts
    unit: W
  - key: p2
    metric: power_watts_phase2
    unit: W
"""


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeReasonCode:
    def __init__(self, is_failure: bool = False, name: str = "Success"):
        self.is_failure = is_failure
        self.name = name

    def __str__(self) -> str:
        return self.name


class FakeMessageInfo:
    """Stand-in for paho's MQTTMessageInfo."""

    def __init__(self, mid: int = 1, rc: int = 0, published: bool = True,
                 wait_error: Optional[Exception] = None):
        self.mid = mid
        self.rc = rc
        self.published = published
        self.wait_error = wait_error
        self.wait_timeout: Optional[float] = None

    def wait_for_publish(self, timeout: Optional[float] = None) -> None:
        self.wait_timeout = timeout
        if self.wait_error is not None:
            raise self.wait_error

    def is_published(self) -> bool:
        return self.published


class FakeMQTTClient:
    """Stand-in for paho's Client that records calls and acks synchronously."""

    def __init__(
        self,
        connect_error: Optional[Exception] = None,
        reason_code: Optional[FakeReasonCode] = None,
        send_connack: bool = True,
        info: Optional[FakeMessageInfo] = None,
    ):
        self.connect_error = connect_error
        self.reason_code = reason_code or FakeReasonCode()
        self.send_connack = send_connack
        self.info = info or FakeMessageInfo()
        self.on_connect = None
        self.connect_timeout = None
        self.connected_to = None
        self.published: List[tuple] = []
        self.loop_started = False
        self.loop_stopped = False
        self.disconnected = False

    def connect(self, host, port=1883, keepalive=60):
        self.connected_to = (host, port, keepalive)
        if self.connect_error is not None:
            raise self.connect_error
        return 0

    def loop_start(self):
        self.loop_started = True
        if self.send_connack:
            self.on_connect(self, None, {}, self.reason_code, None)

    def publish(self, topic, payload=None, qos=0):
        self.published.append((topic, payload, qos))
        return self.info

    def disconnect(self):
        self.disconnected = True

    def loop_stop(self):
        self.loop_stopped = True


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mapping() -> MeasurementMapping:
    return MeasurementMapping(
        rules=(
            MappingRule(source_key="p1", metric="power_watts", unit="W"),
            MappingRule(source_key="p2", metric="power_watts_phase2", unit="W"),
        ),
        location="My Home",
    )


@pytest.fixture
def reading() -> RawReading:
    return RawReading(values={"p1": 120.5, "p2": 80.0, "wifi_strength": 72}, captured_at=CAPTURED_AT)


@pytest.fixture
def mapping_file(tmp_path: Path) -> Path:
    path = tmp_path / "mapping.yaml"
    path.write_text(MAPPING_YAML, encoding="utf-8")
    return path


@pytest.fixture
def config(mapping_file: Path) -> ExporterConfig:
    return ExporterConfig(
        timeout_seconds=10,
        device_endpoint="http://192.168.1.20/api/v1/data",
        broker=BrokerAddress(host="broker.local", port=1883),
        broker_subject="jarvis.measurements",
        mapping_path=mapping_file,
    )
