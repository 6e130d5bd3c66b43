"""Tests for envelope serialization and MQTT publishing."""

import json
from datetime import timedelta

import paho.mqtt.client as mqtt
import pytest

from homewizard_exporter.config import BrokerAddress
from homewizard_exporter.device_client import RawReading
from homewizard_exporter.errors import PublishError
from homewizard_exporter.mapper import apply_mapping
from homewizard_exporter.publisher import Ack, MQTTPublisher, new_client_id, serialize_envelope

from conftest import CAPTURED_AT, FakeMessageInfo, FakeMQTTClient, FakeReasonCode

BROKER = BrokerAddress(host="broker.local", port=1883)
SUBJECT = "jarvis.measurements"


@pytest.fixture
def envelope(mapping, reading):
    return apply_mapping(mapping, reading, source="homewizard-exporter")


def make_publisher(client: FakeMQTTClient) -> MQTTPublisher:
    return MQTTPublisher(client_factory=lambda: client)


def test_serialize_envelope_exact_bytes(envelope):
    expected = (
        '{"source":"homewizard-exporter","location":"My Home",'
        '"collectedAt":"2026-10-18T10:00:00+00:00","measurements":['
        '{"metric":"power_watts","value":120.5,"unit":"W","entity":"device",'
        '"type":"gauge","timestamp":"2026-10-18T10:00:00+00:00"},'
        '{"metric":"power_watts_phase2","value":80.0,"unit":"W","entity":"device",'
        '"type":"gauge","timestamp":"2026-10-18T10:00:00+00:00"}]}'
    ).encode("utf-8")

    assert serialize_envelope(envelope) == expected


def test_serialization_is_deterministic_apart_from_timestamps(mapping):
    values = {"p1": 120.5, "p2": 80.0}
    later = CAPTURED_AT + timedelta(minutes=5)

    first = serialize_envelope(apply_mapping(mapping, RawReading(values, CAPTURED_AT), "src"))
    again = serialize_envelope(apply_mapping(mapping, RawReading(values, CAPTURED_AT), "src"))
    second = serialize_envelope(apply_mapping(mapping, RawReading(values, later), "src"))

    assert first == again
    assert first != second
    assert first.replace(CAPTURED_AT.isoformat().encode(), b"T") == \
        second.replace(later.isoformat().encode(), b"T")


def test_publish_success_waits_for_ack(envelope):
    info = FakeMessageInfo(mid=7)
    client = FakeMQTTClient(info=info)

    ack = make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=5.0)

    assert ack == Ack(subject=SUBJECT, message_id=7, payload_size=len(serialize_envelope(envelope)))
    assert client.connected_to == ("broker.local", 1883, 60)
    assert client.connect_timeout == 5.0
    assert client.published == [(SUBJECT, serialize_envelope(envelope), 1)]
    assert 0 < info.wait_timeout <= 5.0
    assert json.loads(client.published[0][1])["source"] == "homewizard-exporter"


def test_publish_tears_down_connection_on_success(envelope):
    client = FakeMQTTClient()

    make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=5.0)

    assert client.disconnected
    assert client.loop_stopped


def test_broker_unreachable_raises_publish_error(envelope):
    client = FakeMQTTClient(connect_error=ConnectionRefusedError("connection refused"))

    with pytest.raises(PublishError, match="Cannot connect"):
        make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=5.0)

    assert client.published == []
    assert client.disconnected
    assert client.loop_stopped


def test_refused_connack_raises_publish_error(envelope):
    client = FakeMQTTClient(reason_code=FakeReasonCode(is_failure=True, name="Not authorized"))

    with pytest.raises(PublishError, match="Not authorized"):
        make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=5.0)

    assert client.published == []
    assert client.disconnected


def test_missing_connack_raises_publish_error(envelope):
    client = FakeMQTTClient(send_connack=False)

    with pytest.raises(PublishError, match="No CONNACK"):
        make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=0.05)

    assert client.published == []
    assert client.loop_stopped


def test_rejected_publish_raises_publish_error(envelope):
    client = FakeMQTTClient(info=FakeMessageInfo(rc=mqtt.MQTT_ERR_NO_CONN))

    with pytest.raises(PublishError, match="failed"):
        make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=5.0)

    assert client.disconnected


def test_unacknowledged_publish_raises_publish_error(envelope):
    client = FakeMQTTClient(info=FakeMessageInfo(published=False))

    with pytest.raises(PublishError, match="not acknowledged"):
        make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=5.0)

    assert client.disconnected
    assert client.loop_stopped


def test_wait_error_raises_publish_error(envelope):
    client = FakeMQTTClient(info=FakeMessageInfo(wait_error=RuntimeError("connection lost")))

    with pytest.raises(PublishError, match="connection lost"):
        make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=5.0)


def test_no_budget_left_does_not_connect(envelope):
    client = FakeMQTTClient()

    with pytest.raises(PublishError):
        make_publisher(client).publish(envelope, BROKER, SUBJECT, timeout=0)

    assert client.connected_to is None


def test_client_ids_differ_between_runs():
    ids = {new_client_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(client_id.startswith("homewizard-exporter-") for client_id in ids)
