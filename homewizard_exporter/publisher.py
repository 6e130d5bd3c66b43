"""Message bus publisher module.

This module handles:
- Serializing a MeasurementEnvelope to canonical JSON bytes
- Publishing the payload to a broker subject over MQTT (QoS 1)
- Treating the broker's PUBACK as the success boundary
- Tearing the connection down after every publish, successful or not
"""

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

from homewizard_exporter.config import BrokerAddress
from homewizard_exporter.errors import PublishError
from homewizard_exporter.mapper import Measurement, MeasurementEnvelope

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_QOS = 1
KEEPALIVE_SECONDS = 60


@dataclass(frozen=True)
class Ack:
    """Broker acknowledgement of a published envelope.

    Attributes:
        subject: Subject the envelope was published to
        message_id: MQTT packet identifier of the publish
        payload_size: Size of the serialized envelope in bytes
    """
    subject: str
    message_id: int
    payload_size: int


def _measurement_to_dict(measurement: Measurement) -> Dict[str, Any]:
    return {
        "metric": measurement.metric,
        "value": measurement.value,
        "unit": measurement.unit,
        "entity": measurement.entity,
        "type": measurement.metric_type,
        "timestamp": measurement.timestamp.isoformat(),
    }


def envelope_to_dict(envelope: MeasurementEnvelope) -> Dict[str, Any]:
    """Convert an envelope to its wire document.

    Key order is fixed and measurements keep envelope order.

    Args:
        envelope: Envelope to convert

    Returns:
        Ordered dict ready for JSON serialization
    """
    return {
        "source": envelope.source,
        "location": envelope.location,
        "collectedAt": envelope.collected_at.isoformat(),
        "measurements": [_measurement_to_dict(m) for m in envelope.measurements],
    }


def serialize_envelope(envelope: MeasurementEnvelope) -> bytes:
    """Serialize an envelope to canonical UTF-8 JSON.

    Equal envelopes always serialize to identical bytes.

    Args:
        envelope: Envelope to serialize

    Returns:
        Compact JSON payload
    """
    return json.dumps(
        envelope_to_dict(envelope),
        ensure_ascii=False,
        allow_nan=False,
        separators=(",", ":"),
    ).encode("utf-8")


def new_client_id() -> str:
    """Return a random client id for one broker connection."""
    return f"homewizard-exporter-{uuid.uuid4().hex[:12]}"


def _default_client_factory() -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=new_client_id(),
        protocol=mqtt.MQTTv311,
    )


class MQTTPublisher:
    """Publishes measurement envelopes to an MQTT broker.

    A fresh connection is opened for every publish and always closed before
    returning.

    Attributes:
        qos: MQTT QoS level used for publishing (1 waits for a PUBACK)
    """

    def __init__(
        self,
        qos: int = DEFAULT_QOS,
        client_factory: Optional[Callable[[], mqtt.Client]] = None,
    ):
        """Initialize the publisher.

        Args:
            qos: MQTT QoS level (default 1)
            client_factory: Callable returning a new paho client; used by tests
        """
        self.qos = qos
        self._client_factory = client_factory or _default_client_factory

    def publish(
        self,
        envelope: MeasurementEnvelope,
        broker: BrokerAddress,
        subject: str,
        timeout: float,
    ) -> Ack:
        """Publish an envelope and wait for the broker's acknowledgement.

        Args:
            envelope: Envelope to publish
            broker: Broker address
            subject: Subject (MQTT topic) to publish to
            timeout: Time budget in seconds for connect, send and acknowledgement

        Returns:
            Ack describing the accepted message

        Raises:
            PublishError: If the connection fails or is refused, the publish is
                rejected, or no acknowledgement arrives within the budget
        """
        if timeout <= 0:
            raise PublishError("No time left to publish")

        deadline = time.monotonic() + timeout
        payload = serialize_envelope(envelope)
        logger.debug(f"Serialized envelope: {len(payload)} bytes")

        connected = threading.Event()
        connect_result: Dict[str, Any] = {}

        def on_connect(client, userdata, flags, reason_code, properties=None):
            connect_result["reason_code"] = reason_code
            connected.set()

        client = self._client_factory()
        client.on_connect = on_connect
        client.connect_timeout = timeout

        logger.info(f"Connecting to broker {broker}")

        try:
            try:
                client.connect(broker.host, broker.port, keepalive=KEEPALIVE_SECONDS)
            except (OSError, ValueError) as e:
                raise PublishError(f"Cannot connect to broker {broker}: {e}") from e

            client.loop_start()

            if not connected.wait(max(deadline - time.monotonic(), 0)):
                raise PublishError(f"No CONNACK from broker {broker} within {timeout:.2f}s")

            reason_code = connect_result["reason_code"]
            if reason_code.is_failure:
                raise PublishError(f"Broker {broker} refused connection: {reason_code}")

            info = client.publish(subject, payload=payload, qos=self.qos)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise PublishError(f"Publish to {subject} failed: {mqtt.error_string(info.rc)}")

            try:
                info.wait_for_publish(timeout=max(deadline - time.monotonic(), 0))
            except (RuntimeError, ValueError) as e:
                raise PublishError(f"Publish to {subject} failed: {e}") from e

            if not info.is_published():
                raise PublishError(f"Publish to {subject} not acknowledged within {timeout:.2f}s")

            logger.info(f"Published {len(envelope)} measurements to {subject} "
                        f"(mid={info.mid}, {len(payload)} bytes)")
            return Ack(subject=subject, message_id=info.mid, payload_size=len(payload))

        finally:
            client.disconnect()
            client.loop_stop()
            logger.debug(f"Disconnected from broker {broker}")
