"""Reading to measurement mapper.

This module handles:
- Applying a MeasurementMapping to a RawReading
- Producing an ordered MeasurementEnvelope, one measurement per rule
- Rejecting readings that lack any mapped field (no partial envelopes)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from homewizard_exporter.device_client import RawReading
from homewizard_exporter.errors import MappingError
from homewizard_exporter.mapping_store import MeasurementMapping

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Measurement:
    """A single normalized measurement.

    Attributes:
        metric: Metric name
        value: Raw device value, unconverted
        unit: Unit of the value (metadata only)
        entity: Entity/sensor type tag
        metric_type: "gauge" or "counter"
        timestamp: Capture time of the reading
    """
    metric: str
    value: float
    unit: str
    entity: str
    metric_type: str
    timestamp: datetime


@dataclass(frozen=True)
class MeasurementEnvelope:
    """Ordered set of measurements published as one message.

    Attributes:
        measurements: Measurements in mapping rule order
        source: Source identifier of the exporter
        collected_at: Capture time of the underlying reading
        location: Optional location label from the mapping
    """
    measurements: Tuple[Measurement, ...]
    source: str
    collected_at: datetime
    location: Optional[str] = None

    def __post_init__(self):
        """Validate that the envelope is publishable."""
        if not self.measurements:
            raise ValueError("Envelope must contain at least one measurement")

    def __len__(self) -> int:
        return len(self.measurements)


def apply_mapping(mapping: MeasurementMapping, reading: RawReading, source: str) -> MeasurementEnvelope:
    """Map a raw reading to a measurement envelope.

    Every rule must find its source key in the reading; otherwise the whole
    mapping fails.

    Args:
        mapping: Validated mapping rules
        reading: Raw device snapshot
        source: Source identifier for the envelope

    Returns:
        MeasurementEnvelope with one measurement per rule, in rule order

    Raises:
        MappingError: If any rule's source key is absent from the reading,
            listing every missing key
    """
    missing = [key for key in mapping.source_keys if key not in reading]
    if missing:
        raise MappingError(missing)

    measurements = tuple(
        Measurement(
            metric=rule.metric,
            value=reading[rule.source_key],
            unit=rule.unit,
            entity=rule.entity,
            metric_type=rule.metric_type,
            timestamp=reading.captured_at,
        )
        for rule in mapping.rules
    )

    logger.info(f"Mapped {len(measurements)} measurements from {len(reading)} device fields")

    return MeasurementEnvelope(
        measurements=measurements,
        source=source,
        collected_at=reading.captured_at,
        location=mapping.location,
    )


if __name__ == "__main__":
    # Self-test block
    import sys
    from datetime import timezone

    from homewizard_exporter.mapping_store import MappingRule

    def test_apply_mapping_order():
        """Test measurements follow rule order."""
        print("Testing apply_mapping order...", end=" ")

        mapping = MeasurementMapping(rules=(
            MappingRule(source_key="p2", metric="power_watts_phase2"),
            MappingRule(source_key="p1", metric="power_watts"),
        ))
        captured_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        reading = RawReading(values={"p1": 120.5, "p2": 80.0}, captured_at=captured_at)

        envelope = apply_mapping(mapping, reading, source="test")
        assert [m.metric for m in envelope.measurements] == ["power_watts_phase2", "power_watts"]
        assert [m.value for m in envelope.measurements] == [80.0, 120.5]
        assert all(m.timestamp == captured_at for m in envelope.measurements)

        print("OK")

    def test_apply_mapping_missing_key():
        """Test a missing field fails the whole mapping."""
        print("Testing apply_mapping missing key...", end=" ")

        mapping = MeasurementMapping(rules=(
            MappingRule(source_key="p1", metric="power_watts"),
            MappingRule(source_key="p2", metric="power_watts_phase2"),
        ))
        reading = RawReading(values={"p1": 120.5})

        try:
            apply_mapping(mapping, reading, source="test")
            assert False, "Should have raised MappingError"
        except MappingError as e:
            assert e.missing_keys == ("p2",)

        print("OK")

    print("=" * 60)
    print("Mapper Unit Tests")
    print("=" * 60)

    tests = [
        test_apply_mapping_order,
        test_apply_mapping_missing_key,
    ]

    failed = 0
    for test in tests:
        try:
            test()
        except Exception as e:
            print(f"FAILED: {e}")
            failed += 1

    print("=" * 60)
    if failed:
        print(f"FAILED: {failed} test(s)")
        sys.exit(1)
    else:
        print("All tests passed!")
        sys.exit(0)
