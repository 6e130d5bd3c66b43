"""Pipeline runner module.

This module handles:
- Running mapping load, device fetch, mapping and publish exactly once
- Enforcing one overall deadline across all stages
- Converting stage failures into process exit statuses
"""

import enum
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from homewizard_exporter.config import BrokerAddress, ExporterConfig
from homewizard_exporter.device_client import RawReading
from homewizard_exporter.errors import (
    ConfigError,
    DeadlineExceededError,
    DeviceUnreachableError,
    ExporterError,
    MappingError,
    PublishError,
)
from homewizard_exporter.mapper import MeasurementEnvelope, apply_mapping
from homewizard_exporter.mapping_store import MeasurementMapping, load_mapping
from homewizard_exporter.publisher import Ack

# Configure module logger
logger = logging.getLogger(__name__)


class ExitStatus(enum.IntEnum):
    """Process exit statuses. Only zero versus non-zero is significant."""
    SUCCESS = 0
    UNEXPECTED_ERROR = 1
    CONFIG_ERROR = 2
    DEVICE_UNREACHABLE = 3
    MAPPING_ERROR = 4
    PUBLISH_ERROR = 5
    TIMEOUT = 6


EXIT_STATUS_BY_ERROR = (
    (DeadlineExceededError, ExitStatus.TIMEOUT),
    (ConfigError, ExitStatus.CONFIG_ERROR),
    (DeviceUnreachableError, ExitStatus.DEVICE_UNREACHABLE),
    (MappingError, ExitStatus.MAPPING_ERROR),
    (PublishError, ExitStatus.PUBLISH_ERROR),
)


def exit_status_for(error: BaseException) -> ExitStatus:
    """Return the exit status for an exception raised by a run."""
    for error_type, status in EXIT_STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return ExitStatus.UNEXPECTED_ERROR


class Deadline:
    """Overall time budget for one run.

    Attributes:
        seconds: Total budget in seconds
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        """Start the deadline clock.

        Args:
            seconds: Total budget in seconds
            clock: Monotonic clock function (injectable for tests)
        """
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        """Seconds left before the deadline, never negative."""
        return max(self._expires_at - self._clock(), 0.0)

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, stage: str) -> None:
        """Raise DeadlineExceededError if the deadline has passed.

        Args:
            stage: Stage name reported in the error
        """
        if self.expired():
            raise DeadlineExceededError(stage)


class TelemetrySource(Protocol):
    def fetch(self, endpoint: str, timeout: float) -> RawReading:
        ...


class EnvelopePublisher(Protocol):
    def publish(
        self,
        envelope: MeasurementEnvelope,
        broker: BrokerAddress,
        subject: str,
        timeout: float,
    ) -> Ack:
        ...


class RunState(enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"


class Runner:
    """Runs the poll, map and publish pipeline once.

    Stages run strictly in sequence; the first failure ends the run. A
    Runner is single-use.

    Attributes:
        state: Current run state
        current_stage: Name of the stage last started
        ack: Broker acknowledgement after a successful run
    """

    def __init__(
        self,
        device_client: TelemetrySource,
        publisher: EnvelopePublisher,
        mapping_loader: Callable[[Union[str, Path]], MeasurementMapping] = load_mapping,
    ):
        """Initialize the runner.

        Args:
            device_client: Client used to fetch the device reading
            publisher: Publisher used to send the envelope
            mapping_loader: Function loading the mapping document
        """
        self.device_client = device_client
        self.publisher = publisher
        self.mapping_loader = mapping_loader
        self.state = RunState.NOT_STARTED
        self.ack: Optional[Ack] = None
        self.current_stage: Optional[str] = None

    def run(self, config: ExporterConfig, deadline: Deadline) -> ExitStatus:
        """Execute the pipeline and report its outcome.

        Args:
            config: Exporter configuration
            deadline: Overall deadline shared by all stages

        Returns:
            ExitStatus.SUCCESS once the broker acknowledged the envelope,
            otherwise the status matching the failure

        Raises:
            RuntimeError: If the runner has already been started
        """
        if self.state is not RunState.NOT_STARTED:
            raise RuntimeError("Runner can only be run once")

        self.state = RunState.RUNNING
        start_time = time.monotonic()
        logger.info("Starting exporter run")

        try:
            self.ack = self._run_stages(config, deadline)
        except ExporterError as e:
            status = exit_status_for(e)
            logger.error(f"run failed: error_kind={type(e).__name__} stage={self.current_stage} "
                         f"exit_status={int(status)} detail={e}")
            return status
        except Exception as e:
            logger.exception(f"run failed: error_kind=UnexpectedError stage={self.current_stage} "
                             f"exit_status={int(ExitStatus.UNEXPECTED_ERROR)} detail={e}")
            return ExitStatus.UNEXPECTED_ERROR
        finally:
            self.state = RunState.COMPLETED

        logger.info(f"Run completed successfully in {time.monotonic() - start_time:.2f}s")
        return ExitStatus.SUCCESS

    def _run_stage(self, stage: str, deadline: Deadline, func, *args):
        """Run one stage under the deadline.

        The deadline is checked before the stage starts. A stage error raised
        once the deadline has passed is reported as a timeout.
        """
        self.current_stage = stage
        deadline.check(stage)
        try:
            result = func(*args)
        except ExporterError as e:
            if deadline.expired() and not isinstance(e, DeadlineExceededError):
                raise DeadlineExceededError(stage, cause=e) from e
            raise
        return result

    def _run_stages(self, config: ExporterConfig, deadline: Deadline) -> Ack:
        mapping = self._run_stage("load_mapping", deadline, self.mapping_loader, config.mapping_path)

        reading = self._run_stage(
            "fetch",
            deadline,
            lambda: self.device_client.fetch(config.device_endpoint, deadline.remaining()),
        )
        # A reading that arrives after the deadline is never published
        deadline.check("fetch")

        envelope = self._run_stage(
            "map",
            deadline,
            apply_mapping,
            mapping,
            reading,
            config.source_name,
        )

        return self._run_stage(
            "publish",
            deadline,
            lambda: self.publisher.publish(
                envelope,
                config.broker,
                config.broker_subject,
                deadline.remaining(),
            ),
        )
