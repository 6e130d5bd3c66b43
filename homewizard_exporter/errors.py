"""Exception types for the exporter pipeline.

Each stage raises its own subclass of ExporterError; the runner maps them to
exit statuses.
"""

from typing import Iterable, Optional, Tuple


class ExporterError(Exception):
    """Base exception for exporter errors."""
    pass


class ConfigError(ExporterError):
    """Exception raised for a missing or invalid mapping document or environment."""
    pass


class DeviceUnreachableError(ExporterError):
    """Exception raised when the device telemetry cannot be fetched or parsed."""
    pass


class MappingError(ExporterError):
    """Exception raised when mapped source keys are absent from a reading.

    Attributes:
        missing_keys: Source keys that were not found, in rule order
    """

    def __init__(self, missing_keys: Iterable[str]):
        self.missing_keys: Tuple[str, ...] = tuple(missing_keys)
        super().__init__(
            f"Reading is missing mapped field(s): {', '.join(self.missing_keys)}"
        )


class PublishError(ExporterError):
    """Exception raised when the broker connection, send or acknowledgement fails."""
    pass


class DeadlineExceededError(ExporterError, TimeoutError):
    """Exception raised when the overall run deadline has passed.

    Attributes:
        stage: Name of the stage that was in flight (or about to start)
    """

    def __init__(self, stage: str, cause: Optional[BaseException] = None):
        self.stage = stage
        message = f"Run deadline exceeded during {stage}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
