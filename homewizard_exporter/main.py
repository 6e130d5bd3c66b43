"""Main entry point for HomeWizard Exporter.

This module handles:
- Loading configuration from environment variables (and an optional .env)
- Starting the overall run deadline
- Wiring the device client and publisher into a single pipeline run
- Returning the run outcome as the process exit status
"""

import logging
import sys

from dotenv import load_dotenv

from homewizard_exporter.config import load_config
from homewizard_exporter.device_client import DeviceClient
from homewizard_exporter.errors import ConfigError
from homewizard_exporter.publisher import MQTTPublisher
from homewizard_exporter.runner import Deadline, ExitStatus, Runner

# Configure module logger
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level_name: str) -> None:
    """Configure root logging on stdout.

    Args:
        level_name: Log level name such as "INFO" or "DEBUG"
    """
    level = logging.getLevelName(level_name.upper())
    invalid = not isinstance(level, int)

    logging.basicConfig(
        level=logging.INFO if invalid else level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    if invalid:
        logger.warning(f"Invalid LOG_LEVEL {level_name!r}, using INFO")


def main() -> int:
    """Main entry point.

    1. Load .env file with python-dotenv
    2. Configure logging at INFO
    3. Load and validate configuration, then apply its log level
    4. Start the run deadline
    5. Run the pipeline once

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    # Load .env file
    load_dotenv()

    # INFO until the configured level is known
    configure_logging("INFO")
    logger.info("HomeWizard Exporter starting")

    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"run failed: error_kind=ConfigError stage=config "
                     f"exit_status={int(ExitStatus.CONFIG_ERROR)} detail={e}")
        return ExitStatus.CONFIG_ERROR

    configure_logging(config.log_level)
    deadline = Deadline(config.timeout_seconds)

    with DeviceClient() as device_client:
        runner = Runner(device_client=device_client, publisher=MQTTPublisher())
        status = runner.run(config, deadline)

    logger.info(f"HomeWizard Exporter finished with exit status {int(status)}")
    return status


if __name__ == "__main__":
    sys.exit(main())
