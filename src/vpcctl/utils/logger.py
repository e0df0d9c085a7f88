"""
Logging setup for vpcctl.

All modules obtain a logger via ``get_logger(__name__)``. The CLI calls
``configure_logging`` once per invocation, which installs a stderr sink and
the timestamped activity log file.
"""

import sys
import traceback

from loguru import logger as _logger

from vpcctl.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "[{time:YYYY-MM-DD HH:mm:ss}] [{level}] {extra[name]}: {message}"

_logger.configure(extra={"name": "vpcctl"})


def configure_logging(
    level: LogLevel | str = LogLevel.INFO, log_file: str | None = None
) -> None:
    """
    Configure loguru sinks.

    Args:
        level: Minimum level for the stderr sink.
        log_file: Activity log path. Always records DEBUG and above.
    """
    level_name = level.value if isinstance(level, LogLevel) else str(level)
    level_name = level_name.upper()

    _logger.remove()
    _logger.add(sys.stderr, level=level_name, format=LOG_FORMAT, colorize=True)
    if log_file:
        _logger.add(log_file, level="DEBUG", format=FILE_FORMAT, enqueue=False)


def get_logger(name: str):
    """Get a logger bound to a module name."""
    return _logger.bind(name=name)


def format_traceback(exc: BaseException) -> str:
    """Render an exception with its traceback as a single string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
