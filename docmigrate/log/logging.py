"""
Logging setup built on loguru.

Modules import ``logger`` from here and log with a message template plus
keyword extras (``event_type`` and friends). Keyword arguments fill the
template and are also attached to the record's ``extra`` dict, so they
show up in JSON output. Importing this module leaves loguru untouched; only
``setup_logging`` changes sinks and defaults, for processes docmigrate owns.
"""
import sys

from loguru import logger

HUMAN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[app_name]}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(app_name: str = "docmigrate", log_level: str = "INFO", json_logs: bool = False) -> None:
    """
    Replace loguru's default sink with one configured for the runner.

    Args:
        app_name: Value bound to every record as ``app_name``.
        log_level: Minimum level emitted.
        json_logs: Serialize records as JSON lines instead of the human format.
    """
    logger.remove()
    logger.configure(extra={"app_name": app_name})
    if json_logs:
        logger.add(sys.stderr, level=log_level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=log_level.upper(), format=HUMAN_FORMAT, colorize=None)


__all__ = ["logger", "setup_logging"]
