"""
Logging helpers that tag lifecycle records with the sink they belong to.
"""

import logging
from typing import Any, Dict, Union

LOGGER_NAME = "bloc_lifecycle"


class SinkLoggerAdapter(logging.LoggerAdapter):
    """Sets ``record.sink`` on every record, after any caller-supplied extras."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**kwargs.get("extra", {}), **self.extra}
        return msg, kwargs

    @property
    def sink(self) -> str:
        return self.extra["sink"]


def get_sink_logger(sink: object) -> SinkLoggerAdapter:
    """
    Get the logger for one sink.

    The logger lives under ``bloc_lifecycle.<sink class, lowercased>`` so a
    single bloc type can be tuned without touching the others.

    Args:
        sink: The sink instance being wrapped

    Returns:
        Logger adapter carrying the sink's class name
    """
    name = type(sink).__name__
    logger = logging.getLogger(f"{LOGGER_NAME}.{name.lower()}")
    return SinkLoggerAdapter(logger, {"sink": name})


def log_lifecycle_event(
    logger: Union[logging.Logger, logging.LoggerAdapter],
    level: int,
    message: str,
    subscriptions: int,
    **context: Any,
) -> None:
    """
    Log a close or attach step with the tracked subscription count.

    Args:
        logger: Logger or sink adapter
        level: Log level
        message: Log message
        subscriptions: Tracked subscriptions at this step
        **context: Additional record attributes (e.g. failures)
    """
    if not logger.isEnabledFor(level):
        return
    logger.log(level, message, extra={"subscriptions": subscriptions, **context})
