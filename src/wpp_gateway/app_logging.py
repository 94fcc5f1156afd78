"""Logging configuration helpers."""

import asyncio
import logging


def configure_logging() -> None:
    """Configure application logging with a single stream handler."""
    logger = logging.getLogger("wpp_gateway")
    logger.setLevel(logging.INFO)
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


def log_unhandled_loop_errors(
    loop: asyncio.AbstractEventLoop, context: dict[str, object]
) -> None:
    """Log failures of detached tasks without stopping the process."""
    logger = logging.getLogger("wpp_gateway.unhandled")
    exc = context.get("exception")
    message = context.get("message", "Unhandled error in event loop")
    if isinstance(exc, BaseException):
        logger.error("%s", message, exc_info=exc)
    else:
        logger.error("%s", message)
