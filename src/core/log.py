import logging

from prefect import get_run_logger
from prefect.exceptions import MissingContextError


def get_logger(name: str) -> logging.Logger:
    """Return a logger usable both inside and outside Prefect contexts."""
    try:
        return get_run_logger()  # type: ignore[return-value]
    except MissingContextError:
        return logging.getLogger(name)
