from .logging import configure_logging, get_logger
from .middleware import (
    CorrelationMiddleware,
    bind_correlation_id,
    current_correlation_id,
    reset_correlation_id,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "CorrelationMiddleware",
    "bind_correlation_id",
    "current_correlation_id",
    "reset_correlation_id",
]
