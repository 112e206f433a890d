from .logger import (
    get_logger,
    log_operation,
    setup_logging,
)

__all__ = [
    "get_logger",
    "log_operation",
    "setup_logging",
]
