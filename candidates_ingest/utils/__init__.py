"""
Utility functions and helpers.
"""
from candidates_ingest.utils.logging import (
    setup_logging,
    get_logger,
    LogContext,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "LogContext",
]
