"""
Infrastructure package.

Logging configuration shared by every module.
"""

from gridarb.infra.logging_cfg import LOGGER_NAME, build_logger, log_event

__all__ = [
    "LOGGER_NAME",
    "build_logger",
    "log_event",
]
