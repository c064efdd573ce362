"""kd observability package.

Structured logging for the deploy and watch pipeline.
"""

from kd.observability.logging import LogContext, configure_logging, get_logger


__all__ = ["LogContext", "configure_logging", "get_logger"]
