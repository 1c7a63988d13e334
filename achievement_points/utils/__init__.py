"""
Utilities package for the achievement points core.

Exports shared helpers for logging and request cancellation.
Keep this package lightweight and free of domain-specific logic.
"""

from achievement_points.utils.context import OperationContext
from achievement_points.utils.logging import configure_logging, get_logger

__all__ = [
    "OperationContext",
    "configure_logging",
    "get_logger",
]
