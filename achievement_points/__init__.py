"""
Achievement points core - a points ledger for achievements and reward redemptions.

The package keeps per-user point balances consistent on top of any key-value
store that offers single-record conditional writes:

- Versioned balance records updated with optimistic concurrency
- Exactly-once achievement awards through a Pending -> Credited record
- Exactly-once redemptions keyed by the caller's request id
- Pluggable store backends (in-memory, PostgreSQL)

Because no state is kept in process memory, the services can run as many
stateless replicas against the same store.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from achievement_points.bootstrap import PointsCore, available_backends, build_core
from achievement_points.config import Settings, get_settings
from achievement_points.errors import (
    BusinessRuleError,
    InsufficientBalance,
    PointsError,
    RetryExhausted,
    RewardNotFound,
    StoreUnavailable,
    TransientError,
)
from achievement_points.services import (
    AchievementService,
    PointLedger,
    RetryPolicy,
    RewardService,
)
from achievement_points.store import InMemoryStore, KeyValueStore
from achievement_points.utils.context import OperationContext
from achievement_points.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Wiring
    "PointsCore",
    "available_backends",
    "build_core",
    # Services
    "AchievementService",
    "PointLedger",
    "RetryPolicy",
    "RewardService",
    "OperationContext",
    # Store
    "InMemoryStore",
    "KeyValueStore",
    # Errors
    "BusinessRuleError",
    "InsufficientBalance",
    "PointsError",
    "RetryExhausted",
    "RewardNotFound",
    "StoreUnavailable",
    "TransientError",
    # Logging
    "configure_logging",
    "get_logger",
]
