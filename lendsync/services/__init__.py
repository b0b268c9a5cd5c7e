"""Service modules"""
from .engine import LendingEngine
from .preflight import (
    IntentState,
    Operation,
    TransactionIntent,
    TransactionOutcome,
    TransactionPreflight,
    ValidationResult,
)
from .scheduler import PositionSyncScheduler, Resource

__all__ = [
    "IntentState",
    "LendingEngine",
    "Operation",
    "PositionSyncScheduler",
    "Resource",
    "TransactionIntent",
    "TransactionOutcome",
    "TransactionPreflight",
    "ValidationResult",
]
