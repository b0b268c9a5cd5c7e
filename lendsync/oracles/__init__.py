"""Oracle reading validation."""
from .validator import OracleStatus, ensure_usable, validate

__all__ = ["OracleStatus", "ensure_usable", "validate"]
