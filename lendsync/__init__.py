"""Position and risk synchronization engine for a single-collateral lending protocol."""
from .errors import ErrorKind, LendingError
from .interest import interest_projections, projected_interest
from .models import (
    ActivityKind,
    ActivityRecord,
    OracleReading,
    Position,
    ProtocolAggregate,
    Snapshot,
)
from .oracles import OracleStatus, validate
from .risk import RiskAssessment, RiskBand, classify, compute_health_factor

__version__ = "0.1.0"

__all__ = [
    "ActivityKind",
    "ActivityRecord",
    "ErrorKind",
    "LendingError",
    "OracleReading",
    "OracleStatus",
    "Position",
    "ProtocolAggregate",
    "RiskAssessment",
    "RiskBand",
    "Snapshot",
    "classify",
    "compute_health_factor",
    "interest_projections",
    "projected_interest",
    "validate",
]
