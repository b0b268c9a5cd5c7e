"""Oracle staleness and sanity checks."""
from __future__ import annotations

import logging
from enum import Enum

from ..errors import OracleInvalidError, OracleStaleError
from ..models import OracleReading

logger = logging.getLogger(__name__)


class OracleStatus(str, Enum):
    OK = "ok"
    STALE = "stale"
    INVALID = "invalid"


def validate(reading: OracleReading, now: int, max_age: int) -> OracleStatus:
    """Judge whether a price reading is usable.

    A non-positive price is INVALID regardless of age; otherwise a reading
    older than ``max_age`` seconds is STALE.
    """
    if reading.price <= 0:
        return OracleStatus.INVALID
    if now - reading.updated_at > max_age:
        return OracleStatus.STALE
    return OracleStatus.OK


def ensure_usable(reading: OracleReading, now: int, max_age: int) -> None:
    """Raise the matching oracle error unless the reading is OK."""
    status = validate(reading, now, max_age)
    if status is OracleStatus.INVALID:
        logger.warning("Feed %s returned invalid price %s", reading.feed_id, reading.price)
        raise OracleInvalidError(
            f"{reading.feed_id} oracle returning invalid price (<=0)",
            raw=reading,
        )
    if status is OracleStatus.STALE:
        age = reading.age(now)
        logger.warning(
            "Feed %s is stale: age %ds > max %ds", reading.feed_id, age, max_age
        )
        raise OracleStaleError(
            f"{reading.feed_id} oracle data is stale ({age // 86400} days old)",
            raw=reading,
        )
