"""Notifier protocol: alert channel abstraction."""
from typing import Protocol


class Notifier(Protocol):
    """Delivers risk alerts (loud) and status logs (optionally muted)."""

    async def send_alert(self, message: str, subject: str = "") -> bool: ...

    async def send_log(self, message: str, silent: bool = True) -> bool: ...
