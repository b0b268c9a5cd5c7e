"""Protocol interfaces for the position sync engine."""
from .ledger import LedgerGateway
from .notifier import Notifier
from .wallet import Wallet

__all__ = ["LedgerGateway", "Notifier", "Wallet"]
