"""Lending protocol gateway, ABI helpers and revert decoder."""
from .decoder import decode_failure, decode_revert_data
from .gateway import LendingProtocolGateway

__all__ = ["LendingProtocolGateway", "decode_failure", "decode_revert_data"]
