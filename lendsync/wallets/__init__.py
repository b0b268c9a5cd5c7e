"""Signing providers."""
from .node import NodeWallet

__all__ = ["NodeWallet"]
