"""Escrow signer integration."""

from escrow.client import EscrowSignerClient

__all__ = [
    "EscrowSignerClient",
]
