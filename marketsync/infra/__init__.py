"""
Infrastructure package.

Ledger fullnode client and logging configuration.
"""

from marketsync.infra.ledger_client import LedgerQueryClient, WalletProvider
from marketsync.infra.logging_cfg import build_logger, log_event

__all__ = [
    "LedgerQueryClient",
    "WalletProvider",
    "build_logger",
    "log_event",
]
