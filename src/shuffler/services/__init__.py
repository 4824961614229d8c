"""Session services: monitoring, forwarding, recovery and the state machine."""

from shuffler.services.balance_monitor import BalanceMonitor, WatchHandle
from shuffler.services.fund_forwarder import (
    ForwardQuote,
    ForwardResult,
    ForwardStatus,
    FundForwarder,
    compute_quote,
    select_network,
)
from shuffler.services.recovery import RecoveryDocument, RecoveryExporter
from shuffler.services.session import (
    LogEntry,
    SessionController,
    SessionState,
    Severity,
    ShuffleSession,
    TransferStatus,
    reduce,
)

__all__ = [
    "BalanceMonitor",
    "ForwardQuote",
    "ForwardResult",
    "ForwardStatus",
    "FundForwarder",
    "LogEntry",
    "RecoveryDocument",
    "RecoveryExporter",
    "SessionController",
    "SessionState",
    "Severity",
    "ShuffleSession",
    "TransferStatus",
    "WatchHandle",
    "compute_quote",
    "reduce",
    "select_network",
]
