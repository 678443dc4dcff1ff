"""Execution module for trade legs, transfers and capital sizing."""

from crossarb.execution.executor import TradeExecutor
from crossarb.execution.risk import CapitalCheckResult, CapitalPolicy
from crossarb.execution.signer import GateioSigner, RequestSigner
from crossarb.execution.transfer import TransferBridge, TransferOutcome


__all__ = [
    "CapitalCheckResult",
    "CapitalPolicy",
    "GateioSigner",
    "RequestSigner",
    "TradeExecutor",
    "TransferBridge",
    "TransferOutcome",
]
