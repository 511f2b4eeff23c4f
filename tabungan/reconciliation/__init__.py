"""Balance reconciliation package."""

from tabungan.reconciliation.reconciler import (
    AppliedLeg,
    BalanceLeg,
    BalanceReconciler,
    EffectSet,
    KeyedLocks,
    ReconciliationError,
    ReconciliationResult,
    TransactionValidationError,
    build_transaction,
    effect_of,
    reverse_effect_of,
)

__all__ = [
    "AppliedLeg",
    "BalanceLeg",
    "BalanceReconciler",
    "EffectSet",
    "KeyedLocks",
    "ReconciliationError",
    "ReconciliationResult",
    "TransactionValidationError",
    "build_transaction",
    "effect_of",
    "reverse_effect_of",
]
