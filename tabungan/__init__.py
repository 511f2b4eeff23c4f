"""
Tabungan Keluarga - Source Package

A household finance tracker: storage accounts (cash, bank, e-wallet, gold),
an income / expense / savings / transfer ledger that keeps account balances
in step with it, savings goals and expense budgets, and dashboard statistics.

DESIGN PRINCIPLES:
1. Balances only change through the ledger's reconciliation
2. A write either fully lands or does not land at all
3. Reads degrade, writes fail loudly
4. Gold is valued by weight, never by balance
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Tabungan Keluarga Team"
