# tasks/__init__.py
from tasks.reconciliation import reconcile_payments, reconciliation_loop

__all__ = ["reconcile_payments", "reconciliation_loop"]
