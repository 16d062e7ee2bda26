"""Background control loops."""

from giftmgr.control.reconciler import ReconcileReport, ReconcileUpdate, Reconciler

__all__ = ["Reconciler", "ReconcileReport", "ReconcileUpdate"]
