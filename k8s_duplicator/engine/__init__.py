"""
Engine Module - Classification, mirroring and the reconcile cycle.
"""

from .classify import Inventory, Role, classify, partition
from .mirror import build_duplicate, duplicate_matches
from .reconcile import Reconciler, generate_reconcile_id
from .triggers import FULL_RESYNC, ReconcileRequest, route

__all__ = [
    "Inventory",
    "Role",
    "classify",
    "partition",
    "build_duplicate",
    "duplicate_matches",
    "Reconciler",
    "generate_reconcile_id",
    "FULL_RESYNC",
    "ReconcileRequest",
    "route",
]
