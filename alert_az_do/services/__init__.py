"""
业务服务层
"""
from .group_lock import group_lock
from .receiver_service import ReceiverService, build_client
from .reconciler import ReconcileAction, Reconciler, build_fingerprint_query

__all__ = [
    "group_lock",
    "ReceiverService",
    "build_client",
    "ReconcileAction",
    "Reconciler",
    "build_fingerprint_query",
]
