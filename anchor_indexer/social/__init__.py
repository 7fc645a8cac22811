"""Follow graph between tracked repos and the accounts they follow."""

from anchor_indexer.social.reconciler import FollowGraphReconciler, FollowSyncResult
from anchor_indexer.social.repository import FollowRepository, FollowStats

__all__ = [
    "FollowGraphReconciler",
    "FollowRepository",
    "FollowStats",
    "FollowSyncResult",
]
