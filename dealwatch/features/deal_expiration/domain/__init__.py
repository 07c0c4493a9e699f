"""
Domain subpackage for the deal expiration feature.
"""

from .buckets import (
    BUCKET_KEYS,
    DEFAULT_BUCKETS,
    BucketWindow,
    IntervalBucket,
    resolve_windows,
)
from .models import (
    MEMBER_ROLE,
    Commitment,
    Deal,
    DealSize,
    DealStatus,
    DeliveryResult,
    Member,
    NotificationHistory,
    NotificationReceipt,
    SizeCommitment,
    SweepResult,
)
from .ports import AuditSink, DealStore, HealthCheck, MemberStore, Notifier

__all__ = [
    "BUCKET_KEYS",
    "DEFAULT_BUCKETS",
    "MEMBER_ROLE",
    "AuditSink",
    "BucketWindow",
    "Commitment",
    "Deal",
    "DealSize",
    "DealStatus",
    "DealStore",
    "DeliveryResult",
    "HealthCheck",
    "IntervalBucket",
    "Member",
    "MemberStore",
    "NotificationHistory",
    "NotificationReceipt",
    "Notifier",
    "SizeCommitment",
    "SweepResult",
    "resolve_windows",
]
