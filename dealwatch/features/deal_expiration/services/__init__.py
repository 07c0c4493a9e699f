"""
Service layer for the deal expiration feature.
"""

from .engine import ExpirationNotificationEngine, MemberBatch
from .notifier import SMS_KIND_DEAL_EXPIRATION, SMS_KIND_GENERIC, DealNotifier

__all__ = [
    "SMS_KIND_DEAL_EXPIRATION",
    "SMS_KIND_GENERIC",
    "DealNotifier",
    "ExpirationNotificationEngine",
    "MemberBatch",
]
