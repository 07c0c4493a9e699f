"""
Time-to-expiry buckets for deal expiration notices.

Each bucket owns one band of the timeline ahead of the sweep time. The band
is half-open: it excludes its lower edge (the next smaller bucket's reach,
or ``now`` for the smallest bucket) and includes its upper edge
(``now + span``). Bands never overlap, so a deal sits in at most one bucket
per sweep.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

NOTIFICATION_KEY_PREFIX = "notification_"


def _format_days(days: float) -> str:
    # 5 -> "5", 0.042 -> "0.042"
    return f"{days:g}"


@dataclass(frozen=True, slots=True)
class IntervalBucket:
    """A named time-to-expiry window."""

    threshold_days: float
    label: str
    span: timedelta | None = None

    def __post_init__(self) -> None:
        if self.threshold_days <= 0:
            raise ValueError("threshold_days must be positive")
        if self.span is None:
            object.__setattr__(self, "span", timedelta(days=self.threshold_days))

    @property
    def key(self) -> str:
        """Key under which receipts for this bucket are stored on a deal."""
        return f"{NOTIFICATION_KEY_PREFIX}{_format_days(self.threshold_days)}"

    def upper_bound(self, now: datetime) -> datetime:
        return now + self.span


@dataclass(frozen=True, slots=True)
class BucketWindow:
    """A bucket resolved against a concrete sweep time."""

    bucket: IntervalBucket
    start: datetime  # exclusive
    end: datetime  # inclusive

    def contains(self, moment: datetime) -> bool:
        return self.start < moment <= self.end


# Declared order is the processing order. 1 hour is stored as 0.042 days
# but its window is exactly one hour.
DEFAULT_BUCKETS: tuple[IntervalBucket, ...] = (
    IntervalBucket(threshold_days=5, label="5 days"),
    IntervalBucket(threshold_days=3, label="3 days"),
    IntervalBucket(threshold_days=1, label="1 day"),
    IntervalBucket(threshold_days=0.042, label="1 hour", span=timedelta(hours=1)),
)

BUCKET_KEYS: frozenset[str] = frozenset(bucket.key for bucket in DEFAULT_BUCKETS)


def resolve_windows(
    now: datetime, buckets: tuple[IntervalBucket, ...] | list[IntervalBucket] = DEFAULT_BUCKETS
) -> list[BucketWindow]:
    """
    Resolve every bucket to its band relative to ``now``.

    Returned in the declared bucket order.
    """
    keys = [bucket.key for bucket in buckets]
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate bucket keys: {keys}")

    spans = sorted({bucket.span for bucket in buckets})
    windows = []
    for bucket in buckets:
        index = spans.index(bucket.span)
        floor = spans[index - 1] if index > 0 else timedelta(0)
        windows.append(BucketWindow(bucket=bucket, start=now + floor, end=bucket.upper_bound(now)))
    return windows
