"""
Deal expiration feature package.

Everything behind the periodic expiration sweep lives here: the domain
model and bucket configuration, the Postgres repositories, the engine with
its email/SMS rendering, and the job that schedules it.
"""

# Re-export the primary building blocks for easy access.
from .domain.buckets import DEFAULT_BUCKETS, IntervalBucket  # noqa: F401
from .domain.models import Deal, Member, SweepResult  # noqa: F401
from .jobs.expiration_job import deal_expiration_job, start_deal_expiration_scheduler  # noqa: F401
from .services.engine import ExpirationNotificationEngine  # noqa: F401
