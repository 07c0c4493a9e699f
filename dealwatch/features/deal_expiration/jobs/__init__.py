"""
Job runners for the deal expiration feature.
"""

from .expiration_job import (
    DealExpirationJob,
    deal_expiration_job,
    get_deal_expiration_job_status,
    run_deal_expiration_once,
    start_deal_expiration_scheduler,
)

__all__ = [
    "DealExpirationJob",
    "deal_expiration_job",
    "get_deal_expiration_job_status",
    "run_deal_expiration_once",
    "start_deal_expiration_scheduler",
]
