"""
Background Jobs Module

Handles scheduled tasks for:
- Expiring unfinished orders and returning their stock
- Purging expired listings
"""

from app.jobs.scheduler import JobScheduler
from app.jobs.order_jobs import reap_expired_orders, ReapReport
from app.jobs.listing_jobs import purge_expired_listings, PurgeReport

__all__ = [
    "JobScheduler",
    "reap_expired_orders",
    "ReapReport",
    "purge_expired_listings",
    "PurgeReport",
]
