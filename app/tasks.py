"""
Background tasks for RQ (Redis Queue).

Run worker: poetry run rq worker -u $REDIS_URL --with-scheduler
"""

from __future__ import annotations
import logging
import os

from app.services.notification_service import dispatch_donation_notifications
from app.utils.cache import REDIS_URL

log = logging.getLogger(__name__)


def _queue():
    from redis import Redis
    from rq import Queue

    conn = Redis.from_url(REDIS_URL, decode_responses=False)
    return Queue("default", connection=conn)


def enqueue_donation_notifications(donation_id: str) -> bool:
    """
    Enqueue donor receipt + organizer notice for a donation.
    Returns True if enqueued, False if run synchronously (no queue).
    """
    use_queue = os.getenv("USE_EMAIL_QUEUE", "0") == "1"
    if not use_queue:
        dispatch_donation_notifications(donation_id)
        return False

    try:
        _queue().enqueue(dispatch_donation_notifications, donation_id, job_timeout="2m")
        return True
    except Exception as e:
        log.warning("[tasks] RQ enqueue failed (%s), sending notifications inline", e)
        dispatch_donation_notifications(donation_id)
        return False


def process_admitted_event_job(event_id: str) -> dict:
    from app.services.webhook_service import process_admitted_event

    return process_admitted_event(event_id)


def enqueue_event_processing(event_id: str) -> bool:
    """
    Hand an already-admitted webhook event to a worker. Returns False when the
    queue is down; the caller then runs the handler inline with the event it
    already holds.
    """
    try:
        _queue().enqueue(process_admitted_event_job, event_id, job_timeout="5m")
        return True
    except Exception as e:
        log.warning("[tasks] RQ enqueue failed for %s: %s", event_id, e)
        return False


def run_reconciliation_job(since_hours: int = 72, limit: int = 200) -> dict:
    """Scheduled sweep: `rq-scheduler` or cron enqueues this every few minutes."""
    from app.services.reconciliation_service import run_reconciliation

    return run_reconciliation(since_hours=since_hours, limit=limit)


def enqueue_reconciliation(since_hours: int = 72, limit: int = 200) -> str:
    job = _queue().enqueue(
        run_reconciliation_job, since_hours=since_hours, limit=limit, job_timeout="30m"
    )
    return job.id
