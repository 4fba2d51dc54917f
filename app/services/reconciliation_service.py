"""
Reconciliation sweep. Repairs what the webhook path could not finish:

- replays admitted events whose handler failed (webhook_event_failures)
- records paid checkout sessions the processor has but the ledger does not
- backfills charge ids (and any refunds on them) for donations missing one
- retries donor receipts / organizer notices that failed to send
- reports campaign and refund totals that drifted from their rows

Every step goes through the same idempotent handlers the webhook uses, so
running the sweep twice, or concurrently with live deliveries, is harmless.
"""

from __future__ import annotations
import logging
import time
from typing import Any, Dict

from app.models.donation import (
    attach_charge_to_donation,
    get_donation_by_session,
    list_donations_missing_charge,
)
from app.models.ledger import audit_campaign_totals, audit_refund_totals
from app.models.receipt_dispatch import list_pending_dispatches
from app.models.stripe_event import (
    list_unresolved_failures,
    record_event_failure,
    resolve_event_failure,
)
from app.services import ledger_service
from app.services.event_router import dispatch
from app.services.notification_service import dispatch_donation_notifications
from app.utils.stripe_gateway import list_completed_checkout_sessions, retrieve_payment_intent

log = logging.getLogger(__name__)

MAX_REPLAY_ATTEMPTS = 10


def replay_failed_events(limit: int = 100) -> Dict[str, int]:
    report = {"replayed": 0, "failed": 0}
    for row in list_unresolved_failures(limit=limit, max_attempts=MAX_REPLAY_ATTEMPTS):
        obj = ((row.get("raw") or {}).get("data") or {}).get("object") or {}
        try:
            dispatch(row["type"], obj)
        except Exception as e:
            report["failed"] += 1
            log.warning(
                "[reconcile] replay of %s failed again (attempt %s): %s",
                row["event_id"],
                row["attempts"] + 1,
                e,
            )
            record_event_failure(row["event_id"], row["type"], f"{type(e).__name__}: {e}")
            continue
        resolve_event_failure(row["event_id"])
        report["replayed"] += 1
        log.info("[reconcile] replayed %s (%s)", row["event_id"], row["type"])
    return report


def sweep_checkout_sessions(since_hours: int = 72, limit: int = 200) -> Dict[str, int]:
    """Record paid sessions from the last `since_hours` that have no donation row."""
    report = {"checked": 0, "recorded": 0, "failed": 0}
    created_gte = int(time.time()) - since_hours * 3600
    for session in list_completed_checkout_sessions(created_gte, limit=limit):
        if not (session.get("metadata") or {}).get("campaign_id"):
            continue
        report["checked"] += 1
        if get_donation_by_session(session["id"]):
            continue
        try:
            result = ledger_service.handle_checkout_completed(session)
        except Exception as e:
            report["failed"] += 1
            log.error("[reconcile] could not record session %s: %s", session["id"], e)
            continue
        if result.get("created"):
            report["recorded"] += 1
            log.warning(
                "[reconcile] session %s was missing, recorded as donation %s",
                session["id"],
                result["donation_id"],
            )
    return report


def backfill_charges(limit: int = 200) -> Dict[str, int]:
    report = {"attached": 0, "refunds_applied": 0, "failed": 0}
    for d in list_donations_missing_charge(limit=limit):
        pi_id = d["stripe_payment_intent_id"]
        try:
            pi = retrieve_payment_intent(pi_id)
            charge_id = ledger_service.charge_id_for_payment_intent(pi) if pi else None
            if not charge_id:
                continue
            attach_charge_to_donation(pi_id, charge_id)
            report["attached"] += 1

            charge = pi.get("latest_charge")
            if isinstance(charge, dict) and (charge.get("amount_refunded") or 0) > 0:
                ledger_service.handle_charge_refunded(charge)
                report["refunds_applied"] += 1
        except Exception as e:
            report["failed"] += 1
            log.error("[reconcile] charge backfill for donation %s failed: %s", d["id"], e)
    return report


def retry_pending_notifications(limit: int = 100) -> Dict[str, int]:
    report = {"retried": 0}
    for row in list_pending_dispatches(limit=limit):
        dispatch_donation_notifications(row["donation_id"])
        report["retried"] += 1
    return report


def audit() -> Dict[str, Any]:
    campaigns = audit_campaign_totals()
    refunds = audit_refund_totals()
    for row in campaigns:
        log.error(
            "[alert] campaign %s raised_cents=%s but donations sum to %s",
            row["campaign_id"],
            row["raised_cents"],
            row["expected_cents"],
        )
    for row in refunds:
        log.error(
            "[alert] donation %s refunded_cents=%s but refund rows sum to %s",
            row["donation_id"],
            row["refunded_cents"],
            row["refund_rows_cents"],
        )
    return {"campaign_drift": campaigns, "refund_drift": refunds}


def run_reconciliation(since_hours: int = 72, limit: int = 200) -> Dict[str, Any]:
    started = time.monotonic()
    report: Dict[str, Any] = {
        "events": replay_failed_events(limit=limit),
        "sessions": sweep_checkout_sessions(since_hours=since_hours, limit=limit),
        "charges": backfill_charges(limit=limit),
        "notifications": retry_pending_notifications(limit=limit),
        "audit": audit(),
    }
    report["elapsed_ms"] = int((time.monotonic() - started) * 1000)
    log.info(
        "[reconcile] done in %sms events=%s sessions=%s charges=%s notifications=%s",
        report["elapsed_ms"],
        report["events"],
        report["sessions"],
        report["charges"],
        report["notifications"],
    )
    return report
