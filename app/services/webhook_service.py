"""
Inbound processor webhooks: verify, admit once, route, and never lose an event.

Order of operations for one delivery:

1. signature check (pure, nothing stored on failure)      -> 400
2. insert the event id into stripe_events (unique)         -> 503 on storage error
   duplicate id                                            -> 200, no side effects
3. run the ledger handler, or enqueue it when deferred     -> 200
   a failing handler is recorded in webhook_event_failures and left to the
   reconciliation sweep; redelivery would be swallowed by step 2 anyway.
"""

from __future__ import annotations
import json
import logging
import os
import time
from typing import Any, Dict, Tuple

import psycopg2
import stripe

from app.errors import InvalidSignature, TransientStorageFailure
from app.models.stripe_event import get_event, mark_event_processed, record_event_failure
from app.services.event_router import dispatch, resolve_kind
from app.tasks import enqueue_event_processing
from app.utils.metrics import webhook_events_total

STRIPE_WEBHOOK_SECRETS = [
    s.strip() for s in os.getenv("STRIPE_WEBHOOK_SECRET", "").split(",") if s.strip()
]
WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))
DEV_SKIP = os.getenv("DEV_STRIPE_NO_VERIFY") == "1"
DEFER_PROCESSING = os.getenv("WEBHOOK_DEFER_PROCESSING", "0") == "1"

log = logging.getLogger(__name__)


def verify_signature(
    payload: bytes, sig_header: str | None, secret: str, max_skew: int = WEBHOOK_TOLERANCE
) -> bool:
    """
    True if one of the header's v1 signatures is HMAC-SHA256(secret, "<t>.<body>")
    and the signed timestamp is no more than `max_skew` seconds old.
    """
    if not secret or not sig_header:
        return False
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        return False
    try:
        stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance=max_skew)
    except stripe.SignatureVerificationError:
        return False
    return True


def verify_event(payload: bytes, sig_header: str | None) -> None:
    """Raise InvalidSignature unless some configured secret signed `payload`."""
    if DEV_SKIP:
        return
    for secret in STRIPE_WEBHOOK_SECRETS:
        if verify_signature(payload, sig_header, secret):
            return
    raise InvalidSignature("signature verification failed")


def parse_event(payload: bytes) -> Dict[str, Any]:
    try:
        raw = json.loads(payload.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError):
        raise ValueError("payload is not JSON")
    if not isinstance(raw, dict) or not raw.get("id") or not raw.get("type"):
        raise ValueError("event must carry id and type")
    if not isinstance((raw.get("data") or {}).get("object"), dict):
        raise ValueError("event must carry data.object")
    return raw


def admit_once(event_id: str, event_type: str, raw_event: Dict[str, Any]) -> bool:
    """
    True the first time an event id is seen, False for any later delivery.
    Storage errors other than the uniqueness conflict become TransientStorageFailure.
    """
    try:
        return mark_event_processed(event_id, event_type, raw_event)
    except psycopg2.Error as e:
        raise TransientStorageFailure(f"could not record event {event_id}: {e}") from e


def run_handler(event_id: str, event_type: str, obj: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run the ledger handler for an admitted event. Never raises: a failure is
    persisted for the reconciliation sweep and reported on the alert log.
    """
    try:
        result = dispatch(event_type, obj)
    except Exception as e:
        log.error(
            "[alert] handler for %s (%s) failed after admission: %s",
            event_id,
            event_type,
            e,
            exc_info=not hasattr(e, "code"),
        )
        webhook_events_total.labels(event_type, "failed").inc()
        try:
            record_event_failure(event_id, event_type, f"{type(e).__name__}: {e}")
        except Exception as rec_err:
            log.critical(
                "[alert] could not record failure for %s: %s; only the processor sweep can repair it",
                event_id,
                rec_err,
            )
        return {"ok": True, "deferred": True}

    outcome = "ignored" if "ignored" in result else "processed"
    webhook_events_total.labels(event_type, outcome).inc()
    return result


def process_admitted_event(event_id: str) -> Dict[str, Any]:
    """Worker entry point for deferred processing."""
    ev = get_event(event_id)
    if not ev:
        log.error("[webhook] deferred event %s not found", event_id)
        return {"error": "event not found"}
    raw = ev["raw"] or {}
    obj = (raw.get("data") or {}).get("object") or {}
    return run_handler(event_id, ev["type"], obj)


def process_stripe_event(
    payload: bytes, sig_header: str | None
) -> Tuple[int, Dict[str, Any]]:
    """
    Handle one webhook delivery. Returns (http_status, response_body).
    """
    if not STRIPE_WEBHOOK_SECRETS and not DEV_SKIP:
        log.error("[webhook] STRIPE_WEBHOOK_SECRET is not configured")
        return 500, {"error": "webhook secret not configured"}

    try:
        verify_event(payload, sig_header)
    except InvalidSignature as e:
        log.warning("[webhook] rejected delivery: %s", e)
        webhook_events_total.labels("unknown", "rejected").inc()
        return e.status_code, e.to_dict()

    try:
        raw_event = parse_event(payload)
    except ValueError as e:
        log.warning("[webhook] bad payload: %s", e)
        return 400, {"error": "bad payload"}

    event_id = raw_event["id"]
    ev_type = raw_event["type"]
    obj = raw_event["data"]["object"]
    started = time.monotonic()

    try:
        admitted = admit_once(event_id, ev_type, raw_event)
    except TransientStorageFailure as e:
        log.error("[webhook] %s", e)
        return e.status_code, e.to_dict()

    if not admitted:
        log.info("[webhook] duplicate delivery %s (%s)", event_id, ev_type)
        webhook_events_total.labels(ev_type, "duplicate").inc()
        return 200, {"ok": True, "duplicate": True}

    if DEFER_PROCESSING and resolve_kind(ev_type) is not None:
        if enqueue_event_processing(event_id):
            webhook_events_total.labels(ev_type, "deferred").inc()
            return 200, {"ok": True, "deferred": True}
        log.warning("[webhook] queue unavailable, handling %s inline", event_id)

    result = run_handler(event_id, ev_type, obj)
    log.info(
        "[webhook] %s (%s) handled in %.0fms",
        event_id,
        ev_type,
        (time.monotonic() - started) * 1000,
    )
    if "ignored" in result:
        return 200, {"ignored": result["ignored"]}
    if result.get("deferred"):
        return 200, result
    return 200, {"ok": True}
