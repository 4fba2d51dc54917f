"""
Ledger handlers, one per processor event kind.

Each handler receives the event's `data.object` dict and either returns a
small result dict or raises. Handlers run only after the event id has been
admitted by the idempotency gate, and each one is also safe to re-run on its
own (reconciliation replays them):

  checkout completed   donation insert is unique on the processor references
  payment succeeded    writes the same charge id again
  charge refunded      refund rows are unique on the refund id; totals are
                       re-summed from the counted refund rows, never applied as deltas
  refund updated       a refund status only moves forward, so replays are no-ops
  dispute / fraud      annotations are unique on the processor object id
  account updated      re-applies the same capability flags

Donation lifecycle: absent -> recorded -> partially_refunded -> fully_refunded;
a refund that later fails moves the donation back to the status its
remaining refunds imply.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from app.errors import LedgerInvariantError, UnresolvableReference
from app.models.campaign import get_campaign
from app.models.donation import (
    apply_refunds,
    attach_charge_to_donation,
    get_donation_by_charge,
    get_donation_by_pi,
    record_donation,
    UNCOUNTED_REFUND_STATUSES,
)
from app.models.donation_annotation import add_donation_annotation
from app.models.org import set_onboarding_status
from app.realtime import broadcast_campaign_update, mask_email
from app.tasks import enqueue_donation_notifications
from app.utils.cache import r, progress_cache_key
from app.utils.metrics import payments_failed_total
from app.utils.platform_fees import application_fee_cents
from app.utils.stripe_gateway import list_refunds, object_id

log = logging.getLogger(__name__)

PAID_STATUSES = ("paid", "no_payment_required")
MESSAGE_MAX_LEN = 500


def _metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    return (obj or {}).get("metadata") or {}


def _metadata_cents(md: Dict[str, Any], key: str) -> Optional[int]:
    raw = md.get(key)
    if raw in (None, ""):
        return None
    try:
        value = int(str(raw))
    except ValueError:
        return None
    return value if value >= 0 else None


def _campaign_changed(campaign_id: str, event: str, payload: Dict[str, Any]) -> None:
    try:
        r().delete(progress_cache_key(campaign_id))
    except Exception as e:
        log.warning("[ledger] progress cache invalidation failed for %s: %s", campaign_id, e)
    broadcast_campaign_update(campaign_id, event, payload)


def _queue_notifications(donation_id: str) -> None:
    try:
        enqueue_donation_notifications(donation_id)
    except Exception as e:
        log.warning("[ledger] notification dispatch for %s failed: %s", donation_id, e)


def _find_donation(charge_id: Optional[str], pi_id: Optional[str]) -> Optional[Dict[str, Any]]:
    d = get_donation_by_charge(charge_id) if charge_id else None
    if d is None and pi_id:
        d = get_donation_by_pi(pi_id)
    return d


# --- checkout ---------------------------------------------------------------


def donation_split(session: Dict[str, Any]) -> tuple[int, int]:
    """
    (gross_cents, platform_fee_cents) for a completed checkout session.

    The fee is the one quoted at checkout (session metadata); sessions created
    without it fall back to the configured rate on the donation part.
    """
    gross = session.get("amount_total")
    if isinstance(gross, bool) or not isinstance(gross, int) or gross <= 0:
        raise LedgerInvariantError(f"session {session.get('id')} has no positive amount_total")

    md = _metadata(session)
    fee = _metadata_cents(md, "platform_fee_cents")
    if fee is None:
        tip = _metadata_cents(md, "tip_cents") or 0
        tip = min(tip, gross)
        fee = application_fee_cents(gross - tip, tip_cents=tip)
    if fee > gross:
        raise LedgerInvariantError(
            f"session {session.get('id')} fee {fee} exceeds amount {gross}"
        )
    return gross, fee


def handle_checkout_completed(session: Dict[str, Any]) -> Dict[str, Any]:
    session_id = session.get("id")
    payment_status = session.get("payment_status")
    if payment_status and payment_status not in PAID_STATUSES:
        log.info("[ledger] session %s not paid yet (%s)", session_id, payment_status)
        return {"skipped": "unpaid", "session_id": session_id}

    md = _metadata(session)
    campaign_id = md.get("campaign_id")
    if not campaign_id:
        raise UnresolvableReference("campaign", None)
    camp = get_campaign(campaign_id)
    if not camp:
        raise UnresolvableReference("campaign", campaign_id)

    gross, fee = donation_split(session)
    customer = session.get("customer_details") or {}
    donor_email = md.get("donor_email") or customer.get("email") or session.get("customer_email")
    donor_name = md.get("donor_name") or customer.get("name")
    anonymous = str(md.get("anonymous", "")).lower() == "true"

    result = record_donation(
        org_id=camp["org_id"],
        campaign_id=campaign_id,
        gross_cents=gross,
        platform_fee_cents=fee,
        currency=(session.get("currency") or camp.get("currency") or "usd").lower(),
        checkout_session_id=session_id,
        payment_intent_id=object_id(session.get("payment_intent")),
        donor_name=donor_name or None,
        donor_email=donor_email or None,
        anonymous=anonymous,
        message=(md.get("message") or "")[:MESSAGE_MAX_LEN] or None,
        reward_tier_id=md.get("reward_tier_id") or None,
    )
    donation = result["donation"]
    if donation is None:
        raise LedgerInvariantError(f"session {session_id} conflicted but no donation found")

    if result["created"]:
        log.info(
            "[ledger] donation %s recorded campaign=%s gross=%s fee=%s net=%s",
            donation["id"],
            campaign_id,
            gross,
            fee,
            donation["net_cents"],
        )
        if result["tier_claimed"] is False:
            log.error(
                "[alert] reward tier %s over its limit; donation %s kept without a claim",
                md.get("reward_tier_id"),
                donation["id"],
            )
        _campaign_changed(
            campaign_id,
            "donation",
            {
                "campaign_id": campaign_id,
                "amount_cents": gross,
                "donor": None if anonymous else mask_email(donor_email),
                "raised_cents": result["raised_cents"],
                "currency": donation.get("currency", "usd"),
            },
        )
    else:
        log.info("[ledger] session %s already recorded as %s", session_id, donation["id"])

    _queue_notifications(donation["id"])
    return {"donation_id": donation["id"], "created": result["created"]}


# --- payment intents ----------------------------------------------------------


def charge_id_for_payment_intent(pi: Dict[str, Any]) -> Optional[str]:
    charge = object_id(pi.get("latest_charge"))
    if charge:
        return charge
    charges = ((pi.get("charges") or {}).get("data")) or []
    return charges[0].get("id") if charges else None


def handle_payment_succeeded(pi: Dict[str, Any]) -> Dict[str, Any]:
    pi_id = pi.get("id")
    charge_id = charge_id_for_payment_intent(pi)
    if not charge_id:
        log.info("[ledger] payment intent %s has no charge yet", pi_id)
        return {"skipped": "no_charge", "payment_intent": pi_id}

    updated = attach_charge_to_donation(pi_id, charge_id)
    if not updated:
        raise UnresolvableReference("donation", pi_id)
    return {"donation_id": updated["id"], "charge_id": charge_id}


def handle_payment_failed(pi: Dict[str, Any]) -> Dict[str, Any]:
    err = pi.get("last_payment_error") or {}
    decline = err.get("decline_code") or err.get("code") or "unknown"
    payments_failed_total.labels(decline).inc()
    log.info(
        "[ledger] payment failed pi=%s campaign=%s reason=%s",
        pi.get("id"),
        _metadata(pi).get("campaign_id"),
        err.get("message") or "unknown",
    )
    return {"logged": True}


# --- refunds ------------------------------------------------------------------


def _refund_row(rf: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    amount = rf.get("amount")
    if not rf.get("id") or isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        return None
    return {
        "id": rf["id"],
        "amount": amount,
        "reason": rf.get("reason"),
        "status": rf.get("status"),
        "created": rf.get("created"),
    }


def collect_refunds(charge: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    The complete refund list for a charge, failed and canceled refunds
    included so their status reaches the stored rows. Uses the embedded list
    when it is complete, otherwise asks the processor.
    """
    embedded = charge.get("refunds")
    if isinstance(embedded, dict) and not embedded.get("has_more"):
        items = embedded.get("data") or []
    else:
        items = list_refunds(charge["id"])
    return [row for row in map(_refund_row, items) if row]


def total_refunded(refunds: List[Dict[str, Any]]) -> int:
    seen: Dict[str, int] = {}
    for rf in refunds:
        if rf.get("status") not in UNCOUNTED_REFUND_STATUSES:
            seen[rf["id"]] = rf["amount"]
    return sum(seen.values())


def _apply(d: Dict[str, Any], refunds: List[Dict[str, Any]], source: str) -> Dict[str, Any]:
    result = apply_refunds(d["id"], refunds)
    if result["inserted"] or result["updated"]:
        log.info(
            "[ledger] donation %s refunds +%s updated %s now %s (%s) via %s",
            d["id"],
            result["inserted"],
            result["updated"],
            result["refunded_cents"],
            result["status"],
            source,
        )
    if result["fully_refunded_now"]:
        _campaign_changed(
            d["campaign_id"],
            "donation_refunded",
            {"campaign_id": d["campaign_id"], "amount_cents": d["gross_cents"]},
        )
    if result["refund_reversed"]:
        log.warning(
            "[ledger] donation %s left fully_refunded after a refund failed; net returned to campaign %s",
            d["id"],
            d["campaign_id"],
        )
        _campaign_changed(
            d["campaign_id"],
            "donation_refund_reversed",
            {"campaign_id": d["campaign_id"], "amount_cents": d["gross_cents"]},
        )
    return {
        "donation_id": d["id"],
        "refunded_cents": result["refunded_cents"],
        "new_refunds": result["inserted"],
        "updated_refunds": result["updated"],
        "status": result["status"],
    }


def handle_charge_refunded(charge: Dict[str, Any]) -> Dict[str, Any]:
    charge_id = charge.get("id")
    pi_id = object_id(charge.get("payment_intent"))
    d = _find_donation(charge_id, pi_id)
    if not d:
        raise UnresolvableReference("donation", charge_id)

    refunds = collect_refunds(charge)
    total = total_refunded(refunds)
    if total > d["gross_cents"]:
        raise LedgerInvariantError(
            f"charge {charge_id} refunds {total} exceed donation gross {d['gross_cents']}"
        )

    if charge_id and not d.get("stripe_charge_id") and pi_id:
        attach_charge_to_donation(pi_id, charge_id)

    out = _apply(d, refunds, "charge.refunded")
    if out["refunded_cents"] != total:
        log.warning(
            "[alert] donation %s refund rows total %s, charge lists %s",
            d["id"],
            out["refunded_cents"],
            total,
        )
    return out


def handle_refund_updated(refund: Dict[str, Any]) -> Dict[str, Any]:
    """A single refund changed status (e.g. a pending refund failed)."""
    row = _refund_row(refund)
    if not row:
        raise LedgerInvariantError(f"refund {refund.get('id')} has no usable amount")
    charge_id = object_id(refund.get("charge"))
    d = _find_donation(charge_id, object_id(refund.get("payment_intent")))
    if not d:
        raise UnresolvableReference("donation", charge_id)
    return _apply(d, [row], "refund.updated")


# --- annotations --------------------------------------------------------------


def handle_dispute_created(dispute: Dict[str, Any]) -> Dict[str, Any]:
    charge_id = object_id(dispute.get("charge"))
    d = _find_donation(charge_id, object_id(dispute.get("payment_intent")))
    if not d:
        raise UnresolvableReference("donation", charge_id)

    inserted = add_donation_annotation(
        d["id"],
        kind="dispute",
        stripe_object_id=dispute["id"],
        status="pending",
        detail={"reason": dispute.get("reason"), "amount_cents": dispute.get("amount")},
    )
    if inserted:
        log.warning("[ledger] dispute %s opened on donation %s", dispute["id"], d["id"])
    return {"donation_id": d["id"], "annotated": inserted}


def handle_fraud_warning(warning: Dict[str, Any]) -> Dict[str, Any]:
    charge_id = object_id(warning.get("charge"))
    d = _find_donation(charge_id, object_id(warning.get("payment_intent")))
    if not d:
        raise UnresolvableReference("donation", charge_id)

    inserted = add_donation_annotation(
        d["id"],
        kind="fraud_warning",
        stripe_object_id=warning["id"],
        status="open",
        detail={
            "fraud_type": warning.get("fraud_type"),
            "actionable": warning.get("actionable"),
        },
    )
    if inserted:
        log.warning(
            "[ledger] fraud warning %s (%s) on donation %s",
            warning["id"],
            warning.get("fraud_type"),
            d["id"],
        )
    return {"donation_id": d["id"], "annotated": inserted}


# --- connected accounts -------------------------------------------------------


def handle_account_updated(account: Dict[str, Any]) -> Dict[str, Any]:
    account_id = account.get("id")
    charges_enabled = bool(account.get("charges_enabled"))
    complete = bool(account.get("details_submitted")) and charges_enabled
    updated = set_onboarding_status(
        account_id,
        onboarding_complete=complete,
        charges_enabled=charges_enabled,
        payouts_enabled=bool(account.get("payouts_enabled")),
    )
    if not updated:
        raise UnresolvableReference("organizer account", account_id)
    return {"org_id": updated["id"], "onboarding_complete": complete}
