"""
Donor receipts and organizer notices for recorded donations.

Delivery is best-effort: nothing in here raises into the webhook path. Each
channel is stamped in receipt_dispatch_log once sent, so re-running the
dispatch (handler replay, reconciliation sweep) never sends twice.
"""

from __future__ import annotations
import html
import logging
import os
from typing import Any, Dict, Optional, Tuple

from app.models.campaign import get_campaign
from app.models.donation import get_donation
from app.models.org import get_organization
from app.models.receipt_dispatch import (
    ensure_dispatch,
    mark_channel_sent,
    mark_dispatch_error,
)
from app.utils.email_sender import send_email
from app.utils.metrics import notifications_total

DEV_EMAIL_LOG_ONLY = os.getenv("DEV_EMAIL_LOG_ONLY", "1") == "1"
SITE_NAME = os.getenv("SITE_NAME", "Helping Hands")

TEMPLATE_DONATION_RECEIPT = "donation_receipt"
TEMPLATE_ORGANIZER_DONATION = "organizer_new_donation"

log = logging.getLogger(__name__)


def _money(cents: int, currency: str = "usd") -> str:
    return f"{int(cents) // 100}.{int(cents) % 100:02d} {currency.upper()}"


def render_template(kind: str, data: Dict[str, Any]) -> Tuple[str, str, str]:
    """Returns (subject, body_text, body_html)."""
    title = data.get("campaign_title") or "our campaign"
    amount = _money(data.get("amount_cents", 0), data.get("currency", "usd"))

    if kind == TEMPLATE_DONATION_RECEIPT:
        donor = data.get("donor_name") or "friend"
        subject = f"Thank you for your donation to {title}"
        lines = [
            f"Hi {donor},",
            "",
            f"Thank you for your donation of {amount} to {title}.",
            f"Date: {data.get('date') or ''}",
            f"Reference: {data.get('payment_ref') or ''}",
        ]
        if data.get("message"):
            lines += ["", f"Your message: {data['message']}"]
        lines += ["", f"-- {SITE_NAME}"]
    elif kind == TEMPLATE_ORGANIZER_DONATION:
        donor = "An anonymous donor" if data.get("anonymous") else (
            data.get("donor_name") or "A donor"
        )
        net = _money(data.get("net_cents", 0), data.get("currency", "usd"))
        subject = f"New donation to {title}"
        lines = [
            f"{donor} just donated {amount} to {title}.",
            f"After platform fees, {net} will be transferred to your account.",
            "",
            f"-- {SITE_NAME}",
        ]
    else:
        raise ValueError(f"unknown notification template: {kind}")

    body_text = "\n".join(lines)
    body_html = "".join(f"<p>{html.escape(line)}</p>" for line in lines if line)
    return subject, body_text, body_html


def notify(kind: str, recipient: str, data: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Render and send one notification. Returns (ok, provider_msg_id | error).
    """
    subject, body_text, body_html = render_template(kind, data)
    if DEV_EMAIL_LOG_ONLY:
        log.info("[email][dev] kind=%s to=%s subj=%s", kind, recipient, subject)
        return True, "dev-log"

    provider, detail = send_email(
        to_email=recipient,
        subject=subject,
        body_text=body_text,
        body_html=body_html,
    )
    return (provider is not None), detail


def _payment_ref(d: Dict[str, Any]) -> Optional[str]:
    return d.get("stripe_payment_intent_id") or d.get("stripe_checkout_session_id")


def _send_channel(
    channel: str,
    sent_at: Any,
    payment_ref: str,
    recipient: Optional[str],
    kind: str,
    data: Dict[str, Any],
) -> str:
    if sent_at:
        return "already_sent"
    if not recipient:
        return "skipped"

    ok, detail = notify(kind, recipient, data)
    if ok:
        mark_channel_sent(payment_ref, channel, detail)
        notifications_total.labels(channel, "sent").inc()
        return "sent"

    log.warning("[notify] %s for %s failed: %s", channel, payment_ref, detail)
    mark_dispatch_error(payment_ref, channel, detail or "unknown error")
    notifications_total.labels(channel, "failed").inc()
    return "failed"


def dispatch_donation_notifications(donation_id: str) -> Dict[str, str]:
    """
    Send the donor receipt and the organizer notice for one donation, each at
    most once. Never raises.
    """
    try:
        d = get_donation(donation_id)
        if not d:
            log.warning("[notify] donation %s not found", donation_id)
            return {"error": "donation not found"}
        payment_ref = _payment_ref(d)
        if not payment_ref:
            return {"error": "donation has no payment reference"}

        camp = get_campaign(d["campaign_id"]) or {}
        org = get_organization(d["org_id"]) or {}
        dispatch = ensure_dispatch(payment_ref, donation_id)

        data = {
            "campaign_title": camp.get("title"),
            "amount_cents": d["gross_cents"],
            "net_cents": d["net_cents"],
            "currency": d.get("currency") or "usd",
            "donor_name": d.get("donor_name"),
            "anonymous": bool(d.get("anonymous")),
            "message": d.get("message"),
            "date": str(d.get("created_at") or ""),
            "payment_ref": payment_ref,
        }
        return {
            "receipt": _send_channel(
                "receipt",
                dispatch.get("receipt_sent_at"),
                payment_ref,
                d.get("donor_email"),
                TEMPLATE_DONATION_RECEIPT,
                data,
            ),
            "organizer": _send_channel(
                "organizer",
                dispatch.get("organizer_notified_at"),
                payment_ref,
                org.get("contact_email"),
                TEMPLATE_ORGANIZER_DONATION,
                data,
            ),
        }
    except Exception as e:
        log.exception("[notify] dispatch for donation %s failed: %s", donation_id, e)
        return {"error": str(e)}
