"""
Donor checkout: validate the request, quote the platform fee and open a
processor checkout session as a destination charge to the organizer.

No ledger row is written here. The donation is recorded by the webhook once
the processor reports the session paid; the metadata set below is what lets
that handler rebuild the context without another campaign lookup.
"""

from __future__ import annotations
import logging
import os
from typing import Any, Dict, Optional

import stripe

from app.errors import (
    CampaignNotActive,
    CampaignNotFound,
    InvalidCheckoutRequest,
    InvalidRewardTier,
    OrganizerNotOnboarded,
    PaymentProcessorError,
    RateLimited,
)
from app.models.campaign import ACCEPTING_STATUSES, get_campaign_for_checkout
from app.models.reward_tier import get_reward_tier
from app.utils.metrics import checkout_requests_total
from app.utils.platform_fees import split_charge
from app.utils.rate_limit import is_rate_limited
from app.utils.stripe_gateway import create_checkout_session

CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
MIN_DONATION_CENTS = int(os.getenv("MIN_DONATION_CENTS", "100"))
MAX_DONATION_CENTS = int(os.getenv("MAX_DONATION_CENTS", "99999999"))
CHECKOUT_RATE_LIMIT = int(os.getenv("CHECKOUT_RATE_LIMIT", "10"))
CHECKOUT_RATE_WINDOW = int(os.getenv("CHECKOUT_RATE_WINDOW", "60"))
PUBLIC_SITE_URL = os.getenv("PUBLIC_SITE_URL", "http://localhost:5173").rstrip("/")
MESSAGE_MAX_LEN = 500

log = logging.getLogger(__name__)


def _int_cents(name: str, value: Any, *, required: bool) -> int:
    if value is None:
        if required:
            raise InvalidCheckoutRequest(f"{name} is required")
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCheckoutRequest(f"{name} must be an integer number of minor units")
    if value < 0:
        raise InvalidCheckoutRequest(f"{name} must be >= 0")
    return value


def parse_checkout_body(body: Dict[str, Any]) -> Dict[str, Any]:
    """Turn the JSON body into create_checkout kwargs, rejecting malformed input."""
    campaign_id = body.get("campaign_id")
    campaign_id = campaign_id.strip() if isinstance(campaign_id, str) else None
    if not campaign_id:
        raise InvalidCheckoutRequest("campaign_id is required")

    donor_email = body.get("donor_email")
    donor_email = donor_email.strip() if isinstance(donor_email, str) else ""
    if "@" not in donor_email:
        raise InvalidCheckoutRequest("donor_email is required")

    return {
        "campaign_id": campaign_id,
        "amount_cents": _int_cents("amount_minor_units", body.get("amount_minor_units"), required=True),
        "tip_cents": _int_cents("tip_minor_units", body.get("tip_minor_units"), required=False),
        "donor_email": donor_email,
        "donor_name": str(body.get("donor_name") or "").strip() or None,
        "anonymous": body.get("anonymous") is True,
        "message": str(body.get("message") or "")[:MESSAGE_MAX_LEN],
        "reward_tier_id": body.get("reward_tier_id") or None,
        "success_url": body.get("success_url") or None,
        "cancel_url": body.get("cancel_url") or None,
    }


def validate_amount(amount_cents: int, tip_cents: int = 0) -> None:
    if amount_cents < MIN_DONATION_CENTS:
        raise InvalidCheckoutRequest(
            f"minimum donation is {MIN_DONATION_CENTS} minor units"
        )
    if amount_cents + tip_cents > MAX_DONATION_CENTS:
        raise InvalidCheckoutRequest("donation amount too large")


def _check_reward_tier(tier_id: str, campaign_id: str, amount_cents: int) -> Dict[str, Any]:
    tier = get_reward_tier(tier_id, campaign_id)
    if not tier:
        raise InvalidRewardTier("invalid reward tier")
    if not tier.get("is_active"):
        raise InvalidRewardTier("reward tier is not available")
    limit = tier.get("quantity_limit")
    if limit is not None and tier.get("claimed_count", 0) >= limit:
        raise InvalidRewardTier("reward tier is sold out")
    if amount_cents < int(tier.get("minimum_amount_cents") or 0):
        raise InvalidRewardTier(
            f"minimum donation for this reward tier is {tier['minimum_amount_cents']} minor units"
        )
    return tier


def build_session_params(
    *,
    camp: Dict[str, Any],
    amount_cents: int,
    tip_cents: int,
    donor_email: str,
    donor_name: Optional[str],
    anonymous: bool,
    message: str,
    tier: Optional[Dict[str, Any]],
    success_url: Optional[str],
    cancel_url: Optional[str],
) -> Dict[str, Any]:
    gross, fee, _transfer = split_charge(amount_cents, tip_cents=tip_cents)
    metadata = {
        "campaign_id": str(camp["id"]),
        "organizer_id": str(camp["org_id"]),
        "reward_tier_id": str(tier["id"]) if tier else "",
        "donor_name": donor_name or "",
        "donor_email": donor_email,
        "anonymous": "true" if anonymous else "false",
        "message": message[:MESSAGE_MAX_LEN],
        "amount_cents": str(amount_cents),
        "tip_cents": str(tip_cents),
        "platform_fee_cents": str(fee),
    }
    description = (
        f"{tier['title']} - {tier.get('description') or ''}".strip(" -")
        if tier
        else f"Support {camp.get('organizer_name') or 'the organizer'}'s campaign"
    )
    return {
        "mode": "payment",
        "success_url": success_url
        or f"{PUBLIC_SITE_URL}/donation/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": cancel_url or f"{PUBLIC_SITE_URL}/campaigns/{camp.get('slug') or camp['id']}",
        "customer_email": donor_email,
        "line_items": [
            {
                "price_data": {
                    "currency": (camp.get("currency") or CURRENCY).lower(),
                    "product_data": {
                        "name": f"Donation to {camp['title']}",
                        "description": description,
                    },
                    "unit_amount": gross,
                },
                "quantity": 1,
            }
        ],
        "payment_intent_data": {
            "application_fee_amount": fee,
            "transfer_data": {"destination": camp["stripe_account_id"]},
            "metadata": metadata,
        },
        "metadata": metadata,
    }


def create_checkout(
    *,
    client_ip: str,
    campaign_id: str,
    amount_cents: int,
    donor_email: str,
    tip_cents: int = 0,
    donor_name: str | None = None,
    anonymous: bool = False,
    message: str = "",
    reward_tier_id: str | None = None,
    success_url: str | None = None,
    cancel_url: str | None = None,
    idempotency_key: str | None = None,
) -> Dict[str, Any]:
    """
    Returns {"checkout_url", "session_id"}.

    Raises InvalidCheckoutRequest (or a subclass), RateLimited or
    PaymentProcessorError. The processor is only called once every check passed.
    """
    if is_rate_limited(f"checkout:{client_ip}", CHECKOUT_RATE_LIMIT, CHECKOUT_RATE_WINDOW):
        checkout_requests_total.labels("rate_limited").inc()
        raise RateLimited(retry_after=CHECKOUT_RATE_WINDOW)

    try:
        validate_amount(amount_cents, tip_cents)

        camp = get_campaign_for_checkout(campaign_id)
        if not camp:
            raise CampaignNotFound("campaign not found")
        if camp.get("status") not in ACCEPTING_STATUSES:
            raise CampaignNotActive("campaign is not active")
        if not camp.get("stripe_account_id") or not camp.get("stripe_onboarding_complete"):
            raise OrganizerNotOnboarded("campaign organizer has not completed payout setup")

        tier = (
            _check_reward_tier(reward_tier_id, campaign_id, amount_cents)
            if reward_tier_id
            else None
        )
    except InvalidCheckoutRequest as e:
        checkout_requests_total.labels(e.code).inc()
        raise

    params = build_session_params(
        camp=camp,
        amount_cents=amount_cents,
        tip_cents=tip_cents,
        donor_email=donor_email,
        donor_name=donor_name,
        anonymous=anonymous,
        message=message,
        tier=tier,
        success_url=success_url,
        cancel_url=cancel_url,
    )
    try:
        session = create_checkout_session(params, idempotency_key=idempotency_key)
    except stripe.StripeError as e:
        log.error("[checkout] processor rejected session for %s: %s", campaign_id, e)
        checkout_requests_total.labels("processor_error").inc()
        raise PaymentProcessorError("payment processor unavailable") from e

    log.info(
        "[checkout] session %s campaign=%s amount=%s tip=%s fee=%s",
        session.get("id"),
        campaign_id,
        amount_cents,
        tip_cents,
        params["payment_intent_data"]["application_fee_amount"],
    )
    checkout_requests_total.labels("created").inc()
    return {"checkout_url": session.get("url"), "session_id": session.get("id")}
