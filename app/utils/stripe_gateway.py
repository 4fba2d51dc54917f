"""
Thin wrapper around the Stripe API calls this service makes.

Everything returns plain dicts so callers never depend on StripeObject.
Without STRIPE_SECRET_KEY the checkout call returns a fake session (dev mode)
and the read calls return nothing.
"""

from __future__ import annotations
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

import stripe

STRIPE_SECRET = os.getenv("STRIPE_SECRET_KEY", "")

log = logging.getLogger(__name__)


def _client():
    stripe.api_key = STRIPE_SECRET
    return stripe


def as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


def object_id(value: Any) -> Optional[str]:
    """Expandable Stripe fields are either an id string or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return (value or {}).get("id")


def create_checkout_session(
    params: Dict[str, Any], idempotency_key: str | None = None
) -> Dict[str, Any]:
    if not STRIPE_SECRET:
        fake_id = f"cs_test_{uuid.uuid4().hex}"
        log.info("[stripe][dev] fake checkout session %s", fake_id)
        return {
            "id": fake_id,
            "url": f"{params.get('success_url', '')}#dev-{fake_id}",
            "dev_mode": True,
        }
    session = _client().checkout.Session.create(
        **params, idempotency_key=idempotency_key
    )
    return as_dict(session)


def retrieve_payment_intent(pi_id: str) -> Dict[str, Any]:
    if not STRIPE_SECRET:
        return {}
    pi = _client().PaymentIntent.retrieve(pi_id, expand=["latest_charge"])
    return as_dict(pi)


def list_refunds(charge_id: str) -> List[Dict[str, Any]]:
    """Full refund list for a charge, following pagination."""
    if not STRIPE_SECRET:
        return []
    page = _client().Refund.list(charge=charge_id, limit=100)
    return [as_dict(rf) for rf in page.auto_paging_iter()]


def list_completed_checkout_sessions(
    created_gte: int, limit: int = 200
) -> List[Dict[str, Any]]:
    if not STRIPE_SECRET:
        return []
    page = _client().checkout.Session.list(
        created={"gte": created_gte}, status="complete", limit=100
    )
    out: List[Dict[str, Any]] = []
    for s in page.auto_paging_iter():
        out.append(as_dict(s))
        if len(out) >= limit:
            break
    return out
