"""
Routes a verified, admitted processor event to its ledger handler.

The set of handled kinds is closed. Anything else is logged and acknowledged
so new processor event types never turn into redelivery storms.
"""

from __future__ import annotations
import enum
import logging
from typing import Any, Callable, Dict, Optional

from app.services import ledger_service

log = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    CHARGE_REFUND_UPDATED = "charge.refund.updated"
    REFUND_UPDATED = "refund.updated"
    CHARGE_DISPUTE_CREATED = "charge.dispute.created"
    FRAUD_WARNING_CREATED = "radar.early_fraud_warning.created"
    ACCOUNT_UPDATED = "account.updated"


def resolve_kind(event_type: str | None) -> Optional[EventKind]:
    try:
        return EventKind(event_type)
    except ValueError:
        return None


def handler_for(kind: EventKind) -> Callable[[Dict[str, Any]], Dict[str, Any]]:
    if kind in (EventKind.CHECKOUT_COMPLETED, EventKind.CHECKOUT_ASYNC_PAYMENT_SUCCEEDED):
        return ledger_service.handle_checkout_completed
    if kind is EventKind.PAYMENT_SUCCEEDED:
        return ledger_service.handle_payment_succeeded
    if kind is EventKind.PAYMENT_FAILED:
        return ledger_service.handle_payment_failed
    if kind is EventKind.CHARGE_REFUNDED:
        return ledger_service.handle_charge_refunded
    if kind in (EventKind.CHARGE_REFUND_UPDATED, EventKind.REFUND_UPDATED):
        return ledger_service.handle_refund_updated
    if kind is EventKind.CHARGE_DISPUTE_CREATED:
        return ledger_service.handle_dispute_created
    if kind is EventKind.FRAUD_WARNING_CREATED:
        return ledger_service.handle_fraud_warning
    if kind is EventKind.ACCOUNT_UPDATED:
        return ledger_service.handle_account_updated
    raise AssertionError(f"no handler for {kind}")


def dispatch(event_type: str | None, obj: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run the handler for `event_type`. Handler errors propagate to the caller;
    unknown kinds return {"ignored": event_type}.
    """
    kind = resolve_kind(event_type)
    if kind is None:
        log.info("[webhook] ignoring unhandled event type %s", event_type)
        return {"ignored": event_type or "unknown"}
    return handler_for(kind)(obj or {})
