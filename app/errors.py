"""
Error taxonomy for the webhook ledger and the checkout path.

Webhook failures are never shown to donors; checkout failures are returned
synchronously to the donor-facing client with `status_code`.
"""

from __future__ import annotations


class LedgerError(Exception):
    status_code = 500
    code = "ledger_error"

    def to_dict(self) -> dict:
        return {"error": str(self) or self.code, "code": self.code}


class InvalidSignature(LedgerError):
    status_code = 400
    code = "invalid_signature"


class TransientStorageFailure(LedgerError):
    status_code = 503
    code = "transient_storage_failure"


class UnresolvableReference(LedgerError):
    """A donation / campaign / account named by an event could not be found."""

    code = "unresolvable_reference"

    def __init__(self, kind: str, ref: str | None):
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} not found: {ref}")


class LedgerInvariantError(LedgerError):
    code = "ledger_invariant"


class InvalidCheckoutRequest(LedgerError):
    status_code = 400
    code = "invalid_checkout_request"


class CampaignNotFound(InvalidCheckoutRequest):
    status_code = 404
    code = "campaign_not_found"


class CampaignNotActive(InvalidCheckoutRequest):
    status_code = 409
    code = "campaign_not_active"


class OrganizerNotOnboarded(InvalidCheckoutRequest):
    status_code = 409
    code = "organizer_not_onboarded"


class InvalidRewardTier(InvalidCheckoutRequest):
    code = "invalid_reward_tier"


class RateLimited(LedgerError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int = 60):
        self.retry_after = retry_after
        super().__init__("rate limit exceeded")

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["retry_after"] = self.retry_after
        return out


class PaymentProcessorError(LedgerError):
    status_code = 502
    code = "payment_processor_error"
