"""
Platform fee calculation for destination charges.

The platform keeps `floor(amount * bps / 10000)` of every donation plus any
tip the donor adds on top. Everything is integer minor units (cents); no
floating point is involved anywhere, so the fee quoted at checkout and the
split recorded by the webhook always agree to the cent.

  amount=2500, bps=800, tip=0   -> fee=200, transfer=2300
  amount=2500, bps=800, tip=300 -> charge=2800, fee=500, transfer=2300
"""

import os
from typing import Tuple

PLATFORM_FEE_BPS = int(os.getenv("PLATFORM_FEE_BPS", "800"))
BPS_DENOMINATOR = 10_000


def _require_cents(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer number of cents")
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


def application_fee_cents(
    amount_cents: int, fee_bps: int | None = None, tip_cents: int = 0
) -> int:
    """
    Return the platform's application fee for a donation of `amount_cents`.
    """
    amount = _require_cents("amount_cents", amount_cents)
    tip = _require_cents("tip_cents", tip_cents)
    bps = PLATFORM_FEE_BPS if fee_bps is None else _require_cents("fee_bps", fee_bps)
    return (amount * bps) // BPS_DENOMINATOR + tip


def split_charge(
    amount_cents: int, fee_bps: int | None = None, tip_cents: int = 0
) -> Tuple[int, int, int]:
    """
    Returns (gross_cents, fee_cents, transfer_cents) for a checkout.

    gross is what the donor is charged (donation + tip); transfer is what the
    organizer's connected account receives.
    """
    fee = application_fee_cents(amount_cents, fee_bps, tip_cents)
    gross = amount_cents + tip_cents
    return gross, fee, gross - fee
