from typing import Any, Dict, List, Optional

from app.errors import LedgerInvariantError
from app.utils.db import get_db_connection, row_to_dict, rows_to_dicts

DONATION_COLS = """
    id, org_id, campaign_id, gross_cents, platform_fee_cents, net_cents,
    refunded_cents, currency, status, stripe_checkout_session_id,
    stripe_payment_intent_id, stripe_charge_id, donor_name, donor_email,
    anonymous, message, reward_tier_id, created_at, updated_at
"""

STATUS_RECORDED = "recorded"
STATUS_PARTIALLY_REFUNDED = "partially_refunded"
STATUS_FULLY_REFUNDED = "fully_refunded"

UNCOUNTED_REFUND_STATUSES = ("failed", "canceled")
REFUND_STATUS_RANK = {"pending": 0, "requires_action": 0, "succeeded": 1, "failed": 2, "canceled": 2}


def refund_status(gross_cents: int, refunded_cents: int) -> str:
    if refunded_cents <= 0:
        return STATUS_RECORDED
    if refunded_cents >= gross_cents:
        return STATUS_FULLY_REFUNDED
    return STATUS_PARTIALLY_REFUNDED


def record_donation(
    *,
    org_id: str,
    campaign_id: str,
    gross_cents: int,
    platform_fee_cents: int,
    currency: str,
    checkout_session_id: str | None,
    payment_intent_id: str | None,
    donor_name: str | None = None,
    donor_email: str | None = None,
    anonymous: bool = False,
    message: str | None = None,
    reward_tier_id: str | None = None,
) -> Dict[str, Any]:
    """
    Insert the donation and apply its counter increments in one transaction.

    The insert is keyed on the processor references (unique), so recording the
    same checkout twice leaves exactly one row and one increment. Returns
    {"donation", "created", "raised_cents", "tier_claimed"}; tier_claimed is
    None without a tier and False when the tier was already at its limit.
    """
    insert_sql = f"""
    INSERT INTO donations (
        org_id, campaign_id, gross_cents, platform_fee_cents, currency,
        stripe_checkout_session_id, stripe_payment_intent_id,
        donor_name, donor_email, anonymous, message, reward_tier_id
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT DO NOTHING
    RETURNING {DONATION_COLS}
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(
            insert_sql,
            (
                org_id,
                campaign_id,
                gross_cents,
                platform_fee_cents,
                currency,
                checkout_session_id,
                payment_intent_id,
                donor_name,
                donor_email,
                anonymous,
                message,
                reward_tier_id,
            ),
        )
        donation = row_to_dict(cur, cur.fetchone())
        if donation is None:
            cur.execute(
                f"""SELECT {DONATION_COLS} FROM donations
                    WHERE stripe_checkout_session_id = %s OR stripe_payment_intent_id = %s
                    LIMIT 1""",
                (checkout_session_id, payment_intent_id),
            )
            existing = row_to_dict(cur, cur.fetchone())
            conn.commit()
            return {
                "donation": existing,
                "created": False,
                "raised_cents": None,
                "tier_claimed": None,
            }

        cur.execute(
            """
            UPDATE campaigns
               SET raised_cents = raised_cents + %s, updated_at = now()
             WHERE id = %s
            RETURNING raised_cents
            """,
            (donation["net_cents"], campaign_id),
        )
        raised = cur.fetchone()

        tier_claimed = None
        if reward_tier_id:
            cur.execute(
                """
                UPDATE reward_tiers
                   SET claimed_count = claimed_count + 1
                 WHERE id = %s AND campaign_id = %s
                   AND (quantity_limit IS NULL OR claimed_count < quantity_limit)
                RETURNING claimed_count
                """,
                (reward_tier_id, campaign_id),
            )
            tier_claimed = cur.fetchone() is not None

        conn.commit()
        return {
            "donation": donation,
            "created": True,
            "raised_cents": raised[0] if raised else None,
            "tier_claimed": tier_claimed,
        }


def get_donation(donation_id: str) -> Optional[Dict[str, Any]]:
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(f"SELECT {DONATION_COLS} FROM donations WHERE id = %s", (donation_id,))
        return row_to_dict(cur, cur.fetchone())


def get_donation_by_pi(pi_id: str) -> Optional[Dict[str, Any]]:
    sql = f"SELECT {DONATION_COLS} FROM donations WHERE stripe_payment_intent_id = %s"
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (pi_id,))
        return row_to_dict(cur, cur.fetchone())


def get_donation_by_session(session_id: str) -> Optional[Dict[str, Any]]:
    sql = f"SELECT {DONATION_COLS} FROM donations WHERE stripe_checkout_session_id = %s"
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (session_id,))
        return row_to_dict(cur, cur.fetchone())


def get_donation_by_charge(charge_id: str) -> Optional[Dict[str, Any]]:
    sql = f"SELECT {DONATION_COLS} FROM donations WHERE stripe_charge_id = %s"
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (charge_id,))
        return row_to_dict(cur, cur.fetchone())


def attach_charge_to_donation(pi_id: str, charge_id: str) -> Optional[Dict[str, Any]]:
    """Backfill the canonical charge id. Returns None when no donation has this PI."""
    sql = """
    UPDATE donations
       SET stripe_charge_id = %s, updated_at = now()
     WHERE stripe_payment_intent_id = %s
    RETURNING id, campaign_id, stripe_charge_id
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (charge_id, pi_id))
        row = row_to_dict(cur, cur.fetchone())
        conn.commit()
        return row


def refund_status_advances(old: str | None, new: str | None) -> bool:
    """Refund statuses only move forward: pending -> succeeded -> failed/canceled."""
    return REFUND_STATUS_RANK.get(new, 0) > REFUND_STATUS_RANK.get(old, 0)


def apply_refunds(donation_id: str, refunds: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Record refunds not seen before, move known refunds to a later status, and
    set refunded_cents to the sum of the counted refund rows, all under a row
    lock on the donation.

    `refunds` is [{"id", "amount", "reason", "status", "created"}], either the
    complete list for the charge or a single updated refund. When the donation
    moves to fully_refunded its net amount leaves the campaign total, once;
    when a failed refund takes it back out of fully_refunded the net returns.
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """SELECT campaign_id, gross_cents, net_cents, refunded_cents, status
                 FROM donations WHERE id = %s FOR UPDATE""",
            (donation_id,),
        )
        row = cur.fetchone()
        if not row:
            raise LedgerInvariantError(f"donation {donation_id} vanished during refund")
        campaign_id, gross, net, previous_refunded, previous_status = row

        cur.execute(
            "SELECT stripe_refund_id, status FROM refunds WHERE donation_id = %s",
            (donation_id,),
        )
        known = dict(cur.fetchall())

        inserted: List[str] = []
        updated: List[str] = []
        for rf in refunds:
            if rf["id"] in known:
                if refund_status_advances(known[rf["id"]], rf.get("status")):
                    cur.execute(
                        "UPDATE refunds SET status = %s WHERE stripe_refund_id = %s",
                        (rf.get("status"), rf["id"]),
                    )
                    known[rf["id"]] = rf.get("status")
                    updated.append(rf["id"])
                continue
            cur.execute(
                """
                INSERT INTO refunds (donation_id, stripe_refund_id, amount_cents, reason, status, processed_at)
                VALUES (%s, %s, %s, %s, %s, COALESCE(to_timestamp(%s), now()))
                ON CONFLICT (stripe_refund_id) DO NOTHING
                RETURNING stripe_refund_id
                """,
                (
                    donation_id,
                    rf["id"],
                    rf["amount"],
                    rf.get("reason"),
                    rf.get("status"),
                    rf.get("created"),
                ),
            )
            hit = cur.fetchone()
            if hit:
                inserted.append(hit[0])
                known[hit[0]] = rf.get("status")

        cur.execute(
            """SELECT COALESCE(SUM(amount_cents), 0) FROM refunds
                WHERE donation_id = %s AND COALESCE(status, '') NOT IN %s""",
            (donation_id, UNCOUNTED_REFUND_STATUSES),
        )
        total = int(cur.fetchone()[0])
        if total > gross:
            raise LedgerInvariantError(
                f"refunds {total} exceed gross {gross} for donation {donation_id}"
            )

        status = refund_status(gross, total)
        cur.execute(
            "UPDATE donations SET refunded_cents = %s, status = %s, updated_at = now() WHERE id = %s",
            (total, status, donation_id),
        )

        fully_refunded_now = (
            status == STATUS_FULLY_REFUNDED and previous_status != STATUS_FULLY_REFUNDED
        )
        refund_reversed = (
            previous_status == STATUS_FULLY_REFUNDED and status != STATUS_FULLY_REFUNDED
        )
        if fully_refunded_now or refund_reversed:
            cur.execute(
                """
                UPDATE campaigns
                   SET raised_cents = raised_cents + %s, updated_at = now()
                 WHERE id = %s
                """,
                (-net if fully_refunded_now else net, campaign_id),
            )
        conn.commit()

    return {
        "donation_id": donation_id,
        "campaign_id": campaign_id,
        "inserted": inserted,
        "updated": updated,
        "previous_refunded_cents": int(previous_refunded),
        "refunded_cents": total,
        "status": status,
        "fully_refunded_now": fully_refunded_now,
        "refund_reversed": refund_reversed,
    }


def list_refunds_for_donation(donation_id: str) -> List[Dict[str, Any]]:
    sql = """
      SELECT stripe_refund_id, amount_cents, reason, status, processed_at
      FROM refunds WHERE donation_id = %s ORDER BY processed_at ASC
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (donation_id,))
        return rows_to_dicts(cur, cur.fetchall())


def list_donations_missing_charge(limit: int = 200) -> List[Dict[str, Any]]:
    sql = """
      SELECT id, campaign_id, stripe_payment_intent_id
      FROM donations
      WHERE stripe_charge_id IS NULL AND stripe_payment_intent_id IS NOT NULL
      ORDER BY created_at ASC
      LIMIT %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (limit,))
        return rows_to_dicts(cur, cur.fetchall())
