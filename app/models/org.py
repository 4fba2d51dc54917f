from typing import Any
from app.utils.db import get_db_connection, row_to_dict


def get_organization(org_id: str) -> dict[str, Any] | None:
    sql = """
    SELECT id, name, contact_email, stripe_account_id, stripe_onboarding_complete
    FROM organizations WHERE id = %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (org_id,))
        return row_to_dict(cur, cur.fetchone())


def set_onboarding_status(
    stripe_account_id: str,
    *,
    onboarding_complete: bool,
    charges_enabled: bool,
    payouts_enabled: bool,
) -> dict[str, Any] | None:
    """
    Apply the processor-reported capability flags to the organizer that owns
    this connected account. Returns None if no organizer has the account.
    """
    sql = """
    UPDATE organizations
       SET stripe_onboarding_complete = %s,
           charges_enabled = %s,
           payouts_enabled = %s,
           updated_at = now()
     WHERE stripe_account_id = %s
    RETURNING id, stripe_account_id, stripe_onboarding_complete
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(
            sql,
            (onboarding_complete, charges_enabled, payouts_enabled, stripe_account_id),
        )
        row = row_to_dict(cur, cur.fetchone())
        conn.commit()
        return row
