from typing import Any
from app.utils.db import get_db_connection, row_to_dict

ACCEPTING_STATUSES = ("active",)


def get_campaign(campaign_id: str) -> dict[str, Any] | None:
    sql = """
    SELECT id, org_id, title, slug, status, goal_cents, raised_cents, currency, created_at, updated_at
    FROM campaigns WHERE id = %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (campaign_id,))
        return row_to_dict(cur, cur.fetchone())


def get_campaign_for_checkout(campaign_id: str) -> dict[str, Any] | None:
    """
    Campaign plus its organizer's connected payout account, in one read.
    """
    sql = """
    SELECT c.id, c.org_id, c.title, c.slug, c.status, c.currency,
           o.name AS organizer_name,
           o.stripe_account_id,
           o.stripe_onboarding_complete
    FROM campaigns c
    JOIN organizations o ON o.id = c.org_id
    WHERE c.id = %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (campaign_id,))
        return row_to_dict(cur, cur.fetchone())


def get_progress(campaign_id: str) -> dict[str, Any] | None:
    sql = """
    SELECT c.goal_cents, c.raised_cents,
           (SELECT COUNT(*)::int FROM donations d
             WHERE d.campaign_id = c.id AND d.status <> 'fully_refunded') AS donations_count,
           (SELECT MAX(d.created_at)::text FROM donations d WHERE d.campaign_id = c.id) AS last_donation_at
    FROM campaigns c
    WHERE c.id = %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (campaign_id,))
        return row_to_dict(cur, cur.fetchone())
