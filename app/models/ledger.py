from typing import Any, Dict, List, Optional
from app.models.donation import UNCOUNTED_REFUND_STATUSES
from app.utils.db import get_db_connection, rows_to_dicts


def ledger_by_campaign() -> List[Dict[str, Any]]:
    sql = "SELECT * FROM vw_ledger_by_campaign ORDER BY gross_cents DESC"
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql)
        return rows_to_dicts(cur, cur.fetchall())


def ledger_daily(start: Optional[str] = None, end: Optional[str] = None) -> List[Dict[str, Any]]:
    sql = """
      SELECT * FROM vw_ledger_daily
      WHERE (%s::date IS NULL OR day >= %s::date)
        AND (%s::date IS NULL OR day <= %s::date)
      ORDER BY day ASC
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (start, start, end, end))
        return rows_to_dicts(cur, cur.fetchall())


def audit_campaign_totals(limit: int = 100) -> List[Dict[str, Any]]:
    """
    Campaigns whose raised_cents differs from the sum of net amounts of their
    donations that are not fully refunded. Read-only: drift is reported for an
    operator, never overwritten from this snapshot.
    """
    sql = """
      SELECT c.id AS campaign_id, c.raised_cents,
             COALESCE(SUM(d.net_cents) FILTER (WHERE d.status <> 'fully_refunded'), 0)::bigint
               AS expected_cents
      FROM campaigns c
      LEFT JOIN donations d ON d.campaign_id = c.id
      GROUP BY c.id, c.raised_cents
      HAVING c.raised_cents <>
             COALESCE(SUM(d.net_cents) FILTER (WHERE d.status <> 'fully_refunded'), 0)
      LIMIT %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (limit,))
        return rows_to_dicts(cur, cur.fetchall())


def audit_refund_totals(limit: int = 100) -> List[Dict[str, Any]]:
    """Donations whose refunded_cents disagrees with their counted refund rows."""
    sql = """
      SELECT d.id AS donation_id, d.refunded_cents,
             COALESCE(SUM(r.amount_cents), 0)::bigint AS refund_rows_cents
      FROM donations d
      LEFT JOIN refunds r
        ON r.donation_id = d.id AND COALESCE(r.status, '') NOT IN %s
      GROUP BY d.id, d.refunded_cents
      HAVING d.refunded_cents <> COALESCE(SUM(r.amount_cents), 0)
      LIMIT %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (UNCOUNTED_REFUND_STATUSES, limit))
        return rows_to_dicts(cur, cur.fetchall())
