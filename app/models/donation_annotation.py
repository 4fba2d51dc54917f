"""Disputes and fraud warnings attached to a donation. Advisory only: no money moves."""

from typing import Any, Dict, List
from psycopg2.extras import Json
from app.utils.db import get_db_connection, rows_to_dicts


def add_donation_annotation(
    donation_id: str,
    *,
    kind: str,
    stripe_object_id: str,
    status: str,
    detail: Dict[str, Any] | None = None,
) -> bool:
    """Returns True if inserted, False if this processor object was already recorded."""
    sql = """
    INSERT INTO donation_annotations (donation_id, kind, stripe_object_id, status, detail)
    VALUES (%s, %s, %s, %s, %s)
    ON CONFLICT (stripe_object_id) DO NOTHING
    RETURNING id
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (donation_id, kind, stripe_object_id, status, Json(detail or {})))
        row = cur.fetchone()
        conn.commit()
        return row is not None


def list_annotations_for_donation(donation_id: str) -> List[Dict[str, Any]]:
    sql = """
      SELECT kind, stripe_object_id, status, detail, created_at
      FROM donation_annotations
      WHERE donation_id = %s
      ORDER BY created_at ASC
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (donation_id,))
        return rows_to_dicts(cur, cur.fetchall())
