"""
receipt_dispatch_log: one row per payment reference, one timestamp per
channel. A channel counts as delivered once its *_sent_at column is set;
failures bump attempts and record "<channel>: <error>" in last_error; the
reconciliation sweep retries any channel that is unsent and has a recipient.
"""

from typing import Any, List, Dict, Optional
from app.utils.db import get_db_connection, row_to_dict, rows_to_dicts

PENDING_MIN_AGE_SECONDS = 600

CHANNEL_COLUMNS = {
    "receipt": ("receipt_sent_at", "receipt_provider_msg_id"),
    "organizer": ("organizer_notified_at", "organizer_provider_msg_id"),
}


def ensure_dispatch(payment_ref: str, donation_id: str) -> Dict[str, Any]:
    sql = """
      WITH ins AS (
        INSERT INTO receipt_dispatch_log (payment_ref, donation_id)
        VALUES (%s, %s)
        ON CONFLICT (payment_ref) DO NOTHING
        RETURNING payment_ref, donation_id, receipt_sent_at, organizer_notified_at, attempts, last_error
      )
      SELECT * FROM ins
      UNION ALL
      SELECT payment_ref, donation_id, receipt_sent_at, organizer_notified_at, attempts, last_error
      FROM receipt_dispatch_log WHERE payment_ref = %s
      LIMIT 1
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (payment_ref, donation_id, payment_ref))
        row = row_to_dict(cur, cur.fetchone())
        conn.commit()
        return row


def get_dispatch(payment_ref: str) -> Optional[Dict[str, Any]]:
    sql = """
      SELECT payment_ref, donation_id, receipt_sent_at, organizer_notified_at, attempts, last_error
      FROM receipt_dispatch_log WHERE payment_ref = %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (payment_ref,))
        return row_to_dict(cur, cur.fetchone())


def mark_channel_sent(payment_ref: str, channel: str, provider_msg_id: str | None) -> bool:
    """
    Stamp the channel as sent. Only the first stamp wins; returns False if the
    channel had already been marked by someone else. An error recorded for the
    other channel is left in place.
    """
    sent_col, msg_col = CHANNEL_COLUMNS[channel]
    sql = f"""
      UPDATE receipt_dispatch_log
         SET {sent_col} = now(), {msg_col} = %s, attempts = attempts + 1,
             last_error = CASE WHEN last_error LIKE %s THEN NULL ELSE last_error END
       WHERE payment_ref = %s AND {sent_col} IS NULL
      RETURNING payment_ref
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (provider_msg_id, f"{channel}:%", payment_ref))
        row = cur.fetchone()
        conn.commit()
        return row is not None


def mark_dispatch_error(payment_ref: str, channel: str, error: str) -> None:
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(
            """
            UPDATE receipt_dispatch_log
               SET attempts = attempts + 1, last_error = %s
             WHERE payment_ref = %s
            """,
            (f"{channel}: {error}"[:2000], payment_ref),
        )
        conn.commit()


def list_pending_dispatches(
    limit: int = 100, max_attempts: int = 5, min_age_seconds: int = PENDING_MIN_AGE_SECONDS
) -> List[Dict[str, Any]]:
    """
    Rows with a channel still unsent while its recipient exists. Rows with a
    recorded error are due at once; rows never attempted (the worker died
    before sending) only after `min_age_seconds`, so an in-flight send is not
    raced.
    """
    sql = """
      SELECT l.payment_ref, l.donation_id, l.receipt_sent_at, l.organizer_notified_at,
             l.attempts, l.last_error
      FROM receipt_dispatch_log l
      JOIN donations d ON d.id = l.donation_id
      LEFT JOIN organizations o ON o.id = d.org_id
      WHERE ((l.receipt_sent_at IS NULL AND COALESCE(d.donor_email, '') <> '')
          OR (l.organizer_notified_at IS NULL AND COALESCE(o.contact_email, '') <> ''))
        AND l.attempts < %s
        AND (l.last_error IS NOT NULL OR l.updated_at < now() - make_interval(secs => %s))
      ORDER BY l.created_at ASC
      LIMIT %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (max_attempts, min_age_seconds, limit))
        return rows_to_dicts(cur, cur.fetchall())
