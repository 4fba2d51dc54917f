from typing import Any, Dict, List, Optional
from app.utils.db import get_db_connection, rows_to_dicts
from psycopg2.extras import Json


def mark_event_processed(
    event_id: str, event_type: str, raw_event: dict[str, Any]
) -> bool:
    """
    Insert a row into stripe_events. Returns True if inserted, False if the
    event id is already there. Any other database error propagates.
      - event_id text PRIMARY KEY
      - type text NOT NULL
      - raw jsonb NOT NULL
      - created_at timestamptz NOT NULL DEFAULT now()
    """
    sql = """
    INSERT INTO stripe_events (event_id, type, raw)
    VALUES (%s, %s, %s)
    ON CONFLICT (event_id) DO NOTHING
    RETURNING event_id
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (event_id, event_type, Json(raw_event)))
        row = cur.fetchone()
        conn.commit()
        return row is not None


def get_event(event_id: str) -> Optional[Dict[str, Any]]:
    sql = "SELECT event_id, type, raw, created_at FROM stripe_events WHERE event_id = %s"
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (event_id,))
        row = cur.fetchone()
        if not row:
            return None
        return dict(zip(["event_id", "type", "raw", "created_at"], row))


def record_event_failure(event_id: str, event_type: str, error: str) -> None:
    """Upsert the failure row for an admitted event; bumps attempts on repeat."""
    sql = """
    INSERT INTO webhook_event_failures (event_id, type, last_error)
    VALUES (%s, %s, %s)
    ON CONFLICT (event_id) DO UPDATE
       SET last_error = EXCLUDED.last_error,
           attempts   = webhook_event_failures.attempts + 1,
           resolved_at = NULL,
           updated_at = now()
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (event_id, event_type, error[:2000]))
        conn.commit()


def resolve_event_failure(event_id: str) -> None:
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(
            "UPDATE webhook_event_failures SET resolved_at = now(), updated_at = now() WHERE event_id = %s",
            (event_id,),
        )
        conn.commit()


def list_unresolved_failures(
    limit: int = 100, max_attempts: int = 10
) -> List[Dict[str, Any]]:
    sql = """
      SELECT f.event_id, f.type, f.attempts, f.last_error, e.raw
      FROM webhook_event_failures f
      JOIN stripe_events e ON e.event_id = f.event_id
      WHERE f.resolved_at IS NULL AND f.attempts < %s
      ORDER BY f.created_at ASC
      LIMIT %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (max_attempts, limit))
        return rows_to_dicts(cur, cur.fetchall())


def list_recent_events(limit: int = 50) -> List[Dict[str, Any]]:
    sql = """
      SELECT event_id, type, created_at, attempts, last_error, resolved_at
      FROM v_stripe_events
      LIMIT %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (limit,))
        return rows_to_dicts(cur, cur.fetchall())
