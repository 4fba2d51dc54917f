from typing import Any, Dict, Optional
from app.utils.db import get_db_connection, row_to_dict


def get_reward_tier(tier_id: str, campaign_id: str) -> Optional[Dict[str, Any]]:
    sql = """
      SELECT id, campaign_id, title, description, minimum_amount_cents,
             quantity_limit, claimed_count, is_active
      FROM reward_tiers
      WHERE id = %s AND campaign_id = %s
    """
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(sql, (tier_id, campaign_id))
        return row_to_dict(cur, cur.fetchone())
