import json
import logging
from uuid import UUID

from flask import Blueprint, jsonify

from app.models.campaign import get_progress
from app.utils.cache import r, progress_cache_key

campaigns = Blueprint("campaigns", __name__)
log = logging.getLogger(__name__)

PROGRESS_TTL = 30


def _is_uuid(v: str) -> bool:
    try:
        UUID(v)
        return True
    except ValueError:
        return False


@campaigns.get("/<campaign_id>/progress")
def campaign_progress(campaign_id):
    if not _is_uuid(campaign_id):
        return jsonify({"error": "invalid campaign_id"}), 400
    key = progress_cache_key(campaign_id)
    try:
        cached = r().get(key)
    except Exception as e:
        log.warning("[cache] progress read failed: %s", e)
        cached = None
    if cached:
        return jsonify(json.loads(cached)), 200

    vals = get_progress(campaign_id)
    if not vals:
        return jsonify({"error": "campaign not found"}), 404
    goal, total = vals["goal_cents"], vals["raised_cents"]

    percent = 0.0
    if goal > 0:
        percent = round(min(100.0, (total / goal) * 100.0), 2)

    resp = {
        "campaign_id": campaign_id,
        "goal_cents": goal,
        "raised_cents": total,
        "percent": percent,
        "donations_count": vals["donations_count"],
        "last_donation_at": vals["last_donation_at"],
    }
    try:
        r().setex(key, PROGRESS_TTL, json.dumps(resp, default=str))
    except Exception as e:
        log.warning("[cache] progress write failed: %s", e)
    return jsonify(resp), 200
