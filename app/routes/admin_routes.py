import csv
import io

from flask import Blueprint, Response, request, jsonify
from flask_jwt_extended import jwt_required
from prometheus_client import REGISTRY, generate_latest, CONTENT_TYPE_LATEST

from app.models.donation import get_donation, list_refunds_for_donation
from app.models.donation_annotation import list_annotations_for_donation
from app.models.ledger import ledger_by_campaign, ledger_daily
from app.models.stripe_event import list_recent_events
from app.services.reconciliation_service import run_reconciliation

admin_bp = Blueprint("admin", __name__)

EXPORT_COLUMNS = {
    "campaign": [
        "campaign_id",
        "title",
        "donations",
        "gross_cents",
        "fee_cents",
        "net_cents",
        "refunded_cents",
        "raised_cents",
    ],
    "daily": ["day", "donations", "gross_cents", "fee_cents", "net_cents", "refunded_cents"],
}


@admin_bp.get("/admin/metrics")
@jwt_required()
def metrics():
    """Prometheus metrics endpoint. Requires a valid platform JWT."""
    return Response(
        generate_latest(REGISTRY),
        mimetype=CONTENT_TYPE_LATEST,
    )


@admin_bp.post("/admin/reconcile")
@jwt_required()
def reconcile():
    body = request.get_json(silent=True) or {}
    try:
        since_hours = int(body.get("since_hours", 72))
        limit = int(body.get("limit", 200))
    except (TypeError, ValueError):
        return jsonify({"error": "since_hours and limit must be integers"}), 400
    if since_hours <= 0 or limit <= 0:
        return jsonify({"error": "since_hours and limit must be positive"}), 400
    return jsonify(run_reconciliation(since_hours=since_hours, limit=limit)), 200


@admin_bp.get("/admin/ledger/export")
@jwt_required()
def ledger_export():
    kind = (request.args.get("type") or "campaign").lower()
    if kind not in EXPORT_COLUMNS:
        return jsonify({"error": "type must be campaign or daily"}), 400
    if kind == "campaign":
        rows = ledger_by_campaign()
    else:
        rows = ledger_daily(request.args.get("start") or None, request.args.get("end") or None)

    cols = EXPORT_COLUMNS[kind]
    buf = io.StringIO()
    w = csv.writer(buf)
    w.writerow(cols)
    for row in rows:
        w.writerow([row.get(c) for c in cols])
    return Response(
        buf.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="ledger_{kind}.csv"'},
    )


@admin_bp.get("/admin/donations/<donation_id>")
@jwt_required()
def donation_detail(donation_id):
    d = get_donation(donation_id)
    if not d:
        return jsonify({"error": "donation not found"}), 404
    return (
        jsonify(
            {
                "donation": d,
                "refunds": list_refunds_for_donation(donation_id),
                "annotations": list_annotations_for_donation(donation_id),
            }
        ),
        200,
    )


@admin_bp.get("/admin/webhooks/events")
@jwt_required()
def webhook_events():
    limit = min(request.args.get("limit", 50, type=int) or 50, 500)
    return jsonify(list_recent_events(limit)), 200
