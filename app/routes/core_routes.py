from flask import Blueprint, jsonify

core = Blueprint("core", __name__)


@core.get("/")
def root():
    return jsonify({"service": "donations-ledger", "ok": True})


@core.get("/api")
def api_index():
    return jsonify(
        {
            "endpoints": {
                "donations": ["/api/donations/checkout (POST)"],
                "campaigns": ["/api/campaigns/<id>/progress"],
                "webhooks": ["/webhooks/stripe (POST)"],
            }
        }
    )
