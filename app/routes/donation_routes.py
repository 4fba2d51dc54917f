from flask import Blueprint, request, jsonify

from app.errors import LedgerError
from app.services.checkout_service import create_checkout, parse_checkout_body
from app.utils.rate_limit import rate_limit_key

donations_bp = Blueprint("donations", __name__)


@donations_bp.post("/api/donations/checkout")
def checkout():
    body = request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "JSON body required", "code": "invalid_checkout_request"}), 400

    try:
        fields = parse_checkout_body(body)
        resp = create_checkout(
            client_ip=rate_limit_key(),
            idempotency_key=request.headers.get("Idempotency-Key") or None,
            **fields,
        )
    except LedgerError as e:
        out = jsonify(e.to_dict())
        if getattr(e, "retry_after", None):
            out.headers["Retry-After"] = str(e.retry_after)
        return out, e.status_code
    return jsonify(resp), 200
