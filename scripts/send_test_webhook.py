#!/usr/bin/env python3
"""
Send a signed fake processor event to a running server.

Usage:
  python scripts/send_test_webhook.py checkout --campaign <uuid> [--amount 2500] [--tip 0]
  python scripts/send_test_webhook.py refund --charge ch_... --pi pi_... --amount 1000 [--gross 2500]
  python scripts/send_test_webhook.py account --account acct_...

The signature uses STRIPE_WEBHOOK_SECRET (first entry), like a real delivery.
Re-send the same --event-id to watch the duplicate path.
"""
import argparse
import hashlib
import hmac
import json
import os
import sys
import time
import uuid
from urllib.request import Request, urlopen
from urllib.error import HTTPError, URLError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.utils.platform_fees import application_fee_cents

BASE = "http://127.0.0.1:5050"


def sign_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Stripe-Signature header for `payload`, the way the processor signs deliveries."""
    ts = int(time.time()) if timestamp is None else int(timestamp)
    mac = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256)
    return f"t={ts},v1={mac.hexdigest()}"


def _id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


def checkout_event(args) -> dict:
    fee = application_fee_cents(args.amount, tip_cents=args.tip)
    pi_id = args.pi or _id("pi")
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": _id("cs_test"),
                "object": "checkout.session",
                "amount_total": args.amount + args.tip,
                "currency": "usd",
                "payment_status": "paid",
                "payment_intent": pi_id,
                "customer_details": {"email": args.email, "name": "Test Donor"},
                "metadata": {
                    "campaign_id": args.campaign,
                    "donor_email": args.email,
                    "tip_cents": str(args.tip),
                    "platform_fee_cents": str(fee),
                    "amount_cents": str(args.amount),
                    "anonymous": "false",
                },
            }
        },
    }


def refund_event(args) -> dict:
    return {
        "type": "charge.refunded",
        "data": {
            "object": {
                "id": args.charge,
                "object": "charge",
                "amount": args.gross,
                "amount_refunded": args.amount,
                "payment_intent": args.pi,
                "refunds": {
                    "object": "list",
                    "has_more": False,
                    "data": [
                        {
                            "id": args.refund_id or _id("re"),
                            "amount": args.amount,
                            "status": "succeeded",
                            "reason": "requested_by_customer",
                            "created": int(time.time()),
                        }
                    ],
                },
            }
        },
    }


def account_event(args) -> dict:
    return {
        "type": "account.updated",
        "data": {
            "object": {
                "id": args.account,
                "object": "account",
                "details_submitted": True,
                "charges_enabled": True,
                "payouts_enabled": True,
            }
        },
    }


def send(event: dict, secret: str) -> tuple[dict, int]:
    payload = json.dumps(event).encode()
    headers = {
        "Content-Type": "application/json",
        "Stripe-Signature": sign_payload(payload, secret),
    }
    url = f"{BASE.rstrip('/')}/webhooks/stripe"
    try:
        r = urlopen(Request(url, data=payload, headers=headers, method="POST"), timeout=10)
        return json.loads(r.read().decode() or "{}"), r.status
    except HTTPError as e:
        body = e.read().decode() if e.fp else ""
        try:
            return json.loads(body) if body else {}, e.code
        except json.JSONDecodeError:
            return {"error": body or str(e)}, e.code
    except URLError as e:
        return {"error": str(e.reason)}, 0


def main():
    global BASE
    ap = argparse.ArgumentParser(description="Send a signed test webhook")
    ap.add_argument("--base", default=BASE, help="Server base URL")
    ap.add_argument("--event-id", default=None, help="Reuse an event id (duplicate test)")
    sub = ap.add_subparsers(dest="kind", required=True)

    c = sub.add_parser("checkout")
    c.add_argument("--campaign", required=True)
    c.add_argument("--amount", type=int, default=2500)
    c.add_argument("--tip", type=int, default=0)
    c.add_argument("--email", default="donor@example.com")
    c.add_argument("--pi", default=None)

    rf = sub.add_parser("refund")
    rf.add_argument("--charge", required=True)
    rf.add_argument("--pi", required=True)
    rf.add_argument("--amount", type=int, required=True)
    rf.add_argument("--gross", type=int, default=2500)
    rf.add_argument("--refund-id", default=None)

    a = sub.add_parser("account")
    a.add_argument("--account", required=True)

    args = ap.parse_args()
    BASE = args.base

    secret = (os.getenv("STRIPE_WEBHOOK_SECRET") or "").split(",")[0].strip()
    if not secret:
        print("STRIPE_WEBHOOK_SECRET is not set", file=sys.stderr)
        return 1

    builders = {"checkout": checkout_event, "refund": refund_event, "account": account_event}
    event = builders[args.kind](args)
    event["id"] = args.event_id or _id("evt")
    event["object"] = "event"
    event["created"] = int(time.time())

    out, status = send(event, secret)
    print(f"{event['id']} ({event['type']}) -> {status} {json.dumps(out)}")
    return 0 if 200 <= status < 300 else 1


if __name__ == "__main__":
    sys.exit(main())
