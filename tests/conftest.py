"""
Pytest configuration and fixtures.

The database, Redis, the payment processor and the email providers are
replaced by `FakeLedgerStore`, an in-memory store exposing functions with the
same names and signatures as the model / gateway functions the services
import. The `store` fixture patches them into every service and route module.
"""
import hashlib
import hmac
import json
import os
import time
import uuid
from datetime import datetime, timezone

os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["DEV_STRIPE_NO_VERIFY"] = "0"
os.environ["WEBHOOK_DEFER_PROCESSING"] = "0"
os.environ["USE_EMAIL_QUEUE"] = "0"
os.environ["DEV_EMAIL_LOG_ONLY"] = "1"
os.environ["RATE_LIMIT_ENABLED"] = "1"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["CHECKOUT_RATE_LIMIT"] = "10"
os.environ["PLATFORM_FEE_BPS"] = "800"
os.environ["MIN_DONATION_CENTS"] = "100"
os.environ["SOCKETIO_ASYNC_MODE"] = "threading"
os.environ["JWT_SECRET"] = "test-secret-key-long-enough-for-hs256"

import psycopg2
import pytest

from app.errors import LedgerInvariantError
from app.models.donation import (
    STATUS_FULLY_REFUNDED,
    UNCOUNTED_REFUND_STATUSES,
    refund_status,
    refund_status_advances,
)
from app.utils.rate_limit import reset_rate_limits


WEBHOOK_SECRET = "whsec_test"


def _now():
    return datetime.now(timezone.utc)


class FakeRedis:
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value
        return True

    def delete(self, *keys):
        return sum(1 for k in keys if self.data.pop(k, None) is not None)


class FakeLedgerStore:
    """In-memory stand-in for PostgreSQL tables, Redis and the Stripe API."""

    def __init__(self):
        self.orgs = {}
        self.campaigns = {}
        self.tiers = {}
        self.donations = {}
        self.refunds = {}
        self.annotations = {}
        self.events = {}
        self.failures = {}
        self.dispatches = {}
        self.redis = FakeRedis()

        self.storage_down = False
        self.sessions_created = []
        self.processor_refunds = {}
        self.processor_sessions = []
        self.processor_payment_intents = {}
        self.emails = []
        self.email_fails = False
        self.broadcasts = []
        self.enqueued_events = []

    # --- seeding -------------------------------------------------------------

    def add_org(self, *, stripe_account_id="acct_org1", onboarded=True, contact_email="org@example.com"):
        org_id = str(uuid.uuid4())
        self.orgs[org_id] = {
            "id": org_id,
            "name": "Demo Org",
            "contact_email": contact_email,
            "stripe_account_id": stripe_account_id,
            "stripe_onboarding_complete": onboarded,
            "charges_enabled": onboarded,
            "payouts_enabled": onboarded,
        }
        return org_id

    def add_campaign(self, org_id, *, status="active", goal_cents=100000, raised_cents=0):
        campaign_id = str(uuid.uuid4())
        self.campaigns[campaign_id] = {
            "id": campaign_id,
            "org_id": org_id,
            "title": "School Roof",
            "slug": "school-roof",
            "status": status,
            "goal_cents": goal_cents,
            "raised_cents": raised_cents,
            "currency": "usd",
        }
        return campaign_id

    def add_tier(self, campaign_id, *, minimum_amount_cents=0, quantity_limit=None, claimed_count=0, is_active=True):
        tier_id = str(uuid.uuid4())
        self.tiers[tier_id] = {
            "id": tier_id,
            "campaign_id": campaign_id,
            "title": "Thank-you card",
            "description": "Handwritten",
            "minimum_amount_cents": minimum_amount_cents,
            "quantity_limit": quantity_limit,
            "claimed_count": claimed_count,
            "is_active": is_active,
        }
        return tier_id

    # --- stripe_events / webhook_event_failures ------------------------------

    def mark_event_processed(self, event_id, event_type, raw_event):
        if self.storage_down:
            raise psycopg2.OperationalError("could not connect to server")
        if event_id in self.events:
            return False
        self.events[event_id] = {
            "event_id": event_id,
            "type": event_type,
            "raw": json.loads(json.dumps(raw_event)),
            "created_at": _now(),
        }
        return True

    def get_event(self, event_id):
        ev = self.events.get(event_id)
        return dict(ev) if ev else None

    def record_event_failure(self, event_id, event_type, error):
        row = self.failures.get(event_id)
        if row:
            row.update(last_error=error, attempts=row["attempts"] + 1, resolved_at=None)
        else:
            self.failures[event_id] = {
                "event_id": event_id,
                "type": event_type,
                "last_error": error,
                "attempts": 1,
                "resolved_at": None,
            }

    def resolve_event_failure(self, event_id):
        if event_id in self.failures:
            self.failures[event_id]["resolved_at"] = _now()

    def list_unresolved_failures(self, limit=100, max_attempts=10):
        out = []
        for f in self.failures.values():
            if f["resolved_at"] is None and f["attempts"] < max_attempts:
                out.append(dict(f, raw=self.events[f["event_id"]]["raw"]))
        return out[:limit]

    def list_recent_events(self, limit=50):
        return [
            {"event_id": e["event_id"], "type": e["type"], "created_at": e["created_at"]}
            for e in list(self.events.values())[:limit]
        ]

    # --- organizations / campaigns / tiers -----------------------------------

    def get_organization(self, org_id):
        org = self.orgs.get(org_id)
        return dict(org) if org else None

    def set_onboarding_status(self, stripe_account_id, *, onboarding_complete, charges_enabled, payouts_enabled):
        for org in self.orgs.values():
            if org["stripe_account_id"] == stripe_account_id:
                org.update(
                    stripe_onboarding_complete=onboarding_complete,
                    charges_enabled=charges_enabled,
                    payouts_enabled=payouts_enabled,
                )
                return {
                    "id": org["id"],
                    "stripe_account_id": stripe_account_id,
                    "stripe_onboarding_complete": onboarding_complete,
                }
        return None

    def get_campaign(self, campaign_id):
        camp = self.campaigns.get(campaign_id)
        return dict(camp) if camp else None

    def get_campaign_for_checkout(self, campaign_id):
        camp = self.campaigns.get(campaign_id)
        if not camp:
            return None
        org = self.orgs[camp["org_id"]]
        return dict(
            camp,
            organizer_name=org["name"],
            stripe_account_id=org["stripe_account_id"],
            stripe_onboarding_complete=org["stripe_onboarding_complete"],
        )

    def get_progress(self, campaign_id):
        camp = self.campaigns.get(campaign_id)
        if not camp:
            return None
        live = [
            d for d in self.donations.values()
            if d["campaign_id"] == campaign_id and d["status"] != STATUS_FULLY_REFUNDED
        ]
        return {
            "goal_cents": camp["goal_cents"],
            "raised_cents": camp["raised_cents"],
            "donations_count": len(live),
            "last_donation_at": str(max(d["created_at"] for d in live)) if live else None,
        }

    def get_reward_tier(self, tier_id, campaign_id):
        tier = self.tiers.get(tier_id)
        if not tier or tier["campaign_id"] != campaign_id:
            return None
        return dict(tier)

    # --- donations / refunds -------------------------------------------------

    def record_donation(
        self,
        *,
        org_id,
        campaign_id,
        gross_cents,
        platform_fee_cents,
        currency,
        checkout_session_id,
        payment_intent_id,
        donor_name=None,
        donor_email=None,
        anonymous=False,
        message=None,
        reward_tier_id=None,
    ):
        for d in self.donations.values():
            if (checkout_session_id and d["stripe_checkout_session_id"] == checkout_session_id) or (
                payment_intent_id and d["stripe_payment_intent_id"] == payment_intent_id
            ):
                return {"donation": dict(d), "created": False, "raised_cents": None, "tier_claimed": None}

        donation_id = str(uuid.uuid4())
        d = {
            "id": donation_id,
            "org_id": org_id,
            "campaign_id": campaign_id,
            "gross_cents": gross_cents,
            "platform_fee_cents": platform_fee_cents,
            "net_cents": gross_cents - platform_fee_cents,
            "refunded_cents": 0,
            "currency": currency,
            "status": "recorded",
            "stripe_checkout_session_id": checkout_session_id,
            "stripe_payment_intent_id": payment_intent_id,
            "stripe_charge_id": None,
            "donor_name": donor_name,
            "donor_email": donor_email,
            "anonymous": anonymous,
            "message": message,
            "reward_tier_id": reward_tier_id,
            "created_at": _now(),
            "updated_at": _now(),
        }
        self.donations[donation_id] = d
        camp = self.campaigns[campaign_id]
        camp["raised_cents"] += d["net_cents"]

        tier_claimed = None
        if reward_tier_id:
            tier = self.tiers.get(reward_tier_id)
            tier_claimed = False
            if tier and tier["campaign_id"] == campaign_id and (
                tier["quantity_limit"] is None or tier["claimed_count"] < tier["quantity_limit"]
            ):
                tier["claimed_count"] += 1
                tier_claimed = True
        return {
            "donation": dict(d),
            "created": True,
            "raised_cents": camp["raised_cents"],
            "tier_claimed": tier_claimed,
        }

    def get_donation(self, donation_id):
        d = self.donations.get(donation_id)
        return dict(d) if d else None

    def _donation_where(self, col, value):
        for d in self.donations.values():
            if value and d[col] == value:
                return dict(d)
        return None

    def get_donation_by_pi(self, pi_id):
        return self._donation_where("stripe_payment_intent_id", pi_id)

    def get_donation_by_charge(self, charge_id):
        return self._donation_where("stripe_charge_id", charge_id)

    def get_donation_by_session(self, session_id):
        return self._donation_where("stripe_checkout_session_id", session_id)

    def attach_charge_to_donation(self, pi_id, charge_id):
        for d in self.donations.values():
            if d["stripe_payment_intent_id"] == pi_id:
                d["stripe_charge_id"] = charge_id
                return {"id": d["id"], "campaign_id": d["campaign_id"], "stripe_charge_id": charge_id}
        return None

    def apply_refunds(self, donation_id, refunds):
        d = self.donations.get(donation_id)
        if not d:
            raise LedgerInvariantError(f"donation {donation_id} vanished during refund")
        previous_refunded, previous_status = d["refunded_cents"], d["status"]

        inserted, updated = [], []
        for rf in refunds:
            known = self.refunds.get(rf["id"])
            if known:
                if known["donation_id"] == donation_id and refund_status_advances(known["status"], rf.get("status")):
                    known["status"] = rf.get("status")
                    updated.append(rf["id"])
                continue
            self.refunds[rf["id"]] = {
                "donation_id": donation_id,
                "stripe_refund_id": rf["id"],
                "amount_cents": rf["amount"],
                "reason": rf.get("reason"),
                "status": rf.get("status"),
                "processed_at": _now(),
            }
            inserted.append(rf["id"])

        total = self._counted_refunds(donation_id)
        if total > d["gross_cents"]:
            raise LedgerInvariantError(f"refunds {total} exceed gross {d['gross_cents']}")

        status = refund_status(d["gross_cents"], total)
        d.update(refunded_cents=total, status=status)
        fully_refunded_now = status == STATUS_FULLY_REFUNDED and previous_status != STATUS_FULLY_REFUNDED
        refund_reversed = previous_status == STATUS_FULLY_REFUNDED and status != STATUS_FULLY_REFUNDED
        if fully_refunded_now:
            self.campaigns[d["campaign_id"]]["raised_cents"] -= d["net_cents"]
        if refund_reversed:
            self.campaigns[d["campaign_id"]]["raised_cents"] += d["net_cents"]
        return {
            "donation_id": donation_id,
            "campaign_id": d["campaign_id"],
            "inserted": inserted,
            "updated": updated,
            "previous_refunded_cents": previous_refunded,
            "refunded_cents": total,
            "status": status,
            "fully_refunded_now": fully_refunded_now,
            "refund_reversed": refund_reversed,
        }

    def _counted_refunds(self, donation_id):
        return sum(
            r["amount_cents"] for r in self.refunds.values()
            if r["donation_id"] == donation_id and r["status"] not in UNCOUNTED_REFUND_STATUSES
        )

    def list_refunds_for_donation(self, donation_id):
        return [
            {k: v for k, v in r.items() if k != "donation_id"}
            for r in self.refunds.values()
            if r["donation_id"] == donation_id
        ]

    def list_donations_missing_charge(self, limit=200):
        return [
            {"id": d["id"], "campaign_id": d["campaign_id"], "stripe_payment_intent_id": d["stripe_payment_intent_id"]}
            for d in self.donations.values()
            if d["stripe_charge_id"] is None and d["stripe_payment_intent_id"]
        ][:limit]

    def add_donation_annotation(self, donation_id, *, kind, stripe_object_id, status, detail=None):
        if stripe_object_id in self.annotations:
            return False
        self.annotations[stripe_object_id] = {
            "donation_id": donation_id,
            "kind": kind,
            "stripe_object_id": stripe_object_id,
            "status": status,
            "detail": detail or {},
        }
        return True

    def list_annotations_for_donation(self, donation_id):
        return [a for a in self.annotations.values() if a["donation_id"] == donation_id]

    # --- receipt_dispatch_log ------------------------------------------------

    def ensure_dispatch(self, payment_ref, donation_id):
        row = self.dispatches.setdefault(
            payment_ref,
            {
                "payment_ref": payment_ref,
                "donation_id": donation_id,
                "receipt_sent_at": None,
                "organizer_notified_at": None,
                "attempts": 0,
                "last_error": None,
                "updated_at": _now(),
            },
        )
        return dict(row)

    def get_dispatch(self, payment_ref):
        row = self.dispatches.get(payment_ref)
        return dict(row) if row else None

    def mark_channel_sent(self, payment_ref, channel, provider_msg_id):
        col = "receipt_sent_at" if channel == "receipt" else "organizer_notified_at"
        row = self.dispatches[payment_ref]
        if row[col] is not None:
            return False
        row[col] = _now()
        row["attempts"] += 1
        if (row["last_error"] or "").startswith(f"{channel}:"):
            row["last_error"] = None
        row["updated_at"] = _now()
        return True

    def mark_dispatch_error(self, payment_ref, channel, error):
        row = self.dispatches[payment_ref]
        row["attempts"] += 1
        row["last_error"] = f"{channel}: {error}"
        row["updated_at"] = _now()

    def list_pending_dispatches(self, limit=100, max_attempts=5, min_age_seconds=600):
        out = []
        for r in self.dispatches.values():
            d = self.donations.get(r["donation_id"]) or {}
            org = self.orgs.get(d.get("org_id")) or {}
            unsent = (r["receipt_sent_at"] is None and d.get("donor_email")) or (
                r["organizer_notified_at"] is None and org.get("contact_email")
            )
            age = (_now() - r["updated_at"]).total_seconds()
            due = r["last_error"] is not None or age > min_age_seconds
            if unsent and due and r["attempts"] < max_attempts:
                out.append({k: v for k, v in r.items() if k != "updated_at"})
        return out[:limit]

    # --- ledger reports ------------------------------------------------------

    def audit_campaign_totals(self, limit=100):
        out = []
        for c in self.campaigns.values():
            expected = sum(
                d["net_cents"] for d in self.donations.values()
                if d["campaign_id"] == c["id"] and d["status"] != STATUS_FULLY_REFUNDED
            )
            if expected != c["raised_cents"]:
                out.append({"campaign_id": c["id"], "raised_cents": c["raised_cents"], "expected_cents": expected})
        return out[:limit]

    def audit_refund_totals(self, limit=100):
        out = []
        for d in self.donations.values():
            rows = self._counted_refunds(d["id"])
            if rows != d["refunded_cents"]:
                out.append({"donation_id": d["id"], "refunded_cents": d["refunded_cents"], "refund_rows_cents": rows})
        return out[:limit]

    def ledger_by_campaign(self):
        out = []
        for c in self.campaigns.values():
            ds = [d for d in self.donations.values() if d["campaign_id"] == c["id"]]
            out.append(
                {
                    "campaign_id": c["id"],
                    "title": c["title"],
                    "donations": len(ds),
                    "gross_cents": sum(d["gross_cents"] for d in ds),
                    "fee_cents": sum(d["platform_fee_cents"] for d in ds),
                    "net_cents": sum(d["net_cents"] for d in ds),
                    "refunded_cents": sum(d["refunded_cents"] for d in ds),
                    "raised_cents": c["raised_cents"],
                }
            )
        return out

    def ledger_daily(self, start=None, end=None):
        days = {}
        for d in self.donations.values():
            day = d["created_at"].date().isoformat()
            if (start and day < start) or (end and day > end):
                continue
            row = days.setdefault(
                day,
                {"day": day, "donations": 0, "gross_cents": 0, "fee_cents": 0, "net_cents": 0, "refunded_cents": 0},
            )
            row["donations"] += 1
            row["gross_cents"] += d["gross_cents"]
            row["fee_cents"] += d["platform_fee_cents"]
            row["net_cents"] += d["net_cents"]
            row["refunded_cents"] += d["refunded_cents"]
        return [days[k] for k in sorted(days)]

    # --- processor, email, redis, realtime, queue -----------------------------

    def create_checkout_session(self, params, idempotency_key=None):
        session_id = f"cs_test_{len(self.sessions_created) + 1}"
        self.sessions_created.append({"params": params, "idempotency_key": idempotency_key})
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def list_refunds(self, charge_id):
        return list(self.processor_refunds.get(charge_id, []))

    def list_completed_checkout_sessions(self, created_gte, limit=200):
        return list(self.processor_sessions)[:limit]

    def retrieve_payment_intent(self, pi_id):
        return self.processor_payment_intents.get(pi_id, {})

    def send_email(self, *, to_email, subject, body_text, body_html=None, from_email=None, from_name=None):
        self.emails.append({"to": to_email, "subject": subject})
        if self.email_fails:
            return None, "provider down"
        return "sendgrid", f"msg-{len(self.emails)}"

    def r(self):
        return self.redis

    def broadcast_campaign_update(self, campaign_id, event, payload):
        self.broadcasts.append((campaign_id, event, payload))

    def enqueue_event_processing(self, event_id):
        self.enqueued_events.append(event_id)
        return True


def _patch_targets():
    from app.routes import admin_routes, campaign_routes
    from app.services import (
        checkout_service,
        ledger_service,
        notification_service,
        reconciliation_service,
        webhook_service,
    )

    return [
        webhook_service,
        ledger_service,
        checkout_service,
        notification_service,
        reconciliation_service,
        campaign_routes,
        admin_routes,
    ]


@pytest.fixture(autouse=True)
def _fresh_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def store(monkeypatch):
    fake = FakeLedgerStore()
    names = [n for n in dir(fake) if not n.startswith("_") and callable(getattr(fake, n))]
    for module in _patch_targets():
        for name in names:
            if hasattr(module, name):
                monkeypatch.setattr(module, name, getattr(fake, name))
    return fake


@pytest.fixture
def seeded(store):
    """An onboarded organizer with one active campaign."""
    org_id = store.add_org()
    campaign_id = store.add_campaign(org_id)
    return {"org_id": org_id, "campaign_id": campaign_id}


@pytest.fixture
def app(store):
    from app import create_app

    flask_app = create_app()
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers(app):
    from flask_jwt_extended import create_access_token

    with app.app_context():
        token = create_access_token(identity="ops@example.com")
    return {"Authorization": f"Bearer {token}"}


# --- processor object builders --------------------------------------------------


def make_event(event_type, obj, event_id=None):
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Stripe-Signature header as the processor would send it."""
    ts = int(time.time()) if timestamp is None else int(timestamp)
    mac = hmac.new(secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256)
    return f"t={ts},v1={mac.hexdigest()}"


def signed(event, secret=WEBHOOK_SECRET, timestamp=None):
    """(payload bytes, signature header) for an event dict."""
    payload = json.dumps(event).encode()
    return payload, sign_payload(payload, secret, timestamp=timestamp)


def checkout_session(
    campaign_id,
    *,
    amount=2500,
    tip=0,
    fee=None,
    session_id=None,
    pi_id=None,
    payment_status="paid",
    reward_tier_id=None,
    email="donor@example.com",
):
    metadata = {
        "campaign_id": campaign_id,
        "donor_email": email,
        "donor_name": "Dana Donor",
        "anonymous": "false",
        "tip_cents": str(tip),
        "amount_cents": str(amount),
    }
    if fee is not None:
        metadata["platform_fee_cents"] = str(fee)
    if reward_tier_id:
        metadata["reward_tier_id"] = reward_tier_id
    return {
        "id": session_id or f"cs_{uuid.uuid4().hex[:16]}",
        "object": "checkout.session",
        "amount_total": amount + tip,
        "currency": "usd",
        "payment_status": payment_status,
        "payment_intent": pi_id or f"pi_{uuid.uuid4().hex[:16]}",
        "customer_details": {"email": email, "name": "Dana Donor"},
        "metadata": metadata,
    }


def refunded_charge(charge_id, pi_id, refunds, *, has_more=False):
    """charge.refunded object; `refunds` is [(refund_id, amount)]."""
    return {
        "id": charge_id,
        "object": "charge",
        "payment_intent": pi_id,
        "amount_refunded": sum(a for _, a in refunds),
        "refunds": {
            "object": "list",
            "has_more": has_more,
            "data": [
                {"id": rid, "amount": amt, "status": "succeeded", "reason": None, "created": int(time.time())}
                for rid, amt in refunds
            ],
        },
    }
