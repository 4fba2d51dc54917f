"""
Locust load tests for the donations ledger API.

Install: pip install -e ".[load]"
Run: locust -f locustfile.py --host=http://127.0.0.1:5050

For headless: locust -f locustfile.py --host=http://127.0.0.1:5050 \
    --users 10 --spawn-rate 2 --run-time 1m --headless

Set STRIPE_WEBHOOK_SECRET to the server's secret to include signed webhook
deliveries, and LOCUST_CAMPAIGN_ID to a seeded active campaign. Run the
server with a high CHECKOUT_RATE_LIMIT, or most checkouts come back 429.
"""

import json
import os
import random
import time
import uuid

from locust import HttpUser, task, between

from scripts.send_test_webhook import sign_payload

CAMPAIGN_ID = os.getenv("LOCUST_CAMPAIGN_ID", "00000000-0000-0000-0000-000000000001")
WEBHOOK_SECRET = (os.getenv("STRIPE_WEBHOOK_SECRET") or "").split(",")[0].strip()


class DonationsAPIUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        self.token = os.getenv("LOCUST_ADMIN_TOKEN")
        self.sent_event_ids = []

    def _headers(self):
        h = {"Content-Type": "application/json"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    @task(10)
    def ping(self):
        self.client.get("/__ping")

    @task(8)
    def campaign_progress(self):
        self.client.get(f"/api/campaigns/{CAMPAIGN_ID}/progress", name="/api/campaigns/[id]/progress")

    @task(4)
    def checkout(self):
        body = {
            "campaign_id": CAMPAIGN_ID,
            "amount_minor_units": random.choice([500, 2500, 10000]),
            "tip_minor_units": random.choice([0, 0, 200]),
            "donor_email": f"load+{uuid.uuid4().hex[:8]}@example.com",
        }
        with self.client.post(
            "/api/donations/checkout", json=body, catch_response=True
        ) as r:
            if r.status_code in (200, 429):
                r.success()

    @task(3)
    def signed_webhook(self):
        if not WEBHOOK_SECRET:
            return
        # Mix fresh ids with replays of earlier ones to load the duplicate path.
        if self.sent_event_ids and random.random() < 0.3:
            event_id = random.choice(self.sent_event_ids)
        else:
            event_id = f"evt_load_{uuid.uuid4().hex[:20]}"
            self.sent_event_ids.append(event_id)
        event = {
            "id": event_id,
            "type": "payment_intent.payment_failed",
            "created": int(time.time()),
            "data": {
                "object": {
                    "id": f"pi_load_{uuid.uuid4().hex[:16]}",
                    "metadata": {"campaign_id": CAMPAIGN_ID},
                    "last_payment_error": {"decline_code": "generic_decline"},
                }
            },
        }
        payload = json.dumps(event).encode()
        self.client.post(
            "/webhooks/stripe",
            data=payload,
            headers={
                "Content-Type": "application/json",
                "Stripe-Signature": sign_payload(payload, WEBHOOK_SECRET),
            },
        )

    @task(1)
    def metrics(self):
        if self.token:
            self.client.get("/admin/metrics", headers=self._headers())
