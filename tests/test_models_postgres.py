"""
Model tests against a real Postgres. The rest of the suite swaps the models
for an in-memory store; these run the SQL itself so the locking, ON CONFLICT
and CHECK behavior is what gets tested.

Set TEST_DATABASE_URL to a throwaway database to run them; the schema is
migrated to head once per module and every table is truncated between tests.
"""
import os
from pathlib import Path

import pytest

pytestmark = pytest.mark.skipif(
    not os.getenv("TEST_DATABASE_URL"), reason="TEST_DATABASE_URL not set"
)

ROOT = Path(__file__).resolve().parent.parent

TABLES = (
    "receipt_dispatch_log, donation_annotations, refunds, donations, reward_tiers, "
    "campaigns, organizations, stripe_events, webhook_event_failures"
)


@pytest.fixture(scope="module")
def migrated():
    from alembic import command
    from alembic.config import Config

    previous = os.environ.get("DATABASE_URL")
    os.environ["DATABASE_URL"] = os.environ["TEST_DATABASE_URL"]
    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "alembic"))
    command.upgrade(cfg, "head")
    yield
    if previous is None:
        os.environ.pop("DATABASE_URL", None)
    else:
        os.environ["DATABASE_URL"] = previous


@pytest.fixture
def db(migrated):
    from app.utils.db import get_db_connection

    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute(f"TRUNCATE {TABLES} CASCADE")
        conn.commit()
    return get_db_connection


def _one(db, sql, params=()):
    with db() as conn, conn.cursor() as cur:
        cur.execute(sql, params)
        row = cur.fetchone()
        conn.commit()
        return row


@pytest.fixture
def campaign_rows(db):
    org_id = _one(
        db,
        "INSERT INTO organizations (name, contact_email, stripe_account_id) VALUES (%s, %s, %s) RETURNING id",
        ("Shelter", "org@example.org", "acct_pg"),
    )[0]
    campaign_id = _one(
        db,
        "INSERT INTO campaigns (org_id, title, slug, status) VALUES (%s, %s, %s, 'active') RETURNING id",
        (org_id, "Roof", "roof"),
    )[0]
    tier_id = _one(
        db,
        "INSERT INTO reward_tiers (campaign_id, title, quantity_limit) VALUES (%s, %s, 1) RETURNING id",
        (campaign_id, "Sticker"),
    )[0]
    return {"org_id": str(org_id), "campaign_id": str(campaign_id), "tier_id": str(tier_id)}


def _raised(db, campaign_id):
    return _one(db, "SELECT raised_cents FROM campaigns WHERE id = %s", (campaign_id,))[0]


def _donate(campaign_rows, session_id, gross=10000, fee=500, **extra):
    from app.models.donation import record_donation

    return record_donation(
        org_id=campaign_rows["org_id"],
        campaign_id=campaign_rows["campaign_id"],
        gross_cents=gross,
        platform_fee_cents=fee,
        currency="usd",
        checkout_session_id=session_id,
        payment_intent_id=f"pi_{session_id}",
        **extra,
    )


class TestRecordDonation:
    def test_second_recording_of_same_checkout_is_a_no_op(self, db, campaign_rows):
        first = _donate(campaign_rows, "cs_pg_1", donor_email="d@example.org")
        second = _donate(campaign_rows, "cs_pg_1", donor_email="d@example.org")

        assert first["created"] is True
        assert first["raised_cents"] == 9500
        assert second["created"] is False
        assert str(second["donation"]["id"]) == str(first["donation"]["id"])
        assert _one(db, "SELECT count(*) FROM donations")[0] == 1
        assert _raised(db, campaign_rows["campaign_id"]) == 9500

    def test_tier_limit_refuses_claim_but_keeps_donation(self, db, campaign_rows):
        first = _donate(campaign_rows, "cs_pg_t1", reward_tier_id=campaign_rows["tier_id"])
        second = _donate(campaign_rows, "cs_pg_t2", reward_tier_id=campaign_rows["tier_id"])

        assert first["tier_claimed"] is True
        assert second["created"] is True
        assert second["tier_claimed"] is False
        claimed = _one(
            db, "SELECT claimed_count FROM reward_tiers WHERE id = %s", (campaign_rows["tier_id"],)
        )[0]
        assert claimed == 1
        assert _raised(db, campaign_rows["campaign_id"]) == 19000


class TestApplyRefunds:
    def test_later_list_before_earlier_list_counts_each_refund_once(self, db, campaign_rows):
        from app.models.donation import apply_refunds

        donation_id = str(_donate(campaign_rows, "cs_pg_r1")["donation"]["id"])
        first = {"id": "re_pg_1", "amount": 4000, "status": "succeeded", "created": 1700000000}
        second = {"id": "re_pg_2", "amount": 6000, "status": "succeeded", "created": 1700000100}

        later = apply_refunds(donation_id, [first, second])
        earlier = apply_refunds(donation_id, [first])

        assert later["status"] == "fully_refunded"
        assert later["fully_refunded_now"] is True
        assert sorted(later["inserted"]) == ["re_pg_1", "re_pg_2"]
        assert earlier["inserted"] == []
        assert earlier["refunded_cents"] == 10000
        assert earlier["fully_refunded_now"] is False
        assert _one(db, "SELECT count(*) FROM refunds")[0] == 2
        assert _raised(db, campaign_rows["campaign_id"]) == 0

    def test_pending_refund_that_fails_restores_campaign_total(self, db, campaign_rows):
        from app.models.donation import apply_refunds
        from app.models.ledger import audit_campaign_totals, audit_refund_totals

        donation_id = str(_donate(campaign_rows, "cs_pg_r2")["donation"]["id"])
        pending = {"id": "re_pg_3", "amount": 10000, "status": "pending", "created": 1700000000}

        apply_refunds(donation_id, [pending])
        assert _raised(db, campaign_rows["campaign_id"]) == 0

        reversed_ = apply_refunds(donation_id, [dict(pending, status="failed")])

        assert reversed_["updated"] == ["re_pg_3"]
        assert reversed_["refund_reversed"] is True
        assert reversed_["refunded_cents"] == 0
        assert reversed_["status"] == "recorded"
        assert _raised(db, campaign_rows["campaign_id"]) == 9500
        assert audit_campaign_totals() == []
        assert audit_refund_totals() == []

    def test_stale_status_does_not_move_refund_backwards(self, db, campaign_rows):
        from app.models.donation import apply_refunds

        donation_id = str(_donate(campaign_rows, "cs_pg_r3")["donation"]["id"])
        refund = {"id": "re_pg_4", "amount": 10000, "status": "failed", "created": 1700000000}
        apply_refunds(donation_id, [refund])

        result = apply_refunds(donation_id, [dict(refund, status="pending")])

        assert result["updated"] == []
        assert result["refunded_cents"] == 0
        assert _raised(db, campaign_rows["campaign_id"]) == 9500


class TestReceiptDispatch:
    def test_failed_receipt_stays_pending_after_organizer_notice(self, db, campaign_rows):
        from app.models.receipt_dispatch import (
            ensure_dispatch,
            get_dispatch,
            list_pending_dispatches,
            mark_channel_sent,
            mark_dispatch_error,
        )

        donation_id = str(_donate(campaign_rows, "cs_pg_d1", donor_email="d@example.org")["donation"]["id"])
        ensure_dispatch("cs_pg_d1", donation_id)
        mark_dispatch_error("cs_pg_d1", "receipt", "smtp timeout")
        assert mark_channel_sent("cs_pg_d1", "organizer", "msg_org") is True

        row = get_dispatch("cs_pg_d1")
        assert row["last_error"] == "receipt: smtp timeout"
        assert [r["payment_ref"] for r in list_pending_dispatches()] == ["cs_pg_d1"]

        assert mark_channel_sent("cs_pg_d1", "receipt", "msg_rcpt") is True
        assert get_dispatch("cs_pg_d1")["last_error"] is None
        assert list_pending_dispatches() == []

    def test_channel_is_stamped_once(self, db, campaign_rows):
        from app.models.receipt_dispatch import ensure_dispatch, mark_channel_sent

        donation_id = str(_donate(campaign_rows, "cs_pg_d2", donor_email="d@example.org")["donation"]["id"])
        ensure_dispatch("cs_pg_d2", donation_id)

        assert mark_channel_sent("cs_pg_d2", "receipt", "msg_1") is True
        assert mark_channel_sent("cs_pg_d2", "receipt", "msg_2") is False

    def test_never_attempted_row_waits_for_min_age(self, db, campaign_rows):
        from app.models.receipt_dispatch import ensure_dispatch, list_pending_dispatches

        donation_id = str(_donate(campaign_rows, "cs_pg_d3", donor_email="d@example.org")["donation"]["id"])
        ensure_dispatch("cs_pg_d3", donation_id)

        assert list_pending_dispatches() == []
        assert [r["payment_ref"] for r in list_pending_dispatches(min_age_seconds=0)] == [
            "cs_pg_d3"
        ]


class TestStripeEvents:
    def test_event_id_admitted_once(self, db):
        from app.models.stripe_event import mark_event_processed

        raw = {"id": "evt_pg_1", "type": "charge.refunded", "data": {"object": {}}}
        assert mark_event_processed("evt_pg_1", "charge.refunded", raw) is True
        assert mark_event_processed("evt_pg_1", "charge.refunded", raw) is False
