#!/usr/bin/env python3
"""
Seed database with test data.

Usage: python scripts/seed.py [--force]
Requires: migrations applied (alembic upgrade head)

The demo organizer is marked as onboarded with a placeholder connected
account id; set DEMO_STRIPE_ACCOUNT_ID to a real test-mode account to run
checkouts against Stripe.
"""
import os
import sys

# Ensure app is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.utils.db import get_db_connection

DEMO_ACCOUNT = os.getenv("DEMO_STRIPE_ACCOUNT_ID", "acct_demo_organizer")


def seed():
    with get_db_connection() as conn, conn.cursor() as cur:
        cur.execute("SELECT COUNT(*) FROM organizations WHERE subdomain = 'demo'")
        if cur.fetchone()[0] > 0:
            print("Already seeded (org 'demo' exists). Use --force to re-seed.")
            return

        # 1. Onboarded organizer
        cur.execute(
            """
            INSERT INTO organizations
              (name, subdomain, contact_email, stripe_account_id,
               stripe_onboarding_complete, charges_enabled, payouts_enabled)
            VALUES ('Demo Org', 'demo', 'organizer@example.com', %s, true, true, true)
            RETURNING id
            """,
            (DEMO_ACCOUNT,),
        )
        org_id = cur.fetchone()[0]

        # 2. Campaigns: one accepting donations, one draft
        cur.execute(
            """
            INSERT INTO campaigns (org_id, title, slug, status, goal_cents)
            VALUES (%s, 'School Roof Repair', 'school-roof', 'active', 500000)
            RETURNING id
            """,
            (org_id,),
        )
        active_id = cur.fetchone()[0]
        cur.execute(
            """
            INSERT INTO campaigns (org_id, title, slug, status, goal_cents)
            VALUES (%s, 'Library Books', 'library-books', 'draft', 100000)
            """,
            (org_id,),
        )

        # 3. Reward tiers on the active campaign
        cur.execute(
            """
            INSERT INTO reward_tiers (campaign_id, title, description, minimum_amount_cents, quantity_limit)
            VALUES (%s, 'Thank-you card', 'A handwritten card from the students', 2500, NULL),
                   (%s, 'Name on the wall', 'Your name on the donor wall', 10000, 50)
            RETURNING id
            """,
            (active_id, active_id),
        )
        tier_ids = [row[0] for row in cur.fetchall()]

        conn.commit()
        print("Seeded successfully.")
        print(f"  Org subdomain: demo (account {DEMO_ACCOUNT})")
        print(f"  Active campaign: {active_id}")
        print(f"  Reward tiers: {', '.join(str(t) for t in tier_ids)}")


def force_seed():
    """Clear test data and re-seed. Use with caution."""
    with get_db_connection() as conn, conn.cursor() as cur:
        demo_campaigns = (
            "SELECT c.id FROM campaigns c JOIN organizations o ON o.id = c.org_id "
            "WHERE o.subdomain = 'demo'"
        )
        cur.execute(
            f"""
            DELETE FROM receipt_dispatch_log WHERE donation_id IN (
                SELECT id FROM donations WHERE campaign_id IN ({demo_campaigns})
            )
            """
        )
        cur.execute(
            f"""
            DELETE FROM refunds WHERE donation_id IN (
                SELECT id FROM donations WHERE campaign_id IN ({demo_campaigns})
            )
            """
        )
        cur.execute(
            f"""
            DELETE FROM donation_annotations WHERE donation_id IN (
                SELECT id FROM donations WHERE campaign_id IN ({demo_campaigns})
            )
            """
        )
        cur.execute(f"DELETE FROM donations WHERE campaign_id IN ({demo_campaigns})")
        cur.execute(f"DELETE FROM campaigns WHERE id IN ({demo_campaigns})")
        cur.execute("DELETE FROM organizations WHERE subdomain = 'demo'")
        conn.commit()
    print("Cleared test data. Seeding...")
    seed()


if __name__ == "__main__":
    if "--force" in sys.argv:
        force_seed()
    else:
        seed()
