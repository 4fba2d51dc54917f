"""donations ledger, refunds, dispute / fraud annotations

Revision ID: 0002_donations_ledger
Revises: 0001_orgs_campaigns_tiers
Create Date: 2026-10-19

"""

from alembic import op

revision = "0002_donations_ledger"
down_revision = "0001_orgs_campaigns_tiers"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
    CREATE TABLE IF NOT EXISTS donations (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE RESTRICT,
      campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE RESTRICT,
      gross_cents BIGINT NOT NULL CHECK (gross_cents > 0),
      platform_fee_cents BIGINT NOT NULL
        CHECK (platform_fee_cents >= 0 AND platform_fee_cents <= gross_cents),
      net_cents BIGINT GENERATED ALWAYS AS (gross_cents - platform_fee_cents) STORED,
      refunded_cents BIGINT NOT NULL DEFAULT 0
        CHECK (refunded_cents >= 0 AND refunded_cents <= gross_cents),
      currency TEXT NOT NULL DEFAULT 'usd',
      status TEXT NOT NULL DEFAULT 'recorded'
        CHECK (status IN ('recorded','partially_refunded','fully_refunded')),
      stripe_checkout_session_id TEXT UNIQUE,
      stripe_payment_intent_id TEXT UNIQUE,
      stripe_charge_id TEXT UNIQUE,
      donor_name TEXT NULL,
      donor_email TEXT NULL,
      anonymous BOOLEAN NOT NULL DEFAULT false,
      message TEXT NULL,
      reward_tier_id UUID NULL REFERENCES reward_tiers(id) ON DELETE SET NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE INDEX IF NOT EXISTS idx_donations_campaign ON donations(campaign_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_donations_missing_charge
      ON donations(created_at) WHERE stripe_charge_id IS NULL;

    CREATE TABLE IF NOT EXISTS refunds (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      donation_id UUID NOT NULL REFERENCES donations(id) ON DELETE RESTRICT,
      stripe_refund_id TEXT NOT NULL UNIQUE,
      amount_cents BIGINT NOT NULL CHECK (amount_cents > 0),
      reason TEXT NULL,
      status TEXT NULL,
      processed_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE INDEX IF NOT EXISTS idx_refunds_donation ON refunds(donation_id);

    CREATE TABLE IF NOT EXISTS donation_annotations (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      donation_id UUID NOT NULL REFERENCES donations(id) ON DELETE RESTRICT,
      kind TEXT NOT NULL CHECK (kind IN ('dispute','fraud_warning')),
      stripe_object_id TEXT NOT NULL UNIQUE,
      status TEXT NOT NULL,
      detail JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """
    )


def downgrade() -> None:
    op.execute(
        """
    DROP TABLE IF EXISTS donation_annotations;
    DROP TABLE IF EXISTS refunds;
    DROP TABLE IF EXISTS donations;
    """
    )
