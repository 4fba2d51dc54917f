"""organizations, campaigns, reward tiers

Revision ID: 0001_orgs_campaigns_tiers
Revises:
Create Date: 2026-10-19

"""

from alembic import op

revision = "0001_orgs_campaigns_tiers"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
    CREATE TABLE IF NOT EXISTS organizations (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      name TEXT NOT NULL,
      subdomain TEXT UNIQUE,
      contact_email TEXT NULL,
      stripe_account_id TEXT UNIQUE,
      stripe_onboarding_complete BOOLEAN NOT NULL DEFAULT false,
      charges_enabled BOOLEAN NOT NULL DEFAULT false,
      payouts_enabled BOOLEAN NOT NULL DEFAULT false,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE TABLE IF NOT EXISTS campaigns (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      org_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
      title TEXT NOT NULL,
      slug TEXT NOT NULL,
      status TEXT NOT NULL DEFAULT 'draft'
        CHECK (status IN ('draft','active','paused','completed')),
      goal_cents BIGINT NOT NULL DEFAULT 0 CHECK (goal_cents >= 0),
      raised_cents BIGINT NOT NULL DEFAULT 0 CHECK (raised_cents >= 0),
      currency TEXT NOT NULL DEFAULT 'usd',
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (org_id, slug)
    );

    CREATE TABLE IF NOT EXISTS reward_tiers (
      id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
      campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
      title TEXT NOT NULL,
      description TEXT NULL,
      minimum_amount_cents BIGINT NOT NULL DEFAULT 0,
      quantity_limit INTEGER NULL,
      claimed_count INTEGER NOT NULL DEFAULT 0,
      is_active BOOLEAN NOT NULL DEFAULT true,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      CHECK (quantity_limit IS NULL OR claimed_count <= quantity_limit)
    );

    CREATE INDEX IF NOT EXISTS idx_campaigns_org ON campaigns(org_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_reward_tiers_campaign ON reward_tiers(campaign_id);
    """
    )


def downgrade() -> None:
    op.execute(
        """
    DROP TABLE IF EXISTS reward_tiers;
    DROP TABLE IF EXISTS campaigns;
    DROP TABLE IF EXISTS organizations;
    """
    )
