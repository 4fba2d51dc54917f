from alembic import op

# revision identifiers, used by Alembic.
revision = "0004_receipt_dispatch"
down_revision = "0003_stripe_events"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS receipt_dispatch_log (
            payment_ref             text PRIMARY KEY,
            donation_id             uuid NOT NULL REFERENCES donations(id),
            receipt_sent_at         timestamptz,
            receipt_provider_msg_id text,
            organizer_notified_at   timestamptz,
            organizer_provider_msg_id text,
            attempts                integer NOT NULL DEFAULT 0,
            last_error              text,
            created_at              timestamptz NOT NULL DEFAULT now(),
            updated_at              timestamptz NOT NULL DEFAULT now()
        );
    """
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION trg_receipt_dispatch_touch()
        RETURNS trigger AS $$
        BEGIN
            NEW.updated_at = now();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """
    )

    op.execute(
        """
        DROP TRIGGER IF EXISTS trg_receipt_dispatch_touch ON receipt_dispatch_log;
        CREATE TRIGGER trg_receipt_dispatch_touch
        BEFORE UPDATE ON receipt_dispatch_log
        FOR EACH ROW EXECUTE FUNCTION trg_receipt_dispatch_touch();
    """
    )

    # ledger export views
    op.execute(
        """
        CREATE OR REPLACE VIEW vw_ledger_by_campaign AS
        SELECT c.id AS campaign_id,
               c.title,
               COUNT(d.id)::int AS donations,
               COALESCE(SUM(d.gross_cents), 0)::bigint AS gross_cents,
               COALESCE(SUM(d.platform_fee_cents), 0)::bigint AS fee_cents,
               COALESCE(SUM(d.net_cents), 0)::bigint AS net_cents,
               COALESCE(SUM(d.refunded_cents), 0)::bigint AS refunded_cents,
               c.raised_cents
        FROM campaigns c
        LEFT JOIN donations d ON d.campaign_id = c.id
        GROUP BY c.id, c.title, c.raised_cents;

        CREATE OR REPLACE VIEW vw_ledger_daily AS
        SELECT date_trunc('day', d.created_at)::date AS day,
               COUNT(d.id)::int AS donations,
               SUM(d.gross_cents)::bigint AS gross_cents,
               SUM(d.platform_fee_cents)::bigint AS fee_cents,
               SUM(d.net_cents)::bigint AS net_cents,
               SUM(d.refunded_cents)::bigint AS refunded_cents
        FROM donations d
        GROUP BY 1;

        CREATE OR REPLACE VIEW v_stripe_events AS
        SELECT e.event_id, e.type, e.created_at, f.attempts, f.last_error, f.resolved_at
        FROM stripe_events e
        LEFT JOIN webhook_event_failures f ON f.event_id = e.event_id
        ORDER BY e.created_at DESC;
    """
    )


def downgrade() -> None:
    op.execute("DROP VIEW IF EXISTS v_stripe_events;")
    op.execute("DROP VIEW IF EXISTS vw_ledger_daily;")
    op.execute("DROP VIEW IF EXISTS vw_ledger_by_campaign;")
    op.execute("DROP TRIGGER IF EXISTS trg_receipt_dispatch_touch ON receipt_dispatch_log;")
    op.execute("DROP FUNCTION IF EXISTS trg_receipt_dispatch_touch();")
    op.execute("DROP TABLE IF EXISTS receipt_dispatch_log;")
