"""create_campaign_engine_tables

Revision ID: a3c1e7f29b04
Revises: 
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = 'a3c1e7f29b04'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS kiosks (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(255) NOT NULL DEFAULT '',
            price DECIMAL(10, 2) NOT NULL,
            traffic_level VARCHAR(50),
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS campaigns (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(255) NOT NULL DEFAULT '',
            status VARCHAR(20) NOT NULL DEFAULT 'draft',
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            budget DECIMAL(12, 2) NOT NULL DEFAULT 0,
            total_cost DECIMAL(12, 2) NOT NULL DEFAULT 0,
            total_discount_amount DECIMAL(12, 2) NOT NULL DEFAULT 0,
            media_asset_id VARCHAR(36),
            needs_review BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT chk_campaign_status CHECK (
                status IN ('draft', 'pending', 'active', 'paused', 'completed', 'rejected', 'cancelled')
            ),
            CONSTRAINT chk_campaign_dates CHECK (end_date >= start_date)
        )
    """)

    # Reconciler lookups: pending by start_date, active by end_date
    op.execute("CREATE INDEX IF NOT EXISTS idx_campaigns_status_start ON campaigns(status, start_date)")
    op.execute("CREATE INDEX IF NOT EXISTS idx_campaigns_status_end ON campaigns(status, end_date)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS campaign_kiosks (
            campaign_id VARCHAR(36) NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            kiosk_id VARCHAR(36) NOT NULL,
            position INTEGER NOT NULL,
            PRIMARY KEY (campaign_id, kiosk_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS media_assets (
            id VARCHAR(36) PRIMARY KEY,
            campaign_id VARCHAR(36),
            file_path TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT chk_media_status CHECK (
                status IN ('pending', 'approved', 'rejected', 'active', 'archived')
            )
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_media_assets_campaign ON media_assets(campaign_id, status)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS volume_discount_settings (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            description TEXT,
            discount_type VARCHAR(20) NOT NULL,
            discount_value DECIMAL(10, 2) NOT NULL,
            min_kiosks INTEGER NOT NULL,
            max_kiosks INTEGER,
            is_active BOOLEAN NOT NULL DEFAULT true,
            valid_from TIMESTAMPTZ,
            valid_until TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT chk_discount_type CHECK (discount_type IN ('percentage', 'fixed_amount')),
            CONSTRAINT chk_discount_value CHECK (discount_value > 0)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_volume_discounts_active "
        "ON volume_discount_settings(is_active, min_kiosks)"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS campaign_pricing_breakdown (
            id VARCHAR(36) PRIMARY KEY,
            campaign_id VARCHAR(36) NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            kiosk_id VARCHAR(36) NOT NULL,
            position INTEGER NOT NULL,
            base_price DECIMAL(10, 2) NOT NULL,
            discount_amount DECIMAL(10, 2) NOT NULL,
            final_price DECIMAL(10, 2) NOT NULL,
            discount_reason TEXT,
            created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_pricing_breakdown_campaign "
        "ON campaign_pricing_breakdown(campaign_id)"
    )

    # Outbox drained by the email worker
    op.execute("""
        CREATE TABLE IF NOT EXISTS campaign_notifications (
            id VARCHAR(36) PRIMARY KEY,
            campaign_id VARCHAR(36) NOT NULL,
            asset_id VARCHAR(36),
            old_status VARCHAR(20) NOT NULL,
            new_status VARCHAR(20) NOT NULL,
            occurred_at TIMESTAMPTZ NOT NULL,
            sent_at TIMESTAMPTZ
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_campaign_notifications_unsent "
        "ON campaign_notifications(occurred_at) WHERE sent_at IS NULL"
    )

    op.execute("""
        CREATE TABLE IF NOT EXISTS campaign_review_flags (
            id VARCHAR(36) PRIMARY KEY,
            campaign_id VARCHAR(36) NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
            reason TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL,
            resolved_at TIMESTAMPTZ
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_review_flags_open "
        "ON campaign_review_flags(campaign_id) WHERE resolved_at IS NULL"
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_review_flags_open")
    op.execute("DROP INDEX IF EXISTS idx_campaign_notifications_unsent")
    op.execute("DROP INDEX IF EXISTS idx_pricing_breakdown_campaign")
    op.execute("DROP INDEX IF EXISTS idx_volume_discounts_active")
    op.execute("DROP INDEX IF EXISTS idx_media_assets_campaign")
    op.execute("DROP INDEX IF EXISTS idx_campaigns_status_end")
    op.execute("DROP INDEX IF EXISTS idx_campaigns_status_start")

    op.execute("DROP TABLE IF EXISTS campaign_review_flags CASCADE")
    op.execute("DROP TABLE IF EXISTS campaign_notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS campaign_pricing_breakdown CASCADE")
    op.execute("DROP TABLE IF EXISTS volume_discount_settings CASCADE")
    op.execute("DROP TABLE IF EXISTS media_assets CASCADE")
    op.execute("DROP TABLE IF EXISTS campaign_kiosks CASCADE")
    op.execute("DROP TABLE IF EXISTS campaigns CASCADE")
    op.execute("DROP TABLE IF EXISTS kiosks CASCADE")
