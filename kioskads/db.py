"""
Database engine, session factory and table definitions.

Queries are written as SQLAlchemy text() statements in the stores; the
tables here are the schema those statements run against (also used by the
Alembic revision and by tests that build an in-memory SQLite database).
"""

import logging
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

metadata = MetaData()

kiosks = Table(
    "kiosks",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False, default=""),
    Column("price", Numeric(10, 2), nullable=False),
    Column("traffic_level", String(50)),
    Column("status", String(20), nullable=False, default="active"),
    Column("created_at", DateTime(timezone=True)),
)

campaigns = Table(
    "campaigns",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False, default=""),
    Column("status", String(20), nullable=False, index=True),
    Column("start_date", Date, nullable=False, index=True),
    Column("end_date", Date, nullable=False, index=True),
    Column("budget", Numeric(12, 2), nullable=False, default=0),
    Column("total_cost", Numeric(12, 2), nullable=False, default=0),
    Column("total_discount_amount", Numeric(12, 2), nullable=False, default=0),
    Column("media_asset_id", String(36)),
    Column("needs_review", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

# Ordered kiosk selection; position drives discount tiering
campaign_kiosks = Table(
    "campaign_kiosks",
    metadata,
    Column("campaign_id", String(36), primary_key=True),
    Column("kiosk_id", String(36), primary_key=True),
    Column("position", Integer, nullable=False),
)

media_assets = Table(
    "media_assets",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("campaign_id", String(36), index=True),
    Column("file_path", Text),
    Column("status", String(20), nullable=False, index=True),
    Column("updated_at", DateTime(timezone=True)),
)

volume_discount_settings = Table(
    "volume_discount_settings",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("discount_type", String(20), nullable=False),
    Column("discount_value", Numeric(10, 2), nullable=False),
    Column("min_kiosks", Integer, nullable=False),
    Column("max_kiosks", Integer),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("valid_from", DateTime(timezone=True)),
    Column("valid_until", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

campaign_pricing_breakdown = Table(
    "campaign_pricing_breakdown",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("campaign_id", String(36), nullable=False, index=True),
    Column("kiosk_id", String(36), nullable=False),
    Column("position", Integer, nullable=False),
    Column("base_price", Numeric(10, 2), nullable=False),
    Column("discount_amount", Numeric(10, 2), nullable=False),
    Column("final_price", Numeric(10, 2), nullable=False),
    Column("discount_reason", Text),
    Column("created_at", DateTime(timezone=True)),
)

campaign_notifications = Table(
    "campaign_notifications",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("campaign_id", String(36), nullable=False, index=True),
    Column("asset_id", String(36)),
    Column("old_status", String(20), nullable=False),
    Column("new_status", String(20), nullable=False),
    Column("occurred_at", DateTime(timezone=True), nullable=False),
    Column("sent_at", DateTime(timezone=True)),
)

campaign_review_flags = Table(
    "campaign_review_flags",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("campaign_id", String(36), nullable=False, index=True),
    Column("reason", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("resolved_at", DateTime(timezone=True)),
)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine with connection pooling (pool args skipped for SQLite)."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every thread sees the same in-memory database
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=echo,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo)

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_schema(engine: Engine, tables: Optional[list] = None) -> None:
    """Create missing tables (tests and local development; production uses Alembic)."""
    metadata.create_all(engine, tables=tables)
    logger.info(f"Schema ready on {engine.url.render_as_string(hide_password=True)}")
