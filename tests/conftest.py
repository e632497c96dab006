"""Shared fixtures: in-memory SQLite store, frozen clock, local object store."""

from datetime import date, datetime
from decimal import Decimal
from typing import List

import pytest
from sqlalchemy import DateTime, bindparam, text

from kioskads.campaign_engine import build_engine
from kioskads.campaign_engine.config import CampaignEngineConfig
from kioskads.campaign_engine.models import Campaign, CampaignStatus
from kioskads.campaign_engine.notifications import CampaignEvent, NotificationSink
from kioskads.campaign_engine.object_store import LocalObjectStore
from kioskads.campaign_engine.store import SqlCampaignStore
from kioskads.campaign_engine.time_service import ReferenceClock
from kioskads.db import create_db_engine, create_session_factory, init_schema

# Noon in Los Angeles; the reference "today" for most tests
REFERENCE_NOW = datetime(2024, 6, 15, 12, 0)
TODAY = date(2024, 6, 15)


class RecordingSink(NotificationSink):
    """Keeps every emitted event in memory."""

    def __init__(self):
        self.events: List[CampaignEvent] = []

    def emit(self, event: CampaignEvent) -> None:
        self.events.append(event)


@pytest.fixture
def config():
    return CampaignEngineConfig(
        archive_max_workers=2,
        archive_call_timeout_seconds=2.0,
        database_url="sqlite://",
    )


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_schema(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SqlCampaignStore(session_factory)


@pytest.fixture
def clock(config):
    clock = ReferenceClock(config)
    clock.freeze(REFERENCE_NOW)
    return clock


@pytest.fixture
def media_root(tmp_path):
    return tmp_path / "media"


@pytest.fixture
def object_store(media_root):
    return LocalObjectStore(media_root)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def engine(config, session_factory, store, object_store, sink, clock):
    engine = build_engine(
        config,
        session_factory=session_factory,
        object_store=object_store,
        notification_sink=sink,
        clock=clock,
        store=store,
    )
    yield engine
    engine.shutdown()


@pytest.fixture
def add_kiosk(session_factory):
    def _add(kiosk_id: str, price="100.00", name: str = ""):
        session = session_factory()
        try:
            session.execute(
                text("INSERT INTO kiosks (id, name, price, status) VALUES (:id, :name, :price, 'active')"),
                {"id": kiosk_id, "name": name or kiosk_id, "price": float(price)},
            )
            session.commit()
        finally:
            session.close()
        return kiosk_id

    return _add


@pytest.fixture
def add_asset(session_factory, media_root):
    """Insert a media asset; creates its backing file unless ``create_file`` is False."""

    def _add(asset_id: str, campaign_id=None, status: str = "active", file_path=None, create_file=True):
        if file_path and create_file:
            path = media_root / file_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"creative")
        session = session_factory()
        try:
            session.execute(
                text("""
                    INSERT INTO media_assets (id, campaign_id, file_path, status, updated_at)
                    VALUES (:id, :cid, :path, :status, :now)
                """).bindparams(bindparam("now", type_=DateTime)),
                {
                    "id": asset_id,
                    "cid": campaign_id,
                    "path": file_path,
                    "status": status,
                    "now": datetime(2024, 1, 1),
                },
            )
            session.commit()
        finally:
            session.close()
        return asset_id

    return _add


@pytest.fixture
def add_campaign(store, add_kiosk):
    """Insert a campaign directly in the given status (kiosks are created as needed)."""
    counter = {"n": 0}

    def _add(status="pending", start_date=TODAY, end_date=TODAY, kiosk_ids=None, media_asset_id=None):
        counter["n"] += 1
        if kiosk_ids is None:
            kiosk_ids = [add_kiosk(f"kiosk-{counter['n']}")]
        campaign = Campaign(
            id=f"campaign-{counter['n']}",
            name=f"Campaign {counter['n']}",
            status=CampaignStatus(status),
            start_date=start_date,
            end_date=end_date,
            kiosk_ids=list(kiosk_ids),
            media_asset_id=media_asset_id,
            budget=Decimal("500"),
        )
        return store.insert_campaign(campaign)

    return _add


@pytest.fixture
def fetch_asset(session_factory):
    def _fetch(asset_id):
        session = session_factory()
        try:
            return session.execute(
                text("SELECT id, status, file_path FROM media_assets WHERE id = :id"), {"id": asset_id}
            ).fetchone()
        finally:
            session.close()

    return _fetch
