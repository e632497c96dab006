"""Tests for the SQL campaign store."""

from datetime import date, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from kioskads.campaign_engine.errors import TransientStoreError
from kioskads.campaign_engine.models import CampaignStatus, MediaAssetStatus
from kioskads.campaign_engine.store import SqlCampaignStore

TODAY = date(2024, 6, 15)


class TestCampaignQueries:
    """Tests for due-campaign lookup and compare-and-set."""

    def test_find_due_campaigns(self, store, add_campaign):
        starting = add_campaign(status="pending", start_date=TODAY, end_date=TODAY + timedelta(days=3))
        add_campaign(status="pending", start_date=TODAY + timedelta(days=1), end_date=TODAY + timedelta(days=3))
        expired = add_campaign(status="active", start_date=TODAY - timedelta(days=9), end_date=TODAY - timedelta(days=1))
        add_campaign(status="active", start_date=TODAY - timedelta(days=9), end_date=TODAY)
        add_campaign(status="paused", start_date=TODAY - timedelta(days=9), end_date=TODAY - timedelta(days=1))

        due = store.find_due_campaigns(TODAY)

        assert sorted(c.id for c in due) == sorted([starting, expired])
        by_id = {c.id: c for c in due}
        assert by_id[starting].start_date == TODAY
        assert by_id[starting].kiosk_ids == ["kiosk-1"]

    def test_kiosk_order_preserved(self, store, add_campaign, add_kiosk):
        for kiosk_id in ("Z", "A", "M"):
            add_kiosk(kiosk_id)
        campaign_id = add_campaign(kiosk_ids=["Z", "A", "M"])
        assert store.get_campaign(campaign_id).kiosk_ids == ["Z", "A", "M"]

    def test_compare_and_set(self, store, add_campaign):
        campaign_id = add_campaign(status="pending")

        assert store.compare_and_set_status(campaign_id, CampaignStatus.PENDING, CampaignStatus.ACTIVE) is True
        assert store.compare_and_set_status(campaign_id, CampaignStatus.PENDING, CampaignStatus.ACTIVE) is False
        assert store.get_campaign(campaign_id).status == CampaignStatus.ACTIVE

    def test_get_missing_campaign(self, store):
        assert store.get_campaign("nope") is None


class TestAssetQueries:
    """Tests for asset lookup and conditional status updates."""

    def test_set_asset_status_conditional(self, store, add_asset):
        add_asset("a1", status="pending")

        assert store.set_asset_status(
            "a1", MediaAssetStatus.ARCHIVED, expected=[MediaAssetStatus.ACTIVE]
        ) is False
        assert store.set_asset_status("a1", MediaAssetStatus.APPROVED) is True

    def test_completed_with_unarchived_assets(self, store, add_campaign, add_asset):
        done = add_campaign(status="completed")
        clean = add_campaign(status="completed")
        running = add_campaign(status="active")
        add_asset("a1", campaign_id=done, status="approved")
        add_asset("a2", campaign_id=clean, status="archived")
        add_asset("a3", campaign_id=running, status="active")

        assert store.find_completed_campaigns_with_unarchived_assets() == [done]


class TestKiosksAndReferences:
    def test_list_kiosks_in_requested_order(self, store, add_kiosk):
        add_kiosk("K1", "50.00")
        add_kiosk("K2", "75.50")

        kiosks = store.list_kiosks(["K2", "missing", "K1"])

        assert [k.id for k in kiosks] == ["K2", "K1"]
        assert str(kiosks[0].price) == "75.50"

    def test_missing_references(self, store, add_campaign, add_kiosk):
        add_kiosk("K1")
        campaign_id = add_campaign(kiosk_ids=["K1", "K404"], media_asset_id="gone")
        campaign = store.get_campaign(campaign_id)

        assert store.missing_references(campaign) == ["kiosk:K404", "media_asset:gone"]


class TestErrorMapping:
    def test_database_errors_become_transient(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("server closed the connection"))
        store = SqlCampaignStore(MagicMock(return_value=session))

        with pytest.raises(TransientStoreError):
            store.find_due_campaigns(TODAY)
        session.rollback.assert_called_once()
        session.close.assert_called_once()
