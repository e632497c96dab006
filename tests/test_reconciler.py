"""Tests for the campaign lifecycle reconciler against an in-memory store."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy import text

from kioskads.campaign_engine.errors import TransientStoreError
from kioskads.campaign_engine.models import CampaignStatus

TODAY = date(2024, 6, 15)
YESTERDAY = TODAY - timedelta(days=1)


def _status(store, campaign_id):
    return store.get_campaign(campaign_id).status


class TestActivation:
    """pending -> active."""

    def test_pending_starting_today_activates_once(self, engine, store, add_campaign, sink):
        campaign_id = add_campaign(status="pending", start_date=TODAY, end_date=TODAY + timedelta(days=7))

        summary = engine.reconciler.run_pass()
        assert summary.campaigns_activated == 1
        assert summary.errors == []
        assert _status(store, campaign_id) == CampaignStatus.ACTIVE

        second = engine.reconciler.run_pass()
        assert second.campaigns_found == 0
        assert second.campaigns_transitioned == 0
        assert _status(store, campaign_id) == CampaignStatus.ACTIVE

        assert [(e.campaign_id, e.old_status, e.new_status) for e in sink.events] == [
            (campaign_id, "pending", "active")
        ]

    def test_future_campaign_left_pending(self, engine, store, add_campaign):
        campaign_id = add_campaign(status="pending", start_date=TODAY + timedelta(days=1), end_date=TODAY + timedelta(days=5))
        engine.reconciler.run_pass()
        assert _status(store, campaign_id) == CampaignStatus.PENDING

    def test_elapsed_pending_campaign_takes_one_step_per_pass(self, engine, store, add_campaign):
        campaign_id = add_campaign(
            status="pending", start_date=TODAY - timedelta(days=10), end_date=YESTERDAY
        )

        first = engine.reconciler.run_pass()
        assert first.campaigns_activated == 1
        assert first.campaigns_completed == 0
        assert _status(store, campaign_id) == CampaignStatus.ACTIVE

        second = engine.reconciler.run_pass()
        assert second.campaigns_completed == 1
        assert _status(store, campaign_id) == CampaignStatus.COMPLETED

    def test_reference_timezone_decides_today(self, engine, store, clock, add_campaign):
        """06:00 UTC on the 15th is still the 14th in Los Angeles."""
        campaign_id = add_campaign(status="pending", start_date=TODAY, end_date=TODAY + timedelta(days=3))

        clock.freeze(datetime(2024, 6, 15, 6, 0, tzinfo=timezone.utc))
        summary = engine.reconciler.run_pass()
        assert summary.reference_date == "2024-06-14"
        assert _status(store, campaign_id) == CampaignStatus.PENDING

        clock.advance(2)
        engine.reconciler.run_pass()
        assert _status(store, campaign_id) == CampaignStatus.ACTIVE

    def test_missing_kiosk_flags_for_review(self, engine, store, add_campaign, session_factory):
        campaign_id = add_campaign(status="pending", kiosk_ids=["ghost-kiosk"])

        summary = engine.reconciler.run_pass()
        assert summary.campaigns_activated == 0
        assert summary.campaigns_flagged == 1
        assert "kiosk:ghost-kiosk" in summary.errors[0]
        assert _status(store, campaign_id) == CampaignStatus.PENDING

        # A second pass does not open a second review flag
        engine.reconciler.run_pass()
        session = session_factory()
        try:
            needs_review = session.execute(
                text("SELECT needs_review FROM campaigns WHERE id = :id"), {"id": campaign_id}
            ).scalar()
            flags = session.execute(
                text("SELECT COUNT(*) FROM campaign_review_flags WHERE campaign_id = :id"),
                {"id": campaign_id},
            ).scalar()
        finally:
            session.close()
        assert bool(needs_review) is True
        assert flags == 1

    def test_missing_media_asset_flags_for_review(self, engine, store, add_campaign):
        campaign_id = add_campaign(status="pending", media_asset_id="no-such-asset")
        summary = engine.reconciler.run_pass()
        assert "media_asset:no-such-asset" in summary.errors[0]
        assert _status(store, campaign_id) == CampaignStatus.PENDING


class TestCompletion:
    """active -> completed, with archival."""

    def test_expired_campaign_completes_and_archives(
        self, engine, store, add_campaign, add_asset, fetch_asset, media_root
    ):
        campaign_id = add_campaign(status="active", start_date=TODAY - timedelta(days=7), end_date=YESTERDAY)
        add_asset("asset-1", campaign_id=campaign_id, status="active", file_path="active/one.mp4")
        add_asset("asset-2", campaign_id=campaign_id, status="active", file_path="active/two.png")

        summary = engine.reconciler.run_pass()

        assert summary.campaigns_completed == 1
        assert summary.assets_archived == 2
        assert summary.errors == []
        assert _status(store, campaign_id) == CampaignStatus.COMPLETED
        for asset_id, name in (("asset-1", "one.mp4"), ("asset-2", "two.png")):
            row = fetch_asset(asset_id)
            assert row.status == "archived"
            assert row.file_path == f"archive/{name}"
            assert (media_root / "archive" / name).exists()
            assert not (media_root / "active" / name).exists()

    def test_campaign_ending_today_stays_active(self, engine, store, add_campaign):
        campaign_id = add_campaign(status="active", start_date=TODAY - timedelta(days=3), end_date=TODAY)
        engine.reconciler.run_pass()
        assert _status(store, campaign_id) == CampaignStatus.ACTIVE

    @pytest.mark.parametrize("status", ["paused", "draft", "cancelled", "rejected"])
    def test_other_statuses_untouched(self, engine, store, add_campaign, status):
        campaign_id = add_campaign(status=status, start_date=TODAY - timedelta(days=30), end_date=YESTERDAY)
        summary = engine.reconciler.run_pass()
        assert summary.campaigns_found == 0
        assert _status(store, campaign_id) == CampaignStatus(status)

    def test_pending_and_rejected_assets_not_archived(self, engine, add_campaign, add_asset, fetch_asset):
        campaign_id = add_campaign(status="active", start_date=TODAY - timedelta(days=7), end_date=YESTERDAY)
        add_asset("approved", campaign_id=campaign_id, status="approved", file_path="active/a.mp4")
        add_asset("pending", campaign_id=campaign_id, status="pending", file_path="active/p.mp4")
        add_asset("rejected", campaign_id=campaign_id, status="rejected", file_path="active/r.mp4")

        summary = engine.reconciler.run_pass()

        assert summary.assets_archived == 1
        assert fetch_asset("approved").status == "archived"
        assert fetch_asset("pending").status == "pending"
        assert fetch_asset("rejected").status == "rejected"

    def test_failed_archival_retried_on_next_pass(
        self, engine, store, object_store, add_campaign, add_asset, fetch_asset
    ):
        campaign_id = add_campaign(status="active", start_date=TODAY - timedelta(days=7), end_date=YESTERDAY)
        add_asset("late", campaign_id=campaign_id, status="active", file_path="active/late.mp4")

        with patch.object(object_store, "_move", side_effect=TransientStoreError("bucket unreachable")):
            first = engine.reconciler.run_pass()
        assert first.campaigns_completed == 1
        assert first.assets_archived == 0
        assert first.campaigns_flagged == 0
        assert any("late" in error and "relocation failed" in error for error in first.errors)
        assert _status(store, campaign_id) == CampaignStatus.COMPLETED
        assert fetch_asset("late").status == "active"

        second = engine.reconciler.run_pass()
        assert second.campaigns_transitioned == 0
        assert second.assets_archived == 1
        assert fetch_asset("late").status == "archived"

    def test_missing_backing_file_flags_campaign_once(
        self, engine, store, add_campaign, add_asset, fetch_asset, session_factory
    ):
        campaign_id = add_campaign(status="active", start_date=TODAY - timedelta(days=7), end_date=YESTERDAY)
        add_asset("gone", campaign_id=campaign_id, status="active", file_path="active/gone.mp4", create_file=False)

        summaries = [engine.reconciler.run_pass() for _ in range(3)]

        assert summaries[0].campaigns_completed == 1
        assert all(s.campaigns_flagged == 1 for s in summaries)
        assert any("gone" in error and "backing file missing" in error for error in summaries[0].errors)
        assert fetch_asset("gone").status == "active"

        session = session_factory()
        try:
            needs_review = session.execute(
                text("SELECT needs_review FROM campaigns WHERE id = :id"), {"id": campaign_id}
            ).scalar()
            reasons = session.execute(
                text("SELECT reason FROM campaign_review_flags WHERE campaign_id = :id"),
                {"id": campaign_id},
            ).scalars().all()
        finally:
            session.close()
        assert bool(needs_review) is True
        assert len(reasons) == 1
        assert "gone" in reasons[0]

    def test_missing_backing_file_archives_once_restored(
        self, engine, add_campaign, add_asset, fetch_asset, media_root
    ):
        campaign_id = add_campaign(status="active", start_date=TODAY - timedelta(days=7), end_date=YESTERDAY)
        add_asset("late", campaign_id=campaign_id, status="active", file_path="active/late.mp4", create_file=False)
        engine.reconciler.run_pass()

        (media_root / "active").mkdir(parents=True, exist_ok=True)
        (media_root / "active" / "late.mp4").write_bytes(b"creative")

        summary = engine.reconciler.run_pass()
        assert summary.assets_archived == 1
        assert summary.campaigns_flagged == 0
        assert fetch_asset("late").status == "archived"


class TestPassIsolation:
    """Failures and races never abort a pass."""

    def test_lost_compare_and_set_is_skipped(self, engine, store, add_campaign, sink):
        campaign_id = add_campaign(status="pending")

        with patch.object(store, "compare_and_set_status", return_value=False):
            summary = engine.reconciler.run_pass()

        assert summary.campaigns_found == 1
        assert summary.campaigns_transitioned == 0
        assert summary.errors == []
        assert sink.events == []
        assert _status(store, campaign_id) == CampaignStatus.PENDING

    def test_store_error_on_one_campaign_does_not_stop_others(self, engine, store, add_campaign):
        first = add_campaign(status="pending")
        second = add_campaign(status="pending")
        real_missing = store.missing_references

        def flaky(campaign):
            if campaign.id == first:
                raise TransientStoreError("connection reset")
            return real_missing(campaign)

        with patch.object(store, "missing_references", side_effect=flaky):
            summary = engine.reconciler.run_pass()

        assert summary.campaigns_activated == 1
        assert len(summary.errors) == 1
        assert "connection reset" in summary.errors[0]
        assert _status(store, first) == CampaignStatus.PENDING
        assert _status(store, second) == CampaignStatus.ACTIVE

    def test_load_failure_reported_not_raised(self, engine, store):
        with patch.object(store, "find_due_campaigns", side_effect=TransientStoreError("db down")):
            summary = engine.reconciler.run_pass()
        assert any("db down" in error for error in summary.errors)

    def test_notification_failure_does_not_block_transition(self, engine, store, add_campaign, sink):
        campaign_id = add_campaign(status="pending")

        with patch.object(sink, "emit", side_effect=RuntimeError("smtp down")):
            summary = engine.reconciler.run_pass()

        assert summary.campaigns_activated == 1
        assert summary.errors == []
        assert _status(store, campaign_id) == CampaignStatus.ACTIVE

    def test_activate_only(self, engine, store, add_campaign):
        pending = add_campaign(status="pending")
        expired = add_campaign(status="active", start_date=TODAY - timedelta(days=5), end_date=YESTERDAY)

        summary = engine.reconciler.run_pass(activate=True, complete=False, retry_archival=False)

        assert summary.campaigns_activated == 1
        assert _status(store, pending) == CampaignStatus.ACTIVE
        assert _status(store, expired) == CampaignStatus.ACTIVE
