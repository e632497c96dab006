"""Unit tests for the campaign status transition table."""

from datetime import date

import pytest

from kioskads.campaign_engine.models import (
    CAMPAIGN_TRANSITIONS,
    Campaign,
    CampaignStatus,
    TransitionTrigger,
    can_transition,
)

S = CampaignStatus


class TestTransitionTable:
    """Tests for can_transition."""

    @pytest.mark.parametrize(
        "old, new",
        [
            (S.DRAFT, S.PENDING),
            (S.ACTIVE, S.PAUSED),
            (S.PAUSED, S.ACTIVE),
            (S.DRAFT, S.REJECTED),
            (S.PENDING, S.REJECTED),
            (S.DRAFT, S.CANCELLED),
            (S.PENDING, S.CANCELLED),
            (S.ACTIVE, S.CANCELLED),
        ],
    )
    def test_external_edges(self, old, new):
        assert can_transition(old, new, TransitionTrigger.EXTERNAL) is True
        assert can_transition(old, new, TransitionTrigger.SCHEDULE) is False

    @pytest.mark.parametrize("old, new", [(S.PENDING, S.ACTIVE), (S.ACTIVE, S.COMPLETED)])
    def test_schedule_edges(self, old, new):
        assert can_transition(old, new, TransitionTrigger.SCHEDULE) is True
        assert can_transition(old, new, TransitionTrigger.EXTERNAL) is False

    def test_edge_count(self):
        assert len(CAMPAIGN_TRANSITIONS) == 10

    @pytest.mark.parametrize("terminal", [S.COMPLETED, S.REJECTED, S.CANCELLED])
    def test_terminal_states_have_no_exits(self, terminal):
        for target in CampaignStatus:
            assert can_transition(terminal, target) is False

    def test_paused_cannot_complete(self):
        assert can_transition(S.PAUSED, S.COMPLETED) is False

    def test_accepts_raw_strings(self):
        assert can_transition("pending", "active") is True


class TestScheduledTransition:
    """Tests for Campaign.scheduled_transition."""

    def _campaign(self, status, start, end):
        return Campaign(id="c1", status=status, start_date=start, end_date=end)

    def test_pending_starting_today_activates(self):
        campaign = self._campaign(S.PENDING, date(2024, 6, 15), date(2024, 6, 30))
        assert campaign.scheduled_transition(date(2024, 6, 15)) == S.ACTIVE

    def test_pending_in_future_waits(self):
        campaign = self._campaign(S.PENDING, date(2024, 6, 16), date(2024, 6, 30))
        assert campaign.scheduled_transition(date(2024, 6, 15)) is None

    def test_active_ending_today_keeps_running(self):
        campaign = self._campaign(S.ACTIVE, date(2024, 6, 1), date(2024, 6, 15))
        assert campaign.scheduled_transition(date(2024, 6, 15)) is None

    def test_active_ended_yesterday_completes(self):
        campaign = self._campaign(S.ACTIVE, date(2024, 6, 1), date(2024, 6, 14))
        assert campaign.scheduled_transition(date(2024, 6, 15)) == S.COMPLETED

    def test_elapsed_pending_only_activates(self):
        campaign = self._campaign(S.PENDING, date(2024, 5, 1), date(2024, 5, 31))
        assert campaign.scheduled_transition(date(2024, 6, 15)) == S.ACTIVE

    @pytest.mark.parametrize("status", [S.PAUSED, S.DRAFT, S.CANCELLED, S.COMPLETED])
    def test_other_statuses_untouched(self, status):
        campaign = self._campaign(status, date(2024, 5, 1), date(2024, 5, 31))
        assert campaign.scheduled_transition(date(2024, 6, 15)) is None
