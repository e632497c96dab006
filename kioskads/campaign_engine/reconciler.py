"""
Campaign Lifecycle Reconciler

Applies the two time-driven edges (pending -> active, active -> completed)
to every due campaign, then triggers archival for completed ones.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional, Set

from .archival import AssetArchivalCoordinator
from .errors import CampaignEngineError, PermanentDataError, TransientStoreError
from .models import Campaign, CampaignStatus, TransitionTrigger, can_transition
from .notifications import CampaignEvent, NotificationSink, safe_emit
from .store import CampaignStore
from .time_service import ReferenceClock

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationSummary:
    """Result of one reconciliation pass."""

    reference_date: Optional[str] = None
    campaigns_found: int = 0
    campaigns_transitioned: int = 0
    campaigns_activated: int = 0
    campaigns_completed: int = 0
    assets_archived: int = 0
    campaigns_flagged: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reference_date": self.reference_date,
            "campaigns_found": self.campaigns_found,
            "campaigns_transitioned": self.campaigns_transitioned,
            "campaigns_activated": self.campaigns_activated,
            "campaigns_completed": self.campaigns_completed,
            "assets_archived": self.assets_archived,
            "campaigns_flagged": self.campaigns_flagged,
            "errors": list(self.errors),
        }


class CampaignLifecycleReconciler:
    """Moves campaigns along the schedule-driven edges of the status graph."""

    def __init__(
        self,
        store: CampaignStore,
        archival: AssetArchivalCoordinator,
        clock: ReferenceClock,
        notification_sink: Optional[NotificationSink] = None,
    ):
        self.store = store
        self.archival = archival
        self.clock = clock
        self.notification_sink = notification_sink

    def run_pass(
        self,
        activate: bool = True,
        complete: bool = True,
        retry_archival: bool = True,
    ) -> ReconciliationSummary:
        """Run one pass against the reference clock's current date.

        Each campaign advances at most one edge per pass: a pending campaign
        whose whole date range has already elapsed becomes active now and is
        completed on a later pass.
        """
        today = self.clock.today()
        summary = ReconciliationSummary(reference_date=today.isoformat())
        archived_this_pass: Set[str] = set()

        if activate or complete:
            self._transition_due_campaigns(today, activate, complete, summary, archived_this_pass)

        if retry_archival:
            self._retry_archival(summary, archived_this_pass)

        logger.info(
            f"Reconciliation pass for {today}: {summary.campaigns_found} due, "
            f"{summary.campaigns_transitioned} transitioned "
            f"({summary.campaigns_activated} activated, {summary.campaigns_completed} completed), "
            f"{summary.assets_archived} assets archived, {len(summary.errors)} errors"
        )
        return summary

    def _transition_due_campaigns(
        self,
        today: date,
        activate: bool,
        complete: bool,
        summary: ReconciliationSummary,
        archived_this_pass: Set[str],
    ) -> None:
        try:
            campaigns = self.store.find_due_campaigns(today)
        except TransientStoreError as e:
            logger.error(f"Failed to load due campaigns: {e}")
            summary.errors.append(f"load due campaigns: {e}")
            return

        wanted = set()
        if activate:
            wanted.add(CampaignStatus.ACTIVE)
        if complete:
            wanted.add(CampaignStatus.COMPLETED)

        for campaign in campaigns:
            target = campaign.scheduled_transition(today)
            if target is None or target not in wanted:
                continue
            summary.campaigns_found += 1

            try:
                self._apply_transition(campaign, target, summary, archived_this_pass)
            except PermanentDataError as e:
                logger.error(f"Campaign {campaign.id} left {campaign.status.value}: {e}")
                summary.errors.append(f"campaign {campaign.id}: {e}")
                self._flag(campaign.id, str(e), summary)
            except CampaignEngineError as e:
                logger.error(f"Failed to transition campaign {campaign.id}: {e}")
                summary.errors.append(f"campaign {campaign.id}: {e}")
            except Exception as e:
                logger.exception(f"Unexpected error transitioning campaign {campaign.id}")
                summary.errors.append(f"campaign {campaign.id}: {e}")

    def _apply_transition(
        self,
        campaign: Campaign,
        target: CampaignStatus,
        summary: ReconciliationSummary,
        archived_this_pass: Set[str],
    ) -> None:
        old_status = campaign.status
        if not can_transition(old_status, target, TransitionTrigger.SCHEDULE):
            raise CampaignEngineError(
                f"Illegal scheduled transition {old_status.value} -> {target.value}"
            )

        if target == CampaignStatus.ACTIVE:
            missing = self.store.missing_references(campaign)
            if missing:
                raise PermanentDataError(
                    f"references missing records: {', '.join(missing)}", missing=missing
                )

        if not self.store.compare_and_set_status(campaign.id, old_status, target):
            logger.debug(
                f"Campaign {campaign.id} no longer {old_status.value}; skipped"
            )
            return

        summary.campaigns_transitioned += 1
        if target == CampaignStatus.ACTIVE:
            summary.campaigns_activated += 1
        else:
            summary.campaigns_completed += 1
        logger.info(f"Campaign {campaign.id}: {old_status.value} -> {target.value}")

        safe_emit(
            self.notification_sink,
            CampaignEvent(
                campaign_id=campaign.id,
                old_status=old_status.value,
                new_status=target.value,
                timestamp=datetime.now(timezone.utc),
            ),
        )

        if target == CampaignStatus.COMPLETED:
            archived_this_pass.add(campaign.id)
            self._archive(campaign.id, summary)

    def _retry_archival(self, summary: ReconciliationSummary, archived_this_pass: Set[str]) -> None:
        try:
            campaign_ids = self.store.find_completed_campaigns_with_unarchived_assets()
        except TransientStoreError as e:
            logger.error(f"Failed to load completed campaigns awaiting archival: {e}")
            summary.errors.append(f"load archival backlog: {e}")
            return

        for campaign_id in campaign_ids:
            if campaign_id in archived_this_pass:
                continue
            self._archive(campaign_id, summary)

    def _archive(self, campaign_id: str, summary: ReconciliationSummary) -> None:
        try:
            result = self.archival.archive_for_campaign(campaign_id)
        except Exception as e:
            logger.error(f"Archival for campaign {campaign_id} failed: {e}")
            summary.errors.append(f"archive campaign {campaign_id}: {e}")
            return

        summary.assets_archived += result.moved
        for asset_id in result.failed:
            if asset_id in result.permanent:
                summary.errors.append(f"archive asset {asset_id} (campaign {campaign_id}): backing file missing")
            else:
                summary.errors.append(f"archive asset {asset_id} (campaign {campaign_id}): relocation failed")
        if result.permanent:
            self._flag(
                campaign_id,
                f"media assets with missing backing files: {', '.join(result.permanent)}",
                summary,
            )

    def _flag(self, campaign_id: str, reason: str, summary: ReconciliationSummary) -> None:
        try:
            self.store.flag_for_review(campaign_id, reason)
            summary.campaigns_flagged += 1
        except TransientStoreError as e:
            logger.error(f"Failed to flag campaign {campaign_id} for review: {e}")
