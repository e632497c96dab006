"""
Campaign Service

Campaign creation and pricing, plus the externally driven status edges
(submit, pause, resume, reject, cancel). Uses the same transition table and
compare-and-set as the reconciler.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Sequence

from .errors import CampaignNotFoundError, DiscountSettingNotFoundError, ValidationError
from .models import (
    Campaign,
    CampaignStatus,
    TransitionTrigger,
    VolumeDiscountSetting,
    can_transition,
)
from .notifications import CampaignEvent, NotificationSink, safe_emit
from .pricing import CampaignPricing, price, to_decimal, validate_discount_setting
from .store import CampaignStore
from .time_service import ReferenceClock

logger = logging.getLogger(__name__)


def validate_campaign_dates(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValidationError(
            f"End date {end_date.isoformat()} is before start date {start_date.isoformat()}"
        )


def validate_kiosk_selection(kiosk_ids: Sequence[str]) -> None:
    errors = []
    if not kiosk_ids:
        errors.append("At least one kiosk must be selected")
    seen = set()
    duplicates = []
    for kiosk_id in kiosk_ids:
        if kiosk_id in seen and kiosk_id not in duplicates:
            duplicates.append(kiosk_id)
        seen.add(kiosk_id)
    if duplicates:
        errors.append(f"Kiosks selected more than once: {', '.join(duplicates)}")
    if errors:
        raise ValidationError(errors)


class CampaignService:
    """Creates, prices and moves campaigns on behalf of users and admins."""

    def __init__(
        self,
        store: CampaignStore,
        clock: ReferenceClock,
        notification_sink: Optional[NotificationSink] = None,
    ):
        self.store = store
        self.clock = clock
        self.notification_sink = notification_sink

    # ============================================
    # Pricing
    # ============================================

    def quote(self, kiosk_ids: Sequence[str]) -> CampaignPricing:
        """Price a kiosk selection in the order the client picked it."""
        validate_kiosk_selection(kiosk_ids)
        kiosks = self.store.list_kiosks(kiosk_ids)
        found = {kiosk.id for kiosk in kiosks}
        unknown = [kid for kid in kiosk_ids if kid not in found]
        if unknown:
            raise ValidationError(f"Unknown kiosks: {', '.join(unknown)}")

        settings = self.store.list_active_discount_settings()
        return price(kiosks, settings, self.clock.now())

    def create_campaign(
        self,
        name: str,
        start_date: date,
        end_date: date,
        kiosk_ids: Sequence[str],
        budget=Decimal("0"),
        media_asset_id: Optional[str] = None,
    ) -> Campaign:
        """Validate, price and persist a new draft campaign."""
        validate_campaign_dates(start_date, end_date)
        pricing = self.quote(kiosk_ids)
        if media_asset_id:
            self._check_media_asset(media_asset_id)

        campaign = Campaign(
            id="",
            name=name,
            status=CampaignStatus.DRAFT,
            start_date=start_date,
            end_date=end_date,
            budget=to_decimal(budget),
            total_cost=pricing.total_final,
            total_discount_amount=pricing.total_discount,
            kiosk_ids=list(kiosk_ids),
            media_asset_id=media_asset_id,
        )
        campaign.id = self.store.insert_campaign(campaign)
        self.store.save_pricing_breakdown(campaign.id, pricing)

        logger.info(
            f"Campaign {campaign.id} created: {len(kiosk_ids)} kiosks, "
            f"total {pricing.total_final} (discount {pricing.total_discount})"
        )
        return campaign

    def reprice_campaign(self, campaign_id: str) -> CampaignPricing:
        """Re-run the pricing engine for a campaign's current kiosk selection."""
        campaign = self._get(campaign_id)
        pricing = self.quote(campaign.kiosk_ids)
        self.store.save_pricing_breakdown(campaign_id, pricing)
        self.store.update_campaign_pricing(campaign_id, pricing)
        return pricing

    # ============================================
    # External status edges
    # ============================================

    def transition(self, campaign_id: str, new_status: CampaignStatus) -> Campaign:
        """Apply an externally driven edge from the transition table."""
        new_status = CampaignStatus(new_status)
        campaign = self._get(campaign_id)
        old_status = campaign.status

        if not can_transition(old_status, new_status, TransitionTrigger.EXTERNAL):
            raise ValidationError(
                f"Cannot move campaign from {old_status.value} to {new_status.value}"
            )

        if not self.store.compare_and_set_status(campaign_id, old_status, new_status):
            raise ValidationError(
                f"Campaign {campaign_id} changed status concurrently; reload and retry"
            )

        logger.info(f"Campaign {campaign_id}: {old_status.value} -> {new_status.value}")
        safe_emit(
            self.notification_sink,
            CampaignEvent(
                campaign_id=campaign_id,
                old_status=old_status.value,
                new_status=new_status.value,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        campaign.status = new_status
        return campaign

    def submit(self, campaign_id: str) -> Campaign:
        return self.transition(campaign_id, CampaignStatus.PENDING)

    def pause(self, campaign_id: str) -> Campaign:
        return self.transition(campaign_id, CampaignStatus.PAUSED)

    def resume(self, campaign_id: str) -> Campaign:
        return self.transition(campaign_id, CampaignStatus.ACTIVE)

    def reject(self, campaign_id: str) -> Campaign:
        return self.transition(campaign_id, CampaignStatus.REJECTED)

    def cancel(self, campaign_id: str) -> Campaign:
        return self.transition(campaign_id, CampaignStatus.CANCELLED)

    # ============================================
    # Discount administration
    # ============================================

    def create_discount_setting(self, setting: VolumeDiscountSetting) -> str:
        validate_discount_setting(setting)
        return self.store.insert_discount_setting(setting)

    def list_discount_settings(self) -> List[VolumeDiscountSetting]:
        return self.store.list_active_discount_settings()

    def update_discount_setting(
        self, setting_id: str, setting: VolumeDiscountSetting
    ) -> VolumeDiscountSetting:
        """Replace every field of an existing setting after validating the new values."""
        validate_discount_setting(setting)
        setting.id = setting_id
        if not self.store.update_discount_setting(setting):
            raise DiscountSettingNotFoundError(f"Discount setting {setting_id} not found")
        return setting

    def deactivate_discount_setting(self, setting_id: str) -> None:
        """Soft delete: the setting stays stored but stops applying to quotes."""
        if not self.store.deactivate_discount_setting(setting_id):
            raise DiscountSettingNotFoundError(f"Discount setting {setting_id} not found")
        logger.info(f"Discount setting {setting_id} deactivated")

    def _check_media_asset(self, asset_id: str) -> None:
        asset = self.store.get_media_asset(asset_id)
        if asset is None:
            raise ValidationError(f"Media asset {asset_id} does not exist")
        if asset.campaign_id:
            raise ValidationError(
                f"Media asset {asset_id} already belongs to campaign {asset.campaign_id}"
            )

    def _get(self, campaign_id: str) -> Campaign:
        campaign = self.store.get_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(f"Campaign {campaign_id} not found")
        return campaign
