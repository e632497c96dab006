"""
Campaign Engine Models

Domain records and the campaign status transition table.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class MediaAssetStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    ARCHIVED = "archived"


class KioskStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class TransitionTrigger(str, Enum):
    """Who is allowed to drive a given edge."""

    EXTERNAL = "external"
    SCHEDULE = "schedule"


# Single source of truth for every legal status change.
CAMPAIGN_TRANSITIONS: Dict[Tuple[CampaignStatus, CampaignStatus], TransitionTrigger] = {
    (CampaignStatus.DRAFT, CampaignStatus.PENDING): TransitionTrigger.EXTERNAL,
    (CampaignStatus.PENDING, CampaignStatus.ACTIVE): TransitionTrigger.SCHEDULE,
    (CampaignStatus.ACTIVE, CampaignStatus.COMPLETED): TransitionTrigger.SCHEDULE,
    (CampaignStatus.ACTIVE, CampaignStatus.PAUSED): TransitionTrigger.EXTERNAL,
    (CampaignStatus.PAUSED, CampaignStatus.ACTIVE): TransitionTrigger.EXTERNAL,
    (CampaignStatus.DRAFT, CampaignStatus.REJECTED): TransitionTrigger.EXTERNAL,
    (CampaignStatus.PENDING, CampaignStatus.REJECTED): TransitionTrigger.EXTERNAL,
    (CampaignStatus.DRAFT, CampaignStatus.CANCELLED): TransitionTrigger.EXTERNAL,
    (CampaignStatus.PENDING, CampaignStatus.CANCELLED): TransitionTrigger.EXTERNAL,
    (CampaignStatus.ACTIVE, CampaignStatus.CANCELLED): TransitionTrigger.EXTERNAL,
}

# Assets in these states are moved to archived when their campaign completes.
ARCHIVABLE_ASSET_STATUSES = (MediaAssetStatus.ACTIVE, MediaAssetStatus.APPROVED)


def can_transition(
    old: CampaignStatus,
    new: CampaignStatus,
    trigger: Optional[TransitionTrigger] = None,
) -> bool:
    """Check an edge against the transition table, optionally for one trigger."""
    allowed = CAMPAIGN_TRANSITIONS.get((CampaignStatus(old), CampaignStatus(new)))
    if allowed is None:
        return False
    return trigger is None or allowed == trigger


@dataclass
class Kiosk:
    """A physical display unit with a per-period base price."""

    id: str
    price: Decimal
    name: str = ""
    traffic_level: Optional[str] = None
    status: KioskStatus = KioskStatus.ACTIVE


@dataclass
class MediaAsset:
    """A creative file, optionally linked to a campaign."""

    id: str
    status: MediaAssetStatus
    campaign_id: Optional[str] = None
    file_path: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass
class VolumeDiscountSetting:
    """Administrator-managed discount tier for multi-kiosk selections."""

    id: str
    discount_type: DiscountType
    discount_value: Decimal
    min_kiosks: int
    name: str = ""
    max_kiosks: Optional[int] = None
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


@dataclass
class Campaign:
    """A scheduled advertising run across one or more kiosks."""

    id: str
    status: CampaignStatus
    start_date: date
    end_date: date
    name: str = ""
    budget: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    total_discount_amount: Decimal = Decimal("0")
    kiosk_ids: List[str] = field(default_factory=list)
    media_asset_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    def scheduled_transition(self, today: date) -> Optional[CampaignStatus]:
        """Return the one time-driven step due for this campaign, if any.

        Only the current status is consulted, so a campaign that is both
        startable and expired still advances a single edge per call.
        """
        if self.status == CampaignStatus.PENDING and self.start_date <= today:
            return CampaignStatus.ACTIVE
        if self.status == CampaignStatus.ACTIVE and self.end_date < today:
            return CampaignStatus.COMPLETED
        return None
