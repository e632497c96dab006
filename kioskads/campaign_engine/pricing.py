"""
Volume Discount Pricing Engine

Per-kiosk and aggregate pricing for an ordered kiosk selection. Pure: no
store access, no clock access, no side effects.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Optional, Sequence

from .errors import ValidationError
from .models import DiscountType, Kiosk, VolumeDiscountSetting

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Coerce API/DB numbers to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    return Decimal(str(value))


def _as_aware(value: datetime) -> datetime:
    # Naive timestamps from the store are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _format_amount(value: Decimal) -> str:
    return f"{value.normalize():f}"


@dataclass
class KioskPrice:
    """Pricing line for one kiosk in the selection."""

    kiosk_id: str
    kiosk_name: str
    base_price: Decimal
    discount_amount: Decimal
    final_price: Decimal
    discount_reason: str = ""
    applied_setting_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kiosk_id": self.kiosk_id,
            "kiosk_name": self.kiosk_name,
            "base_price": float(self.base_price),
            "discount_amount": float(self.discount_amount),
            "final_price": float(self.final_price),
            "discount_reason": self.discount_reason,
            "applied_setting_id": self.applied_setting_id,
        }


@dataclass
class CampaignPricing:
    """Aggregate pricing for a kiosk selection."""

    per_kiosk: List[KioskPrice] = field(default_factory=list)
    total_base: Decimal = ZERO
    total_discount: Decimal = ZERO
    total_final: Decimal = ZERO

    def to_dict(self) -> dict:
        return {
            "per_kiosk": [line.to_dict() for line in self.per_kiosk],
            "total_base": float(self.total_base),
            "total_discount": float(self.total_discount),
            "total_final": float(self.total_final),
        }


def is_setting_valid_at(setting: VolumeDiscountSetting, now: datetime) -> bool:
    """Active flag plus the valid_from/valid_until window (bounds inclusive)."""
    if not setting.is_active:
        return False
    now = _as_aware(now)
    if setting.valid_from is not None and now < _as_aware(setting.valid_from):
        return False
    if setting.valid_until is not None and now > _as_aware(setting.valid_until):
        return False
    return True


def covers_position(setting: VolumeDiscountSetting, index: int) -> bool:
    """Whether a zero-based selection position falls inside the setting's range."""
    if index < setting.min_kiosks - 1:
        return False
    if setting.max_kiosks is not None and index >= setting.max_kiosks:
        return False
    return True


def order_settings(settings: Iterable[VolumeDiscountSetting]) -> List[VolumeDiscountSetting]:
    """Resolution order for overlapping ranges: ascending min_kiosks, stable."""
    return sorted(settings, key=lambda s: s.min_kiosks)


def find_applicable_setting(
    index: int,
    ordered_settings: Sequence[VolumeDiscountSetting],
    now: datetime,
) -> Optional[VolumeDiscountSetting]:
    """First setting (in resolution order) that applies to this position."""
    for setting in ordered_settings:
        if is_setting_valid_at(setting, now) and covers_position(setting, index):
            return setting
    return None


def discount_reason(setting: VolumeDiscountSetting) -> str:
    value = _format_amount(to_decimal(setting.discount_value))
    if setting.discount_type == DiscountType.PERCENTAGE:
        reason = f"{value}% volume discount"
    else:
        reason = f"${value} volume discount"
    if setting.name:
        reason += f" ({setting.name})"
    return reason


def price_kiosk(
    kiosk: Kiosk,
    index: int,
    ordered_settings: Sequence[VolumeDiscountSetting],
    now: datetime,
) -> KioskPrice:
    """Price a single kiosk at its position in the selection."""
    base_price = to_decimal(kiosk.price)
    setting = find_applicable_setting(index, ordered_settings, now)

    if setting is None:
        return KioskPrice(
            kiosk_id=kiosk.id,
            kiosk_name=kiosk.name,
            base_price=base_price,
            discount_amount=ZERO,
            final_price=base_price,
        )

    value = to_decimal(setting.discount_value)
    if setting.discount_type == DiscountType.PERCENTAGE:
        raw = (base_price * value / Decimal(100)).quantize(CENTS, rounding=ROUND_HALF_UP)
    else:
        raw = value

    # Never below zero, never more than the base price
    discount = max(ZERO, min(raw, base_price))

    return KioskPrice(
        kiosk_id=kiosk.id,
        kiosk_name=kiosk.name,
        base_price=base_price,
        discount_amount=discount,
        final_price=base_price - discount,
        discount_reason=discount_reason(setting),
        applied_setting_id=setting.id,
    )


def price(
    kiosks: Sequence[Kiosk],
    settings: Iterable[VolumeDiscountSetting],
    now: datetime,
) -> CampaignPricing:
    """Price an ordered kiosk selection.

    Selection order is significant: the kiosk at position ``i`` gets the
    tier whose range covers ``i``. The engine never re-sorts ``kiosks``.
    """
    ordered_settings = order_settings(settings)
    lines = [
        price_kiosk(kiosk, index, ordered_settings, now)
        for index, kiosk in enumerate(kiosks)
    ]

    pricing = CampaignPricing(
        per_kiosk=lines,
        total_base=sum((line.base_price for line in lines), ZERO),
        total_discount=sum((line.discount_amount for line in lines), ZERO),
        total_final=sum((line.final_price for line in lines), ZERO),
    )
    logger.debug(
        f"Priced {len(lines)} kiosks: base={pricing.total_base} "
        f"discount={pricing.total_discount} final={pricing.total_final}"
    )
    return pricing


def validate_discount_setting(setting: VolumeDiscountSetting) -> None:
    """Raise ValidationError listing every problem with an admin-entered setting."""
    errors = []
    value = to_decimal(setting.discount_value)

    if not (setting.name or "").strip():
        errors.append("Name is required")

    if value <= 0:
        errors.append("Discount value must be greater than 0")

    if setting.discount_type == DiscountType.PERCENTAGE and value > 100:
        errors.append("Percentage discount cannot exceed 100%")

    if setting.min_kiosks < 2:
        errors.append("Minimum kiosks must be at least 2")

    if setting.max_kiosks is not None and setting.max_kiosks <= setting.min_kiosks:
        errors.append("Maximum kiosks must be greater than minimum kiosks")

    if setting.valid_from is not None and setting.valid_until is not None:
        if _as_aware(setting.valid_from) >= _as_aware(setting.valid_until):
            errors.append("Valid until date must be after valid from date")

    if errors:
        raise ValidationError(errors)
