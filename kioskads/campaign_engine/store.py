"""
Campaign Store

Persistent store interface used by the reconciler, archival coordinator and
campaign service, plus the SQLAlchemy implementation.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import TransientStoreError
from .models import (
    ARCHIVABLE_ASSET_STATUSES,
    Campaign,
    CampaignStatus,
    DiscountType,
    Kiosk,
    KioskStatus,
    MediaAsset,
    MediaAssetStatus,
    VolumeDiscountSetting,
)
from .pricing import CampaignPricing

logger = logging.getLogger(__name__)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CampaignStore(ABC):
    """Persistent store contract for campaign processing."""

    @abstractmethod
    def find_due_campaigns(self, today: date) -> List[Campaign]:
        """Pending campaigns with start_date <= today and active ones with end_date < today."""

    @abstractmethod
    def compare_and_set_status(
        self, campaign_id: str, expected: CampaignStatus, new: CampaignStatus
    ) -> bool:
        """Atomically move a campaign from ``expected`` to ``new``; False if it was not ``expected``."""

    @abstractmethod
    def find_assets_by_campaign_and_status(
        self, campaign_id: str, statuses: Iterable[MediaAssetStatus]
    ) -> List[MediaAsset]:
        pass

    @abstractmethod
    def set_asset_status(
        self,
        asset_id: str,
        new_status: MediaAssetStatus,
        expected: Optional[Iterable[MediaAssetStatus]] = None,
        file_path: Optional[str] = None,
    ) -> bool:
        pass

    @abstractmethod
    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        pass

    @abstractmethod
    def find_completed_campaigns_with_unarchived_assets(self) -> List[str]:
        pass

    @abstractmethod
    def missing_references(self, campaign: Campaign) -> List[str]:
        """Labels (``kiosk:<id>`` / ``media_asset:<id>``) of referenced records that no longer exist."""

    @abstractmethod
    def flag_for_review(self, campaign_id: str, reason: str) -> None:
        pass

    @abstractmethod
    def list_kiosks(self, kiosk_ids: Sequence[str]) -> List[Kiosk]:
        """Kiosks in the requested order; unknown ids are left out."""

    @abstractmethod
    def list_active_discount_settings(self) -> List[VolumeDiscountSetting]:
        pass

    @abstractmethod
    def insert_discount_setting(self, setting: VolumeDiscountSetting) -> str:
        pass

    @abstractmethod
    def get_discount_setting(self, setting_id: str) -> Optional[VolumeDiscountSetting]:
        pass

    @abstractmethod
    def update_discount_setting(self, setting: VolumeDiscountSetting) -> bool:
        """Overwrite a stored setting; False if no setting has that id."""

    @abstractmethod
    def deactivate_discount_setting(self, setting_id: str) -> bool:
        pass

    @abstractmethod
    def get_media_asset(self, asset_id: str) -> Optional[MediaAsset]:
        pass

    @abstractmethod
    def insert_campaign(self, campaign: Campaign) -> str:
        """Insert a campaign with its kiosks and claim its media asset."""

    @abstractmethod
    def save_pricing_breakdown(self, campaign_id: str, pricing: CampaignPricing) -> None:
        pass

    @abstractmethod
    def update_campaign_pricing(self, campaign_id: str, pricing: CampaignPricing) -> None:
        pass


# ============================================
# SQL statements
# ============================================

_CAMPAIGN_COLUMNS = dict(
    id=String,
    name=String,
    status=String,
    start_date=Date,
    end_date=Date,
    budget=Numeric(12, 2),
    total_cost=Numeric(12, 2),
    total_discount_amount=Numeric(12, 2),
    media_asset_id=String,
    updated_at=DateTime,
)

_CAMPAIGN_SELECT = """
    SELECT id, name, status, start_date, end_date, budget, total_cost,
           total_discount_amount, media_asset_id, updated_at
    FROM campaigns
"""

FIND_DUE_CAMPAIGNS = (
    text(_CAMPAIGN_SELECT + """
    WHERE (status = 'pending' AND start_date <= :today)
       OR (status = 'active' AND end_date < :today)
    ORDER BY start_date, id
""")
    .bindparams(bindparam("today", type_=Date))
    .columns(**_CAMPAIGN_COLUMNS)
)

GET_CAMPAIGN = text(_CAMPAIGN_SELECT + " WHERE id = :cid").columns(**_CAMPAIGN_COLUMNS)

CAMPAIGN_KIOSKS = text("""
    SELECT campaign_id, kiosk_id
    FROM campaign_kiosks
    WHERE campaign_id IN :ids
    ORDER BY campaign_id, position
""").bindparams(bindparam("ids", expanding=True))

COMPARE_AND_SET_STATUS = text("""
    UPDATE campaigns
    SET status = :new_status, updated_at = :now
    WHERE id = :cid AND status = :expected
""").bindparams(bindparam("now", type_=DateTime))

_ASSET_COLUMNS = dict(
    id=String, campaign_id=String, file_path=String, status=String, updated_at=DateTime
)

FIND_CAMPAIGN_ASSETS = (
    text("""
    SELECT m.id, m.campaign_id, m.file_path, m.status, m.updated_at
    FROM media_assets m
    WHERE m.campaign_id = :cid
      AND m.status IN :statuses
    ORDER BY m.id
""")
    .bindparams(bindparam("statuses", expanding=True))
    .columns(**_ASSET_COLUMNS)
)

FIND_COMPLETED_WITH_UNARCHIVED = text("""
    SELECT DISTINCT c.id
    FROM campaigns c
    JOIN media_assets m ON m.campaign_id = c.id
    WHERE c.status = 'completed'
      AND m.status IN :statuses
    ORDER BY c.id
""").bindparams(bindparam("statuses", expanding=True))

EXISTING_KIOSK_IDS = text("""
    SELECT id FROM kiosks WHERE id IN :ids
""").bindparams(bindparam("ids", expanding=True))

ASSET_EXISTS = text("SELECT id FROM media_assets WHERE id = :aid")

GET_ASSET = text("""
    SELECT id, campaign_id, file_path, status, updated_at
    FROM media_assets
    WHERE id = :aid
""").columns(**_ASSET_COLUMNS)

LINK_ASSET = text("""
    UPDATE media_assets SET campaign_id = :cid, updated_at = :now
    WHERE id = :aid
""").bindparams(bindparam("now", type_=DateTime))

FLAG_CAMPAIGN = text("""
    UPDATE campaigns SET needs_review = :flag WHERE id = :cid
""").bindparams(bindparam("flag", type_=Boolean))

INSERT_REVIEW_FLAG = text("""
    INSERT INTO campaign_review_flags (id, campaign_id, reason, created_at)
    SELECT :fid, :cid, :reason, :now
    WHERE NOT EXISTS (
        SELECT 1 FROM campaign_review_flags
        WHERE campaign_id = :cid AND resolved_at IS NULL
    )
""").bindparams(bindparam("now", type_=DateTime))

LIST_KIOSKS = (
    text("""
    SELECT id, name, price, traffic_level, status
    FROM kiosks
    WHERE id IN :ids
""")
    .bindparams(bindparam("ids", expanding=True))
    .columns(id=String, name=String, price=Numeric(10, 2), traffic_level=String, status=String)
)

_DISCOUNT_COLUMNS = dict(
    id=String,
    name=String,
    discount_type=String,
    discount_value=Numeric(10, 2),
    min_kiosks=Integer,
    max_kiosks=Integer,
    is_active=Boolean,
    valid_from=DateTime,
    valid_until=DateTime,
)

_DISCOUNT_SELECT = """
    SELECT id, name, discount_type, discount_value, min_kiosks, max_kiosks,
           is_active, valid_from, valid_until
    FROM volume_discount_settings
"""

LIST_ACTIVE_DISCOUNTS = (
    text(_DISCOUNT_SELECT + " WHERE is_active = :active ORDER BY min_kiosks, id")
    .bindparams(bindparam("active", type_=Boolean))
    .columns(**_DISCOUNT_COLUMNS)
)

GET_DISCOUNT = text(_DISCOUNT_SELECT + " WHERE id = :sid").columns(**_DISCOUNT_COLUMNS)

INSERT_DISCOUNT = text("""
    INSERT INTO volume_discount_settings
        (id, name, discount_type, discount_value, min_kiosks, max_kiosks,
         is_active, valid_from, valid_until, created_at, updated_at)
    VALUES
        (:id, :name, :discount_type, :discount_value, :min_kiosks, :max_kiosks,
         :is_active, :valid_from, :valid_until, :now, :now)
""").bindparams(
    bindparam("discount_value", type_=Numeric(10, 2)),
    bindparam("is_active", type_=Boolean),
    bindparam("valid_from", type_=DateTime),
    bindparam("valid_until", type_=DateTime),
    bindparam("now", type_=DateTime),
)

UPDATE_DISCOUNT = text("""
    UPDATE volume_discount_settings
    SET name = :name,
        discount_type = :discount_type,
        discount_value = :discount_value,
        min_kiosks = :min_kiosks,
        max_kiosks = :max_kiosks,
        is_active = :is_active,
        valid_from = :valid_from,
        valid_until = :valid_until,
        updated_at = :now
    WHERE id = :id
""").bindparams(
    bindparam("discount_value", type_=Numeric(10, 2)),
    bindparam("is_active", type_=Boolean),
    bindparam("valid_from", type_=DateTime),
    bindparam("valid_until", type_=DateTime),
    bindparam("now", type_=DateTime),
)

DEACTIVATE_DISCOUNT = text("""
    UPDATE volume_discount_settings
    SET is_active = :active, updated_at = :now
    WHERE id = :sid
""").bindparams(bindparam("active", type_=Boolean), bindparam("now", type_=DateTime))

INSERT_CAMPAIGN = text("""
    INSERT INTO campaigns
        (id, name, status, start_date, end_date, budget, total_cost,
         total_discount_amount, media_asset_id, needs_review, created_at, updated_at)
    VALUES
        (:id, :name, :status, :start_date, :end_date, :budget, :total_cost,
         :total_discount_amount, :media_asset_id, :needs_review, :now, :now)
""").bindparams(
    bindparam("start_date", type_=Date),
    bindparam("end_date", type_=Date),
    bindparam("budget", type_=Numeric(12, 2)),
    bindparam("total_cost", type_=Numeric(12, 2)),
    bindparam("total_discount_amount", type_=Numeric(12, 2)),
    bindparam("needs_review", type_=Boolean),
    bindparam("now", type_=DateTime),
)

INSERT_CAMPAIGN_KIOSK = text("""
    INSERT INTO campaign_kiosks (campaign_id, kiosk_id, position)
    VALUES (:cid, :kid, :position)
""")

DELETE_BREAKDOWN = text("DELETE FROM campaign_pricing_breakdown WHERE campaign_id = :cid")

INSERT_BREAKDOWN = text("""
    INSERT INTO campaign_pricing_breakdown
        (id, campaign_id, kiosk_id, position, base_price, discount_amount,
         final_price, discount_reason, created_at)
    VALUES
        (:id, :cid, :kid, :position, :base_price, :discount_amount,
         :final_price, :reason, :now)
""").bindparams(
    bindparam("base_price", type_=Numeric(10, 2)),
    bindparam("discount_amount", type_=Numeric(10, 2)),
    bindparam("final_price", type_=Numeric(10, 2)),
    bindparam("now", type_=DateTime),
)

UPDATE_CAMPAIGN_PRICING = text("""
    UPDATE campaigns
    SET total_cost = :total_cost,
        total_discount_amount = :total_discount,
        updated_at = :now
    WHERE id = :cid
""").bindparams(
    bindparam("total_cost", type_=Numeric(12, 2)),
    bindparam("total_discount", type_=Numeric(12, 2)),
    bindparam("now", type_=DateTime),
)


class SqlCampaignStore(CampaignStore):
    """Campaign store backed by SQLAlchemy sessions (one session per operation)."""

    def __init__(self, session_factory: sessionmaker):
        self.SessionFactory = session_factory

    @contextmanager
    def _session(self):
        session = self.SessionFactory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise TransientStoreError(f"Store operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ---- campaigns ----

    def find_due_campaigns(self, today: date) -> List[Campaign]:
        with self._session() as db:
            rows = db.execute(FIND_DUE_CAMPAIGNS, {"today": today}).fetchall()
            kiosk_map = self._load_kiosk_ids(db, [row.id for row in rows])
        campaigns = [self._to_campaign(row, kiosk_map.get(row.id, [])) for row in rows]
        logger.debug(f"Found {len(campaigns)} due campaigns for {today}")
        return campaigns

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        with self._session() as db:
            row = db.execute(GET_CAMPAIGN, {"cid": campaign_id}).fetchone()
            if not row:
                return None
            kiosk_map = self._load_kiosk_ids(db, [row.id])
        return self._to_campaign(row, kiosk_map.get(row.id, []))

    def compare_and_set_status(
        self, campaign_id: str, expected: CampaignStatus, new: CampaignStatus
    ) -> bool:
        with self._session() as db:
            result = db.execute(
                COMPARE_AND_SET_STATUS,
                {
                    "cid": campaign_id,
                    "expected": CampaignStatus(expected).value,
                    "new_status": CampaignStatus(new).value,
                    "now": _utcnow(),
                },
            )
            return result.rowcount == 1

    def insert_campaign(self, campaign: Campaign) -> str:
        campaign_id = campaign.id or str(uuid4())
        now = _utcnow()
        with self._session() as db:
            db.execute(
                INSERT_CAMPAIGN,
                {
                    "id": campaign_id,
                    "name": campaign.name,
                    "status": CampaignStatus(campaign.status).value,
                    "start_date": campaign.start_date,
                    "end_date": campaign.end_date,
                    "budget": campaign.budget,
                    "total_cost": campaign.total_cost,
                    "total_discount_amount": campaign.total_discount_amount,
                    "media_asset_id": campaign.media_asset_id,
                    "needs_review": False,
                    "now": now,
                },
            )
            for position, kiosk_id in enumerate(campaign.kiosk_ids):
                db.execute(
                    INSERT_CAMPAIGN_KIOSK,
                    {"cid": campaign_id, "kid": kiosk_id, "position": position},
                )
            if campaign.media_asset_id:
                db.execute(
                    LINK_ASSET,
                    {"cid": campaign_id, "aid": campaign.media_asset_id, "now": now},
                )
        logger.info(f"Created campaign {campaign_id} with {len(campaign.kiosk_ids)} kiosks")
        return campaign_id

    def update_campaign_pricing(self, campaign_id: str, pricing: CampaignPricing) -> None:
        with self._session() as db:
            db.execute(
                UPDATE_CAMPAIGN_PRICING,
                {
                    "cid": campaign_id,
                    "total_cost": pricing.total_final,
                    "total_discount": pricing.total_discount,
                    "now": _utcnow(),
                },
            )

    def save_pricing_breakdown(self, campaign_id: str, pricing: CampaignPricing) -> None:
        """Replace the stored per-kiosk pricing snapshot for a campaign."""
        now = _utcnow()
        with self._session() as db:
            db.execute(DELETE_BREAKDOWN, {"cid": campaign_id})
            for position, line in enumerate(pricing.per_kiosk):
                db.execute(
                    INSERT_BREAKDOWN,
                    {
                        "id": str(uuid4()),
                        "cid": campaign_id,
                        "kid": line.kiosk_id,
                        "position": position,
                        "base_price": line.base_price,
                        "discount_amount": line.discount_amount,
                        "final_price": line.final_price,
                        "reason": line.discount_reason,
                        "now": now,
                    },
                )

    def missing_references(self, campaign: Campaign) -> List[str]:
        missing = []
        with self._session() as db:
            if campaign.kiosk_ids:
                found = {
                    row.id
                    for row in db.execute(
                        EXISTING_KIOSK_IDS, {"ids": list(campaign.kiosk_ids)}
                    ).fetchall()
                }
                missing.extend(f"kiosk:{kid}" for kid in campaign.kiosk_ids if kid not in found)
            if campaign.media_asset_id:
                row = db.execute(ASSET_EXISTS, {"aid": campaign.media_asset_id}).fetchone()
                if not row:
                    missing.append(f"media_asset:{campaign.media_asset_id}")
        return missing

    def flag_for_review(self, campaign_id: str, reason: str) -> None:
        with self._session() as db:
            db.execute(FLAG_CAMPAIGN, {"cid": campaign_id, "flag": True})
            db.execute(
                INSERT_REVIEW_FLAG,
                {"fid": str(uuid4()), "cid": campaign_id, "reason": reason, "now": _utcnow()},
            )
        logger.warning(f"Campaign {campaign_id} flagged for manual review: {reason}")

    # ---- media assets ----

    def find_assets_by_campaign_and_status(
        self, campaign_id: str, statuses: Iterable[MediaAssetStatus]
    ) -> List[MediaAsset]:
        status_values = [MediaAssetStatus(s).value for s in statuses]
        if not status_values:
            return []
        with self._session() as db:
            rows = db.execute(
                FIND_CAMPAIGN_ASSETS, {"cid": campaign_id, "statuses": status_values}
            ).fetchall()
        return [self._to_asset(row) for row in rows]

    def get_media_asset(self, asset_id: str) -> Optional[MediaAsset]:
        with self._session() as db:
            row = db.execute(GET_ASSET, {"aid": asset_id}).fetchone()
        return self._to_asset(row) if row else None

    def set_asset_status(
        self,
        asset_id: str,
        new_status: MediaAssetStatus,
        expected: Optional[Iterable[MediaAssetStatus]] = None,
        file_path: Optional[str] = None,
    ) -> bool:
        assignments = ["status = :new_status", "updated_at = :now"]
        params = {
            "aid": asset_id,
            "new_status": MediaAssetStatus(new_status).value,
            "now": _utcnow(),
        }
        binds = [bindparam("now", type_=DateTime)]
        where = ["id = :aid"]

        if file_path is not None:
            assignments.append("file_path = :file_path")
            params["file_path"] = file_path
        if expected is not None:
            where.append("status IN :expected")
            params["expected"] = [MediaAssetStatus(s).value for s in expected]
            binds.append(bindparam("expected", expanding=True))

        statement = text(
            f"UPDATE media_assets SET {', '.join(assignments)} WHERE {' AND '.join(where)}"
        ).bindparams(*binds)

        with self._session() as db:
            result = db.execute(statement, params)
            return result.rowcount == 1

    def find_completed_campaigns_with_unarchived_assets(self) -> List[str]:
        statuses = [s.value for s in ARCHIVABLE_ASSET_STATUSES]
        with self._session() as db:
            rows = db.execute(FIND_COMPLETED_WITH_UNARCHIVED, {"statuses": statuses}).fetchall()
        return [row.id for row in rows]

    # ---- kiosks and discounts ----

    def list_kiosks(self, kiosk_ids: Sequence[str]) -> List[Kiosk]:
        if not kiosk_ids:
            return []
        with self._session() as db:
            rows = db.execute(LIST_KIOSKS, {"ids": list(kiosk_ids)}).fetchall()
        by_id = {
            row.id: Kiosk(
                id=row.id,
                name=row.name or "",
                price=row.price,
                traffic_level=row.traffic_level,
                status=KioskStatus(row.status),
            )
            for row in rows
        }
        return [by_id[kid] for kid in kiosk_ids if kid in by_id]

    def list_active_discount_settings(self) -> List[VolumeDiscountSetting]:
        with self._session() as db:
            rows = db.execute(LIST_ACTIVE_DISCOUNTS, {"active": True}).fetchall()
        return [self._to_discount(row) for row in rows]

    def get_discount_setting(self, setting_id: str) -> Optional[VolumeDiscountSetting]:
        with self._session() as db:
            row = db.execute(GET_DISCOUNT, {"sid": setting_id}).fetchone()
        return self._to_discount(row) if row else None

    def insert_discount_setting(self, setting: VolumeDiscountSetting) -> str:
        setting_id = setting.id or str(uuid4())
        with self._session() as db:
            db.execute(INSERT_DISCOUNT, self._discount_params(setting, setting_id))
        logger.info(f"Created volume discount setting {setting_id} ({setting.name})")
        return setting_id

    def update_discount_setting(self, setting: VolumeDiscountSetting) -> bool:
        with self._session() as db:
            result = db.execute(UPDATE_DISCOUNT, self._discount_params(setting, setting.id))
            updated = result.rowcount == 1
        if updated:
            logger.info(f"Updated volume discount setting {setting.id} ({setting.name})")
        return updated

    def deactivate_discount_setting(self, setting_id: str) -> bool:
        with self._session() as db:
            result = db.execute(
                DEACTIVATE_DISCOUNT, {"sid": setting_id, "active": False, "now": _utcnow()}
            )
            updated = result.rowcount == 1
        if updated:
            logger.info(f"Deactivated volume discount setting {setting_id}")
        return updated

    # ---- helpers ----

    @staticmethod
    def _discount_params(setting: VolumeDiscountSetting, setting_id: str) -> dict:
        return {
            "id": setting_id,
            "name": setting.name,
            "discount_type": DiscountType(setting.discount_type).value,
            "discount_value": setting.discount_value,
            "min_kiosks": setting.min_kiosks,
            "max_kiosks": setting.max_kiosks,
            "is_active": setting.is_active,
            "valid_from": _utc(setting.valid_from),
            "valid_until": _utc(setting.valid_until),
            "now": _utcnow(),
        }

    @staticmethod
    def _to_discount(row) -> VolumeDiscountSetting:
        return VolumeDiscountSetting(
            id=row.id,
            name=row.name,
            discount_type=DiscountType(row.discount_type),
            discount_value=row.discount_value,
            min_kiosks=row.min_kiosks,
            max_kiosks=row.max_kiosks,
            is_active=row.is_active,
            valid_from=_utc(row.valid_from),
            valid_until=_utc(row.valid_until),
        )

    @staticmethod
    def _to_asset(row) -> MediaAsset:
        return MediaAsset(
            id=row.id,
            status=MediaAssetStatus(row.status),
            campaign_id=row.campaign_id,
            file_path=row.file_path,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _load_kiosk_ids(db, campaign_ids: List[str]) -> Dict[str, List[str]]:
        if not campaign_ids:
            return {}
        kiosk_map: Dict[str, List[str]] = {}
        for row in db.execute(CAMPAIGN_KIOSKS, {"ids": campaign_ids}).fetchall():
            kiosk_map.setdefault(row.campaign_id, []).append(row.kiosk_id)
        return kiosk_map

    @staticmethod
    def _to_campaign(row, kiosk_ids: List[str]) -> Campaign:
        return Campaign(
            id=row.id,
            name=row.name or "",
            status=CampaignStatus(row.status),
            start_date=row.start_date,
            end_date=row.end_date,
            budget=row.budget,
            total_cost=row.total_cost,
            total_discount_amount=row.total_discount_amount,
            kiosk_ids=kiosk_ids,
            media_asset_id=row.media_asset_id,
            updated_at=row.updated_at,
        )
