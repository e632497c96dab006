"""
Campaign Engine API Routes

Scheduler control, pricing quotes, campaign creation/status and discount
administration.
"""

import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from . import CampaignEngine
from .errors import (
    CampaignNotFoundError,
    DiscountSettingNotFoundError,
    TransientStoreError,
    ValidationError,
)
from .models import CampaignStatus, DiscountType, VolumeDiscountSetting

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["campaign-engine"])


def get_engine(request: Request) -> CampaignEngine:
    engine = getattr(request.app.state, "campaign_engine", None)
    if engine is None:
        raise HTTPException(503, "Campaign engine not initialized")
    return engine


# ============================================
# Request/Response Models
# ============================================

class TriggerRequest(BaseModel):
    action: str = "check_expired_campaigns"


class QuoteRequest(BaseModel):
    kiosk_ids: List[str]


class CreateCampaignRequest(BaseModel):
    name: str
    start_date: date
    end_date: date
    kiosk_ids: List[str]
    budget: float = 0.0
    media_asset_id: Optional[str] = None


class StatusChangeRequest(BaseModel):
    status: CampaignStatus


class DiscountSettingRequest(BaseModel):
    name: str
    discount_type: DiscountType
    discount_value: float
    min_kiosks: int
    max_kiosks: Optional[int] = None
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


def _raise_http(e: Exception):
    if isinstance(e, ValidationError):
        raise HTTPException(400, detail={"errors": e.errors})
    if isinstance(e, (CampaignNotFoundError, DiscountSettingNotFoundError)):
        raise HTTPException(404, str(e))
    if isinstance(e, TransientStoreError):
        logger.error(f"Store unavailable: {e}")
        raise HTTPException(503, "Storage temporarily unavailable")
    raise e


def _campaign_dict(campaign) -> dict:
    return {
        "id": campaign.id,
        "name": campaign.name,
        "status": campaign.status.value,
        "start_date": campaign.start_date.isoformat(),
        "end_date": campaign.end_date.isoformat(),
        "budget": float(campaign.budget),
        "total_cost": float(campaign.total_cost),
        "total_discount_amount": float(campaign.total_discount_amount),
        "kiosk_ids": list(campaign.kiosk_ids),
        "media_asset_id": campaign.media_asset_id,
    }


# ============================================
# Scheduler Endpoints
# ============================================

@router.post("/scheduler/trigger")
def trigger_scheduler(request: TriggerRequest, engine: CampaignEngine = Depends(get_engine)):
    """Run a reconciliation action now and return its summary."""
    summary = engine.scheduler.trigger(request.action)
    return {"action": request.action, **summary.to_dict()}


@router.get("/scheduler/status")
def scheduler_status(engine: CampaignEngine = Depends(get_engine)):
    status = engine.scheduler.get_status()
    status["clock"] = engine.clock.get_status()
    return status


# ============================================
# Pricing Endpoints
# ============================================

@router.post("/pricing/quote")
def quote(request: QuoteRequest, engine: CampaignEngine = Depends(get_engine)):
    """Price a kiosk selection in the order given."""
    try:
        pricing = engine.campaigns.quote(request.kiosk_ids)
    except Exception as e:
        _raise_http(e)
    return pricing.to_dict()


# ============================================
# Campaign Endpoints
# ============================================

@router.post("/campaigns", status_code=201)
def create_campaign(request: CreateCampaignRequest, engine: CampaignEngine = Depends(get_engine)):
    try:
        campaign = engine.campaigns.create_campaign(
            name=request.name,
            start_date=request.start_date,
            end_date=request.end_date,
            kiosk_ids=request.kiosk_ids,
            budget=request.budget,
            media_asset_id=request.media_asset_id,
        )
    except Exception as e:
        _raise_http(e)
    return _campaign_dict(campaign)


@router.post("/campaigns/{campaign_id}/status")
def change_campaign_status(
    campaign_id: str,
    request: StatusChangeRequest,
    engine: CampaignEngine = Depends(get_engine),
):
    """Apply a user/admin status change (submit, pause, resume, reject, cancel)."""
    try:
        campaign = engine.campaigns.transition(campaign_id, request.status)
    except Exception as e:
        _raise_http(e)
    return _campaign_dict(campaign)


@router.post("/campaigns/{campaign_id}/reprice")
def reprice_campaign(campaign_id: str, engine: CampaignEngine = Depends(get_engine)):
    try:
        pricing = engine.campaigns.reprice_campaign(campaign_id)
    except Exception as e:
        _raise_http(e)
    return {"campaign_id": campaign_id, **pricing.to_dict()}


# ============================================
# Discount Endpoints
# ============================================

def _discount_from_request(request: DiscountSettingRequest, setting_id: str = "") -> VolumeDiscountSetting:
    return VolumeDiscountSetting(
        id=setting_id,
        name=request.name,
        discount_type=request.discount_type,
        discount_value=request.discount_value,
        min_kiosks=request.min_kiosks,
        max_kiosks=request.max_kiosks,
        is_active=request.is_active,
        valid_from=request.valid_from,
        valid_until=request.valid_until,
    )


def _discount_dict(setting: VolumeDiscountSetting) -> dict:
    return {
        "id": setting.id,
        "name": setting.name,
        "discount_type": DiscountType(setting.discount_type).value,
        "discount_value": float(setting.discount_value),
        "min_kiosks": setting.min_kiosks,
        "max_kiosks": setting.max_kiosks,
        "is_active": setting.is_active,
        "valid_from": setting.valid_from.isoformat() if setting.valid_from else None,
        "valid_until": setting.valid_until.isoformat() if setting.valid_until else None,
    }


@router.post("/discounts", status_code=201)
def create_discount(request: DiscountSettingRequest, engine: CampaignEngine = Depends(get_engine)):
    try:
        setting_id = engine.campaigns.create_discount_setting(_discount_from_request(request))
    except Exception as e:
        _raise_http(e)
    return {"id": setting_id}


@router.get("/discounts")
def list_discounts(engine: CampaignEngine = Depends(get_engine)):
    try:
        settings = engine.campaigns.list_discount_settings()
    except Exception as e:
        _raise_http(e)
    return [_discount_dict(s) for s in settings]


@router.put("/discounts/{setting_id}")
def update_discount(
    setting_id: str,
    request: DiscountSettingRequest,
    engine: CampaignEngine = Depends(get_engine),
):
    """Replace a discount setting; the new values are validated like a create."""
    try:
        setting = engine.campaigns.update_discount_setting(
            setting_id, _discount_from_request(request, setting_id)
        )
    except Exception as e:
        _raise_http(e)
    return _discount_dict(setting)


@router.delete("/discounts/{setting_id}")
def deactivate_discount(setting_id: str, engine: CampaignEngine = Depends(get_engine)):
    """Soft delete: the setting is kept but no longer applies to quotes."""
    try:
        engine.campaigns.deactivate_discount_setting(setting_id)
    except Exception as e:
        _raise_http(e)
    return {"id": setting_id, "is_active": False}
