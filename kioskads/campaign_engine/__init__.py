"""
Campaign Engine Module - kiosk campaign lifecycle, asset archival and volume pricing.

Components are wired explicitly by ``build_engine``; nothing here holds a
process-wide scheduler, so tests and multiple apps can build independent
engines.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from .archival import ArchivalResult, AssetArchivalCoordinator
from .campaigns import CampaignService
from .config import CampaignEngineConfig
from .errors import (
    CampaignEngineError,
    CampaignNotFoundError,
    DiscountSettingNotFoundError,
    NotificationError,
    PermanentDataError,
    TransientStoreError,
    ValidationError,
)
from .models import CampaignStatus, MediaAssetStatus
from .notifications import (
    CompositeNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
    OutboxNotificationSink,
)
from .object_store import ObjectStore, SupabaseObjectStore
from .reconciler import CampaignLifecycleReconciler, ReconciliationSummary
from .scheduler import SchedulerDriver
from .store import CampaignStore, SqlCampaignStore
from .time_service import ReferenceClock


@dataclass
class CampaignEngine:
    """All campaign engine components, wired together."""

    config: CampaignEngineConfig
    clock: ReferenceClock
    store: CampaignStore
    archival: AssetArchivalCoordinator
    reconciler: CampaignLifecycleReconciler
    scheduler: SchedulerDriver
    campaigns: CampaignService

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.archival.shutdown()


def build_engine(
    config: Optional[CampaignEngineConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    object_store: Optional[ObjectStore] = None,
    notification_sink: Optional[NotificationSink] = None,
    clock: Optional[ReferenceClock] = None,
    store: Optional[CampaignStore] = None,
) -> CampaignEngine:
    """Wire up an engine; unspecified collaborators come from the config/environment."""
    from kioskads.db import create_db_engine, create_session_factory

    config = config or CampaignEngineConfig.from_env()
    config.validate()

    if store is None:
        if session_factory is None:
            session_factory = create_session_factory(create_db_engine(config.database_url))
        store = SqlCampaignStore(session_factory)

    if notification_sink is None:
        sinks = [LoggingNotificationSink()]
        if session_factory is not None:
            sinks.append(OutboxNotificationSink(session_factory))
        notification_sink = CompositeNotificationSink(sinks)

    if object_store is None:
        object_store = SupabaseObjectStore.from_env(config)

    clock = clock or ReferenceClock(config)
    archival = AssetArchivalCoordinator(config, store, object_store, notification_sink)
    reconciler = CampaignLifecycleReconciler(store, archival, clock, notification_sink)
    scheduler = SchedulerDriver(reconciler, interval_seconds=config.reconcile_interval_seconds)
    campaigns = CampaignService(store, clock, notification_sink)

    return CampaignEngine(
        config=config,
        clock=clock,
        store=store,
        archival=archival,
        reconciler=reconciler,
        scheduler=scheduler,
        campaigns=campaigns,
    )


__all__ = [
    "ArchivalResult",
    "AssetArchivalCoordinator",
    "CampaignEngine",
    "CampaignEngineConfig",
    "CampaignEngineError",
    "CampaignLifecycleReconciler",
    "CampaignNotFoundError",
    "CampaignService",
    "CampaignStatus",
    "CampaignStore",
    "DiscountSettingNotFoundError",
    "MediaAssetStatus",
    "NotificationError",
    "PermanentDataError",
    "ReconciliationSummary",
    "ReferenceClock",
    "SchedulerDriver",
    "SqlCampaignStore",
    "TransientStoreError",
    "ValidationError",
    "build_engine",
]
