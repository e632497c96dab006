"""
Asset Archival Coordinator

Moves a completed campaign's active/approved media to the archived state.
"""

import logging
import math
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .config import CampaignEngineConfig
from .errors import PermanentDataError, TransientStoreError
from .models import ARCHIVABLE_ASSET_STATUSES, MediaAsset, MediaAssetStatus
from .notifications import CampaignEvent, NotificationSink, safe_emit
from .object_store import ObjectStore
from .store import CampaignStore

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.05


@dataclass
class ArchivalResult:
    """Result of archiving one campaign's assets.

    ``failed`` lists every asset left unarchived; ``permanent`` is the subset
    whose backing file is gone and will not come back by retrying.
    """

    campaign_id: str
    moved: int = 0
    failed: List[str] = field(default_factory=list)
    permanent: List[str] = field(default_factory=list)
    skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "campaign_id": self.campaign_id,
            "moved": self.moved,
            "failed": list(self.failed),
            "permanent": list(self.permanent),
            "skipped": self.skipped,
        }


class AssetArchivalCoordinator:
    """Archives media for completed campaigns.

    File relocations run on a bounded worker pool. Each call is time-boxed
    from the moment a worker picks it up, and the whole batch gets as many
    time boxes as it needs rounds of workers. An asset whose relocation
    fails or times out keeps its status, so the next reconciliation pass
    picks it up again. Status updates are compare-and-set against the
    archivable states, which makes repeated or overlapping calls for the
    same campaign safe.
    """

    def __init__(
        self,
        config: CampaignEngineConfig,
        store: CampaignStore,
        object_store: ObjectStore,
        notification_sink: Optional[NotificationSink] = None,
    ):
        self.config = config
        self.store = store
        self.object_store = object_store
        self.notification_sink = notification_sink
        self._executor = ThreadPoolExecutor(
            max_workers=config.archive_max_workers,
            thread_name_prefix="asset-archive",
        )

    def archive_for_campaign(self, campaign_id: str) -> ArchivalResult:
        """Archive every active/approved asset of a campaign."""
        result = ArchivalResult(campaign_id=campaign_id)

        assets = self.store.find_assets_by_campaign_and_status(
            campaign_id, ARCHIVABLE_ASSET_STATUSES
        )
        if not assets:
            logger.debug(f"No assets to archive for campaign {campaign_id}")
            return result

        outcomes = self._relocate_all(assets)

        for asset in assets:
            future = outcomes.get(asset.id)
            if future is None:
                logger.error(
                    f"Relocation of asset {asset.id} timed out after "
                    f"{self.config.archive_call_timeout_seconds}s"
                )
                result.failed.append(asset.id)
                continue
            try:
                new_path = future.result()
            except PermanentDataError as e:
                logger.error(f"Asset {asset.id} cannot be archived: {e}")
                result.failed.append(asset.id)
                result.permanent.append(asset.id)
                continue
            except Exception as e:
                logger.error(f"Relocation of asset {asset.id} failed: {e}")
                result.failed.append(asset.id)
                continue

            try:
                updated = self.store.set_asset_status(
                    asset.id,
                    MediaAssetStatus.ARCHIVED,
                    expected=ARCHIVABLE_ASSET_STATUSES,
                    file_path=new_path,
                )
            except TransientStoreError as e:
                logger.error(f"Failed to mark asset {asset.id} archived: {e}")
                result.failed.append(asset.id)
                continue

            if not updated:
                # Another pass archived it first
                result.skipped += 1
                continue

            result.moved += 1
            safe_emit(
                self.notification_sink,
                CampaignEvent(
                    campaign_id=campaign_id,
                    asset_id=asset.id,
                    old_status=MediaAssetStatus(asset.status).value,
                    new_status=MediaAssetStatus.ARCHIVED.value,
                    timestamp=datetime.now(timezone.utc),
                ),
            )

        if result.moved or result.failed:
            logger.info(
                f"Archived {result.moved} assets for campaign {campaign_id}"
                + (f", {len(result.failed)} failed" if result.failed else "")
            )
        return result

    def _relocate_all(self, assets: List[MediaAsset]) -> Dict[str, Future]:
        """Run relocations on the pool; returns finished futures by asset id.

        Assets missing from the result timed out, either mid-call or still
        queued behind stuck workers when the batch deadline passed.
        """
        timeout = self.config.archive_call_timeout_seconds
        rounds = math.ceil(len(assets) / self.config.archive_max_workers)
        batch_deadline = time.monotonic() + timeout * rounds
        started: Dict[str, float] = {}

        def run(asset: MediaAsset):
            started[asset.id] = time.monotonic()
            return self.object_store.relocate(asset)

        futures = {self._executor.submit(run, asset): asset for asset in assets}
        finished: Dict[str, Future] = {}
        pending = set(futures)

        while pending:
            done, pending = wait(
                pending, timeout=min(POLL_INTERVAL_SECONDS, timeout), return_when=FIRST_COMPLETED
            )
            for future in done:
                finished[futures[future].id] = future

            now = time.monotonic()
            for future in list(pending):
                began = started.get(futures[future].id)
                if now >= batch_deadline or (began is not None and now - began >= timeout):
                    pending.discard(future)
                    if future.done():
                        finished[futures[future].id] = future
                    else:
                        # Queued calls are dropped; running ones cannot be interrupted
                        future.cancel()

        return finished

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
