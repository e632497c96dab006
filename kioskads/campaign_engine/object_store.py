"""
Object Store

Moves a media asset's backing file from the active location to the archive
location. Implementations raise on failure. A move whose source is gone but
whose target is in place counts as done, so a retry after a lost status
update succeeds.
"""

import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .config import CampaignEngineConfig
from .errors import PermanentDataError, TransientStoreError
from .models import MediaAsset

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """Relocates asset files into the archive area."""

    def __init__(self, active_prefix: str = "active/", archive_prefix: str = "archive/"):
        self.active_prefix = active_prefix
        self.archive_prefix = archive_prefix

    def archive_path(self, file_path: str) -> str:
        """Archive location for a file path (unchanged if already archived)."""
        if file_path.startswith(self.archive_prefix):
            return file_path
        if file_path.startswith(self.active_prefix):
            return self.archive_prefix + file_path[len(self.active_prefix):]
        return self.archive_prefix + file_path.lstrip("/")

    def relocate(self, asset: MediaAsset) -> Optional[str]:
        """Move the asset's file to the archive; returns the new path (None if no file)."""
        if not asset.file_path:
            return None

        target = self.archive_path(asset.file_path)
        if target == asset.file_path:
            logger.debug(f"Asset {asset.id} file already in archive: {target}")
            return target

        self._move(asset.file_path, target)
        logger.info(f"Relocated asset {asset.id}: {asset.file_path} -> {target}")
        return target

    @abstractmethod
    def _move(self, source: str, target: str) -> None:
        pass


class SupabaseObjectStore(ObjectStore):
    """Object store on a Supabase Storage bucket."""

    def __init__(self, client, bucket: str, active_prefix: str = "active/", archive_prefix: str = "archive/"):
        super().__init__(active_prefix, archive_prefix)
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_env(cls, config: CampaignEngineConfig) -> "SupabaseObjectStore":
        """Build from SUPABASE_URL and SUPABASE_SERVICE_KEY (or SUPABASE_KEY)."""
        from supabase import create_client

        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY")
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set for the Supabase object store")

        return cls(
            create_client(url, key),
            bucket=config.storage_bucket,
            active_prefix=config.active_prefix,
            archive_prefix=config.archive_prefix,
        )

    def _move(self, source: str, target: str) -> None:
        try:
            self.client.storage.from_(self.bucket).move(source, target)
        except Exception as e:
            if self._exists(target):
                logger.info(f"{target} already in bucket {self.bucket}; treating move of {source} as done")
                return
            raise TransientStoreError(
                f"Failed to move {source} -> {target} in bucket {self.bucket}: {e}"
            ) from e

    def _exists(self, path: str) -> bool:
        folder, _, name = path.rpartition("/")
        try:
            entries = self.client.storage.from_(self.bucket).list(folder, {"search": name})
        except Exception as e:
            logger.warning(f"Could not list {folder} in bucket {self.bucket}: {e}")
            return False
        return any(entry.get("name") == name for entry in entries or [])


class LocalObjectStore(ObjectStore):
    """Object store on a local directory (development and tests)."""

    def __init__(self, root, active_prefix: str = "active/", archive_prefix: str = "archive/"):
        super().__init__(active_prefix, archive_prefix)
        self.root = Path(root)

    def _move(self, source: str, target: str) -> None:
        src = self.root / source
        dst = self.root / target

        if not src.exists():
            if dst.exists():
                # Moved by an earlier attempt whose status update did not land
                return
            raise PermanentDataError(f"Backing file not found: {source}", missing=[source])

        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(src), str(dst))
        except OSError as e:
            raise TransientStoreError(f"Failed to move {source} -> {target}: {e}") from e
