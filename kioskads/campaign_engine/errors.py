"""
Campaign Engine Errors

Error taxonomy shared by the reconciler, archival coordinator and pricing.
"""

from typing import List, Optional


class CampaignEngineError(Exception):
    """Base class for campaign engine errors."""


class ValidationError(CampaignEngineError):
    """Rejected input at create/edit time (bad dates, malformed discounts)."""

    def __init__(self, errors, message: Optional[str] = None):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__(message or "; ".join(self.errors))


class TransientStoreError(CampaignEngineError):
    """Network or timeout failure talking to the persistent or object store."""


class PermanentDataError(CampaignEngineError):
    """A referenced kiosk or media asset no longer exists."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        self.missing = list(missing or [])
        super().__init__(message)


class NotificationError(CampaignEngineError):
    """Notification sink failure. Never fatal."""


class CampaignNotFoundError(CampaignEngineError):
    """No campaign with the requested id."""


class DiscountSettingNotFoundError(CampaignEngineError):
    """No volume discount setting with the requested id."""
