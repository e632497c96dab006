"""
Notification Sink

Best-effort status change events. Emission never blocks or fails a
reconciliation pass: every error is logged and discarded.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import NotificationError

logger = logging.getLogger(__name__)


@dataclass
class CampaignEvent:
    """A campaign (or one of its assets) changed status."""

    campaign_id: str
    old_status: str
    new_status: str
    timestamp: datetime
    asset_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "campaign_id": self.campaign_id,
            "asset_id": self.asset_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "timestamp": self.timestamp.isoformat(),
        }


class NotificationSink(ABC):
    @abstractmethod
    def emit(self, event: CampaignEvent) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes events to the log."""

    def emit(self, event: CampaignEvent) -> None:
        subject = f"asset {event.asset_id}" if event.asset_id else f"campaign {event.campaign_id}"
        logger.info(f"Status change: {subject} {event.old_status} -> {event.new_status}")


INSERT_NOTIFICATION = text("""
    INSERT INTO campaign_notifications
        (id, campaign_id, asset_id, old_status, new_status, occurred_at)
    VALUES
        (:id, :cid, :aid, :old_status, :new_status, :occurred_at)
""").bindparams(bindparam("occurred_at", type_=DateTime))


class OutboxNotificationSink(NotificationSink):
    """Queues events in campaign_notifications for the email worker to deliver."""

    def __init__(self, session_factory: sessionmaker):
        self.SessionFactory = session_factory

    def emit(self, event: CampaignEvent) -> None:
        session = self.SessionFactory()
        try:
            session.execute(
                INSERT_NOTIFICATION,
                {
                    "id": str(uuid4()),
                    "cid": event.campaign_id,
                    "aid": event.asset_id,
                    "old_status": event.old_status,
                    "new_status": event.new_status,
                    "occurred_at": event.timestamp,
                },
            )
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise NotificationError(f"Failed to queue notification: {e}") from e
        finally:
            session.close()


class CompositeNotificationSink(NotificationSink):
    """Fans an event out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Sequence[NotificationSink]):
        self.sinks: List[NotificationSink] = list(sinks)

    def emit(self, event: CampaignEvent) -> None:
        for sink in self.sinks:
            safe_emit(sink, event)


def safe_emit(sink: Optional[NotificationSink], event: CampaignEvent) -> bool:
    """Emit without letting any sink error escape. Returns False on failure."""
    if sink is None:
        return False
    try:
        sink.emit(event)
        return True
    except Exception as e:
        logger.error(
            f"Notification for campaign {event.campaign_id} "
            f"({event.old_status} -> {event.new_status}) dropped: {e}"
        )
        return False
