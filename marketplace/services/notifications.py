"""Notification sinks for order events."""
import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    def notify(
        self,
        user_id: int,
        kind: str,
        title: str,
        content: str,
        data: dict[str, Any] | None = None,
    ) -> None: ...


class DatabaseNotificationSink:
    """Persist notifications in their own commit, after the transition committed."""

    def __init__(self, db: Session):
        self.db = db

    def notify(
        self,
        user_id: int,
        kind: str,
        title: str,
        content: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        notification = Notification(
            user_id=user_id,
            type=kind,
            title=title,
            content=content,
            data_json=data or {},
        )
        try:
            self.db.add(notification)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


def safe_notify(
    sink: NotificationSink,
    user_id: int,
    kind: str,
    title: str,
    content: str,
    data: dict[str, Any] | None = None,
) -> bool:
    """Deliver a notification; failures are logged and never propagate."""

    try:
        sink.notify(user_id, kind, title, content, data)
        return True
    except Exception:
        logger.exception("Notification delivery failed", extra={"user_id": user_id, "kind": kind})
        return False


__all__ = ["DatabaseNotificationSink", "NotificationSink", "safe_notify"]
