"""Notification feed store backed by the ``user_notification_feed`` table."""

from __future__ import annotations

from datetime import datetime
from typing import List

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import select

from testimony_digest.core.exceptions import NotificationFeedError
from testimony_digest.core.models import NotificationRecord
from testimony_digest.data.db import FeedNotification, from_db_time, get_session, to_db_time
from testimony_digest.utils.reliability import with_retry

logger = structlog.get_logger(__name__)

TESTIMONY_TYPE = "testimony"


class NotificationFeedStore:
    """Reads testimony notifications from a user's feed."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @with_retry(retry_exceptions=(OperationalError,))
    def _select_window(
        self, recipient_id: str, window_start: datetime, window_end: datetime
    ) -> List[FeedNotification]:
        with get_session(self._engine) as session:
            statement = (
                select(FeedNotification)
                .where(
                    FeedNotification.user_id == recipient_id,
                    FeedNotification.type == TESTIMONY_TYPE,
                    FeedNotification.timestamp >= to_db_time(window_start),
                    FeedNotification.timestamp < to_db_time(window_end),
                )
                .order_by(FeedNotification.timestamp, FeedNotification.id)
            )
            return list(session.exec(statement))

    def fetch_testimony_notifications(
        self, recipient_id: str, window_start: datetime, window_end: datetime
    ) -> List[NotificationRecord]:
        """
        Fetch testimony notifications in ``[window_start, window_end)``.

        Raises:
            NotificationFeedError: If the feed cannot be read
        """
        try:
            rows = self._select_window(recipient_id, window_start, window_end)
        except SQLAlchemyError as e:
            raise NotificationFeedError(
                f"Failed to fetch notifications for {recipient_id}: {e}",
                details={"recipient_id": recipient_id},
            )

        logger.debug("Notifications fetched", recipient_id=recipient_id, count=len(rows))

        return [
            NotificationRecord(
                type=row.type,
                timestamp=from_db_time(row.timestamp),
                is_bill_match=row.is_bill_match,
                is_user_match=row.is_user_match,
                bill_id=row.bill_id,
                bill_name=row.header,
                bill_court=row.court,
                position=row.position,
                author_user_id=row.author_uid,
                author_display_name=row.subheader,
            )
            for row in rows
        ]
