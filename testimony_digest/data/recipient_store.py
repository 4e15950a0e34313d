"""Recipient profile store backed by the ``profiles`` table."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from testimony_digest.core.exceptions import RecipientStoreError
from testimony_digest.core.models import RecipientProfile
from testimony_digest.data.db import Profile, from_db_time, get_session, to_db_time
from testimony_digest.utils.reliability import with_retry

logger = structlog.get_logger(__name__)


class RecipientStore:
    """Reads due recipients and advances their digest schedule."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def session(self) -> Session:
        return get_session(self._engine)

    @with_retry(retry_exceptions=(OperationalError,))
    def _select_due(self, now: datetime) -> List[Profile]:
        with self.session() as session:
            statement = (
                select(Profile)
                .where(Profile.next_digest_at <= to_db_time(now))
                .order_by(Profile.next_digest_at, Profile.id)
            )
            return list(session.exec(statement))

    def list_due_recipients(self, now: datetime) -> List[RecipientProfile]:
        """
        Return every profile whose next digest is due at or before ``now``.

        Raises:
            RecipientStoreError: If the profiles cannot be queried
        """
        try:
            rows = self._select_due(now)
        except SQLAlchemyError as e:
            logger.error("Failed to list due recipients", error=str(e))
            raise RecipientStoreError(f"Failed to list due recipients: {e}")

        logger.info("Due recipients loaded", count=len(rows), now=now.isoformat())

        return [
            RecipientProfile(
                id=row.id,
                notification_frequency=row.notification_frequency,
                next_digest_at=from_db_time(row.next_digest_at),
            )
            for row in rows
        ]

    @with_retry(retry_exceptions=(OperationalError,))
    def _write_next_digest_at(self, recipient_id: str, next_digest_at: datetime) -> bool:
        with self.session() as session:
            profile = session.get(Profile, recipient_id)
            if profile is None:
                return False
            profile.next_digest_at = to_db_time(next_digest_at)
            session.add(profile)
            session.commit()
            return True

    def update_next_digest_at(self, recipient_id: str, next_digest_at: datetime) -> None:
        """
        Advance a recipient's next-digest timestamp.

        Raises:
            RecipientStoreError: If the profile is missing or the write fails
        """
        try:
            updated = self._write_next_digest_at(recipient_id, next_digest_at)
        except SQLAlchemyError as e:
            raise RecipientStoreError(
                f"Failed to update nextDigestAt for {recipient_id}: {e}",
                details={"recipient_id": recipient_id},
            )

        if not updated:
            raise RecipientStoreError(
                f"Profile {recipient_id} not found", details={"recipient_id": recipient_id}
            )

        logger.debug(
            "Updated nextDigestAt",
            recipient_id=recipient_id,
            next_digest_at=next_digest_at.isoformat(),
        )

    def get_recipient(self, recipient_id: str) -> Optional[RecipientProfile]:
        """Return one profile, or None if it does not exist."""
        try:
            with self.session() as session:
                row = session.get(Profile, recipient_id)
        except SQLAlchemyError as e:
            raise RecipientStoreError(f"Failed to load profile {recipient_id}: {e}")

        if row is None:
            return None
        return RecipientProfile(
            id=row.id,
            notification_frequency=row.notification_frequency,
            next_digest_at=from_db_time(row.next_digest_at),
        )
