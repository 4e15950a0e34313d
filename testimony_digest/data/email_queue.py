"""
Outbound email queue.

Writes one row per digest to the ``emails`` table. A separate mail consumer
owns delivery; nothing here waits for or confirms a send.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from testimony_digest.core.exceptions import EmailQueueError
from testimony_digest.core.models import OutboundEmail
from testimony_digest.data.db import QueuedEmail, get_session, to_db_time
from testimony_digest.utils.reliability import with_retry

logger = structlog.get_logger(__name__)


class EmailQueue:
    """Queues digest emails for the mail consumer."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @with_retry(retry_exceptions=(OperationalError,))
    def _insert(self, email: OutboundEmail) -> Optional[int]:
        row = QueuedEmail(
            recipients=list(email.to),
            subject=email.message.subject,
            text=email.message.text,
            html=email.message.html,
            created_at=to_db_time(email.created_at),
        )
        with get_session(self._engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id

    def enqueue(self, email: OutboundEmail) -> str:
        """
        Add an email to the queue.

        Returns:
            Queue document ID

        Raises:
            EmailQueueError: If the queue write fails
        """
        try:
            email_id = self._insert(email)
        except SQLAlchemyError as e:
            raise EmailQueueError(f"Failed to queue email: {e}", details={"to": email.to})

        logger.info(
            "Email queued",
            email_id=email_id,
            to=email.to,
            subject=email.message.subject,
            html_size=len(email.message.html),
        )
        return str(email_id)
