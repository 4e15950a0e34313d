"""Verified contact address lookups."""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from testimony_digest.core.exceptions import IdentityServiceError
from testimony_digest.data.db import UserAccount, get_session
from testimony_digest.utils.reliability import with_retry

logger = structlog.get_logger(__name__)


class IdentityService:
    """Resolves a recipient's email address when it has been verified."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @with_retry(retry_exceptions=(OperationalError,))
    def _get_account(self, uid: str) -> Optional[UserAccount]:
        with get_session(self._engine) as session:
            return session.get(UserAccount, uid)

    def get_verified_email(self, recipient_id: str) -> Optional[str]:
        """
        Return the recipient's email address, or None if missing or unverified.

        Raises:
            IdentityServiceError: If the lookup itself fails
        """
        try:
            account = self._get_account(recipient_id)
        except SQLAlchemyError as e:
            raise IdentityServiceError(
                f"Failed to look up user {recipient_id}: {e}",
                details={"recipient_id": recipient_id},
            )

        if account and account.email and account.email_verified:
            return account.email
        return None
