"""
Data models and type definitions for the testimony digest application.

Provides type-safe data structures with validation for notification feeds,
digests and delivery cycle results.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Frequency(str, Enum):
    """How often a user wants to receive a digest."""

    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    NONE = "None"


class Position(str, Enum):
    """Stance taken by a piece of testimony."""

    ENDORSE = "endorse"
    NEUTRAL = "neutral"
    OPPOSE = "oppose"


class DeliveryStatus(str, Enum):
    """Outcome of processing one recipient in a delivery cycle."""

    SENT = "sent"
    NO_ACTIVITY = "no_activity"
    SKIPPED = "skipped"
    FAILED = "failed"
    DRY_RUN = "dry_run"


class ProcessingStatus(str, Enum):
    """Status of processing operations."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Notification feed


class NotificationRecord(BaseModel):
    """One testimony event in a user's notification feed."""

    type: str = Field(default="testimony")
    timestamp: datetime
    is_bill_match: bool = Field(default=False, alias="isBillMatch")
    is_user_match: bool = Field(default=False, alias="isUserMatch")

    bill_id: str = Field(..., alias="billId")
    bill_name: Optional[str] = Field(default=None, alias="header")
    bill_court: Optional[int] = Field(default=None, alias="court")

    # Kept as a raw string so unrecognized positions can be logged and skipped
    position: str

    author_user_id: str = Field(..., alias="authorUid")
    author_display_name: Optional[str] = Field(default=None, alias="subheader")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


# Digest models


class BillDigestEntry(BaseModel):
    """New testimony on one followed bill, counted by position."""

    bill_id: str
    bill_name: Optional[str] = None
    bill_court: Optional[int] = None
    endorse_count: int = Field(default=0, ge=0)
    neutral_count: int = Field(default=0, ge=0)
    oppose_count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def total_count(self) -> int:
        return self.endorse_count + self.neutral_count + self.oppose_count


class UserBillEntry(BaseModel):
    """A bill a followed user submitted testimony on."""

    bill_id: str
    court: Optional[int] = None
    position: str

    model_config = ConfigDict(frozen=True)


class UserDigestEntry(BaseModel):
    """New testimony authored by one followed user."""

    user_id: str
    user_name: Optional[str] = None
    bills: Tuple[UserBillEntry, ...] = ()
    new_testimony_count: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)


class DigestResult(BaseModel):
    """Ranked and capped summary of one recipient's window of activity."""

    notification_frequency: Frequency
    start_date: datetime
    end_date: datetime

    bills: Tuple[BillDigestEntry, ...] = ()
    num_bills_with_new_testimony: int = Field(default=0, ge=0)

    users: Tuple[UserDigestEntry, ...] = ()
    num_users_with_new_testimony: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        """True when there is nothing worth emailing."""
        return self.num_bills_with_new_testimony == 0 and self.num_users_with_new_testimony == 0


# Recipients and outbound email


class RecipientProfile(BaseModel):
    """A profile that may be due for a digest."""

    id: str
    notification_frequency: Optional[str] = None
    next_digest_at: Optional[datetime] = None


class EmailMessageContent(BaseModel):
    """Subject and bodies of a queued email."""

    subject: str
    text: str = ""
    html: str


class OutboundEmail(BaseModel):
    """Document written to the outbound email queue."""

    to: List[str] = Field(..., min_length=1)
    message: EmailMessageContent
    created_at: datetime = Field(default_factory=utc_now)


# Delivery cycle results


class RecipientOutcome(BaseModel):
    """What happened to one recipient during a cycle."""

    recipient_id: str
    status: DeliveryStatus
    reason: Optional[str] = None

    num_bills_with_new_testimony: int = Field(default=0, ge=0)
    num_users_with_new_testimony: int = Field(default=0, ge=0)
    email_id: Optional[str] = None
    next_digest_at: Optional[datetime] = None

    error_message: Optional[str] = None
    error_details: Dict[str, Any] = Field(default_factory=dict)


class DeliveryCycleResult(BaseModel):
    """Result of one delivery cycle across every due recipient."""

    correlation_id: Optional[str] = None
    reference_instant: datetime
    dry_run: bool = False

    status: ProcessingStatus = Field(default=ProcessingStatus.PENDING)
    outcomes: List[RecipientOutcome] = Field(default_factory=list)

    # Timing
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None

    # Cycle-level error tracking
    error_message: Optional[str] = None
    error_details: Dict[str, Any] = Field(default_factory=dict)

    def _count(self, status: DeliveryStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def total_recipients(self) -> int:
        return len(self.outcomes)

    @property
    def sent_count(self) -> int:
        return self._count(DeliveryStatus.SENT)

    @property
    def no_activity_count(self) -> int:
        return self._count(DeliveryStatus.NO_ACTIVITY)

    @property
    def skipped_count(self) -> int:
        return self._count(DeliveryStatus.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self._count(DeliveryStatus.FAILED)

    @property
    def dry_run_count(self) -> int:
        return self._count(DeliveryStatus.DRY_RUN)

    def summary(self) -> Dict[str, Any]:
        """Flat summary suitable for logging."""
        return {
            "status": self.status.value if isinstance(self.status, Enum) else self.status,
            "recipients": self.total_recipients,
            "sent": self.sent_count,
            "no_activity": self.no_activity_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "dry_run": self.dry_run_count,
            "duration_seconds": self.duration_seconds,
        }
