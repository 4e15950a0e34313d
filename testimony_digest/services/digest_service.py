"""Digest aggregation for testimony notification feeds."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog

from testimony_digest.core.models import (
    BillDigestEntry,
    DigestResult,
    Frequency,
    NotificationRecord,
    Position,
    UserBillEntry,
    UserDigestEntry,
)

logger = structlog.get_logger(__name__)

NUM_BILLS_TO_DISPLAY = 4
NUM_USERS_TO_DISPLAY = 4
NUM_TESTIMONIES_TO_DISPLAY = 6

_POSITION_COUNTERS = {
    Position.ENDORSE.value: "endorse_count",
    Position.NEUTRAL.value: "neutral_count",
    Position.OPPOSE.value: "oppose_count",
}


@dataclass
class _BillTally:
    bill_id: str
    bill_name: Optional[str]
    bill_court: Optional[int]
    endorse_count: int = 0
    neutral_count: int = 0
    oppose_count: int = 0

    @property
    def total_count(self) -> int:
        return self.endorse_count + self.neutral_count + self.oppose_count

    def to_entry(self) -> BillDigestEntry:
        return BillDigestEntry(
            bill_id=self.bill_id,
            bill_name=self.bill_name,
            bill_court=self.bill_court,
            endorse_count=self.endorse_count,
            neutral_count=self.neutral_count,
            oppose_count=self.oppose_count,
        )


@dataclass
class _UserTally:
    user_id: str
    user_name: Optional[str]
    bills: List[UserBillEntry] = field(default_factory=list)
    new_testimony_count: int = 0

    def to_entry(self, max_bills: int) -> UserDigestEntry:
        return UserDigestEntry(
            user_id=self.user_id,
            user_name=self.user_name,
            bills=tuple(self.bills[:max_bills]),
            new_testimony_count=self.new_testimony_count,
        )


def build_digest(
    records: Iterable[NotificationRecord],
    frequency: Frequency,
    window_start: datetime,
    window_end: datetime,
    cap_bills: int = NUM_BILLS_TO_DISPLAY,
    cap_users: int = NUM_USERS_TO_DISPLAY,
    cap_bills_per_user: int = NUM_TESTIMONIES_TO_DISPLAY,
) -> DigestResult:
    """
    Group a recipient's testimony notifications into a digest.

    Records are trusted to already fall inside ``[window_start, window_end)``;
    only the bill/user match flags and the position are inspected. Bills are
    ranked by total new testimony and users by their new testimony count.
    Both sorts are stable so ties keep the order records were encountered in.
    The ``num_*`` totals are counted before any cap is applied.

    Args:
        records: Testimony notifications in feed order
        frequency: Recipient's notification frequency
        window_start: Inclusive start of the window
        window_end: Exclusive end of the window
        cap_bills: Maximum bills to include
        cap_users: Maximum users to include
        cap_bills_per_user: Maximum bills listed under each user

    Returns:
        DigestResult
    """
    # dicts iterate in insertion order, which the stable sorts below rely on
    bills_by_id: Dict[str, _BillTally] = {}
    users_by_id: Dict[str, _UserTally] = {}

    for record in records:
        if record.is_bill_match:
            bill = bills_by_id.get(record.bill_id)
            if bill is None:
                bill = _BillTally(
                    bill_id=record.bill_id,
                    bill_name=record.bill_name,
                    bill_court=record.bill_court,
                )
                bills_by_id[record.bill_id] = bill

            counter = _POSITION_COUNTERS.get(record.position)
            if counter:
                setattr(bill, counter, getattr(bill, counter) + 1)
            else:
                logger.warning(
                    "Unknown position on testimony notification",
                    position=record.position,
                    bill_id=record.bill_id,
                    author_user_id=record.author_user_id,
                )

        if record.is_user_match:
            user = users_by_id.get(record.author_user_id)
            if user is None:
                user = _UserTally(
                    user_id=record.author_user_id,
                    user_name=record.author_display_name,
                )
                users_by_id[record.author_user_id] = user

            user.bills.append(
                UserBillEntry(
                    bill_id=record.bill_id,
                    court=record.bill_court,
                    position=record.position,
                )
            )
            user.new_testimony_count += 1

    bills = sorted(bills_by_id.values(), key=lambda b: b.total_count, reverse=True)
    users = sorted(users_by_id.values(), key=lambda u: u.new_testimony_count, reverse=True)

    digest = DigestResult(
        notification_frequency=frequency,
        start_date=window_start,
        end_date=window_end,
        bills=tuple(bill.to_entry() for bill in bills[:cap_bills]),
        num_bills_with_new_testimony=len(bills),
        users=tuple(user.to_entry(cap_bills_per_user) for user in users[:cap_users]),
        num_users_with_new_testimony=len(users),
    )

    logger.debug(
        "Digest built",
        frequency=getattr(frequency, "value", frequency),
        bills=digest.num_bills_with_new_testimony,
        users=digest.num_users_with_new_testimony,
    )

    return digest
