"""Test the SQL-backed stores and a full delivery cycle against them."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import select

from testimony_digest.core.config import Settings
from testimony_digest.core.exceptions import RecipientStoreError
from testimony_digest.core.models import (
    DeliveryStatus,
    EmailMessageContent,
    OutboundEmail,
    ProcessingStatus,
)
from testimony_digest.data.db import (
    FeedNotification,
    Profile,
    QueuedEmail,
    UserAccount,
    from_db_time,
    get_session,
    to_db_time,
)
from testimony_digest.data.email_queue import EmailQueue
from testimony_digest.data.feed_store import NotificationFeedStore
from testimony_digest.data.identity_service import IdentityService
from testimony_digest.data.recipient_store import RecipientStore
from testimony_digest.workflows.deliver_notifications import create_delivery_workflow


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def add_rows(engine, *rows):
    with get_session(engine) as session:
        for row in rows:
            session.add(row)
        session.commit()


def feed_row(user_id, minutes_after, **overrides):
    values = dict(
        user_id=user_id,
        type="testimony",
        timestamp=to_db_time(utc(2024, 2, 27) + timedelta(minutes=minutes_after)),
        is_bill_match=True,
        is_user_match=False,
        bill_id="H123",
        header="An Act relative to libraries",
        court=193,
        position="endorse",
        author_uid="author-1",
        subheader="Author One",
    )
    values.update(overrides)
    return FeedNotification(**values)


class TestTimeConversion:
    """Timestamps are written and read as aware UTC."""

    def test_offset_is_converted_to_utc(self):
        aware = datetime(2024, 3, 5, 4, 0, tzinfo=timezone(timedelta(hours=-5)))

        stored = to_db_time(aware)

        assert stored.tzinfo == timezone.utc
        assert stored == utc(2024, 3, 5, 9, 0)

    def test_naive_values_are_treated_as_utc(self):
        assert to_db_time(datetime(2024, 3, 5, 9, 0)) == utc(2024, 3, 5, 9, 0)
        assert from_db_time(datetime(2024, 3, 5, 9, 0)).tzinfo == timezone.utc

    def test_aware_timestamps_survive_a_database_round_trip(self, engine):
        """Aware values are accepted by the timestamp columns and read back unchanged."""
        due = datetime(2024, 3, 5, 4, 0, tzinfo=timezone(timedelta(hours=-5)))
        add_rows(engine, Profile(id="alice", notification_frequency="Daily", next_digest_at=to_db_time(due)))

        with get_session(engine) as session:
            stored = session.get(Profile, "alice").next_digest_at

        assert from_db_time(stored) == utc(2024, 3, 5, 9, 0)
        assert [p.id for p in RecipientStore(engine).list_due_recipients(utc(2024, 3, 5, 9, 0))] == [
            "alice"
        ]

    def test_none_passes_through(self):
        assert to_db_time(None) is None
        assert from_db_time(None) is None


class TestRecipientStore:
    """Due-recipient listing and schedule updates."""

    @pytest.fixture(autouse=True)
    def setup_store(self, engine):
        self.engine = engine
        self.store = RecipientStore(engine)
        add_rows(
            engine,
            Profile(id="due-early", notification_frequency="Weekly", next_digest_at=to_db_time(utc(2024, 3, 1))),
            Profile(id="due-now", notification_frequency="Daily", next_digest_at=to_db_time(utc(2024, 3, 5))),
            Profile(id="later", notification_frequency="Monthly", next_digest_at=to_db_time(utc(2024, 3, 6))),
            Profile(id="never", notification_frequency="Weekly", next_digest_at=None),
        )

    def test_lists_profiles_due_at_or_before_now(self, reference_instant):
        due = self.store.list_due_recipients(reference_instant)

        assert [p.id for p in due] == ["due-early", "due-now"]
        assert due[0].notification_frequency == "Weekly"
        assert due[0].next_digest_at == utc(2024, 3, 1)

    def test_update_next_digest_at(self, reference_instant):
        self.store.update_next_digest_at("due-now", utc(2024, 3, 6))

        assert self.store.get_recipient("due-now").next_digest_at == utc(2024, 3, 6)
        assert [p.id for p in self.store.list_due_recipients(reference_instant)] == ["due-early"]

    def test_update_missing_profile_raises(self):
        with pytest.raises(RecipientStoreError) as exc_info:
            self.store.update_next_digest_at("ghost", utc(2024, 3, 6))

        assert exc_info.value.details == {"recipient_id": "ghost"}

    def test_get_missing_recipient(self):
        assert self.store.get_recipient("ghost") is None


class TestIdentityService:
    """Verified email lookups."""

    def test_only_verified_addresses_are_returned(self, engine):
        add_rows(
            engine,
            UserAccount(uid="alice", email="alice@example.org", email_verified=True),
            UserAccount(uid="bob", email="bob@example.org", email_verified=False),
            UserAccount(uid="carol", email=None, email_verified=True),
        )
        service = IdentityService(engine)

        assert service.get_verified_email("alice") == "alice@example.org"
        assert service.get_verified_email("bob") is None
        assert service.get_verified_email("carol") is None
        assert service.get_verified_email("dave") is None


class TestNotificationFeedStore:
    """Window queries over the notification feed."""

    def test_half_open_window_and_type_filter(self, engine):
        window_start = utc(2024, 2, 27)
        window_end = utc(2024, 3, 5)
        add_rows(
            engine,
            feed_row("alice", 0, bill_id="AT-START"),
            feed_row("alice", 60, bill_id="INSIDE"),
            feed_row("alice", 60 * 24 * 7, bill_id="AT-END"),
            feed_row("alice", -1, bill_id="BEFORE"),
            feed_row("alice", 30, bill_id="WRONG-TYPE", type="bill"),
            feed_row("bob", 30, bill_id="OTHER-USER"),
        )

        records = NotificationFeedStore(engine).fetch_testimony_notifications(
            "alice", window_start, window_end
        )

        assert [r.bill_id for r in records] == ["AT-START", "INSIDE"]
        first = records[0]
        assert first.timestamp == window_start
        assert first.bill_name == "An Act relative to libraries"
        assert first.bill_court == 193
        assert first.author_user_id == "author-1"
        assert first.author_display_name == "Author One"


class TestEmailQueue:
    """Outbound email rows."""

    def test_enqueue_writes_row(self, engine):
        email = OutboundEmail(
            to=["alice@example.org"],
            message=EmailMessageContent(subject="Digest", text="plain", html="<p>hi</p>"),
            created_at=utc(2024, 3, 5, 9, 47),
        )

        email_id = EmailQueue(engine).enqueue(email)

        with get_session(engine) as session:
            row = session.get(QueuedEmail, int(email_id))
        assert row.recipients == ["alice@example.org"]
        assert row.subject == "Digest"
        assert row.text == "plain"
        assert row.html == "<p>hi</p>"
        assert from_db_time(row.created_at) == utc(2024, 3, 5, 9, 47)


class TestDeliveryCycleEndToEnd:
    """A full cycle against the in-memory database."""

    @pytest.fixture(autouse=True)
    def setup_database(self, engine, settings):
        self.engine = engine
        # One worker keeps the shared in-memory connection single-threaded
        self.settings = Settings(
            ENVIRONMENT="test", DRY_RUN=False, MAX_WORKERS=1, digest=settings.digest
        )
        add_rows(
            engine,
            Profile(id="alice", notification_frequency="Weekly", next_digest_at=to_db_time(utc(2024, 3, 5))),
            Profile(id="bob", notification_frequency="Weekly", next_digest_at=to_db_time(utc(2024, 3, 5))),
            Profile(id="carol", notification_frequency="None", next_digest_at=to_db_time(utc(2024, 3, 5))),
            Profile(id="dave", notification_frequency="Daily", next_digest_at=to_db_time(utc(2024, 3, 5))),
            UserAccount(uid="alice", email="alice@example.org", email_verified=True),
            UserAccount(uid="bob", email="bob@example.org", email_verified=True),
            UserAccount(uid="carol", email="carol@example.org", email_verified=True),
            feed_row("alice", 10),
            feed_row("alice", 20, position="oppose"),
            feed_row("alice", 30, is_bill_match=False, is_user_match=True, author_uid="eve"),
        )

    def queued_emails(self):
        with get_session(self.engine) as session:
            return list(session.exec(select(QueuedEmail)))

    def test_cycle_queues_and_reschedules(self, reference_instant):
        workflow = create_delivery_workflow(self.settings, engine=self.engine)

        result = workflow.run_digest_cycle(reference_instant)

        assert result.status == ProcessingStatus.COMPLETED
        statuses = {o.recipient_id: o.status for o in result.outcomes}
        assert statuses == {
            "alice": DeliveryStatus.SENT,
            "bob": DeliveryStatus.NO_ACTIVITY,
            "carol": DeliveryStatus.SKIPPED,
            "dave": DeliveryStatus.SKIPPED,
        }

        emails = self.queued_emails()
        assert len(emails) == 1
        assert emails[0].recipients == ["alice@example.org"]
        assert "H123" in emails[0].html

        store = workflow.recipient_store
        assert store.get_recipient("alice").next_digest_at == utc(2024, 3, 12)
        assert store.get_recipient("bob").next_digest_at == utc(2024, 3, 12)
        assert store.get_recipient("carol").next_digest_at == utc(2024, 3, 5)
        # No verified email still moves the schedule
        assert store.get_recipient("dave").next_digest_at == utc(2024, 3, 6)

    def test_rerun_on_same_day_sends_nothing_new(self, reference_instant):
        workflow = create_delivery_workflow(self.settings, engine=self.engine)
        workflow.run_digest_cycle(reference_instant)

        second = workflow.run_digest_cycle(reference_instant)

        assert [o.recipient_id for o in second.outcomes] == ["carol"]
        assert len(self.queued_emails()) == 1
