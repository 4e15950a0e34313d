"""
Notification digest delivery workflow.

Coordinates one delivery cycle: finds recipients whose digest is due, builds
and renders each digest, queues the email and advances the schedule.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from testimony_digest.core.config import Settings, get_settings
from testimony_digest.core.exceptions import UnknownFrequencyError, WorkflowError
from testimony_digest.core.logging import get_logger, set_correlation_id
from testimony_digest.core.models import (
    DeliveryCycleResult,
    DeliveryStatus,
    DigestResult,
    EmailMessageContent,
    Frequency,
    OutboundEmail,
    ProcessingStatus,
    RecipientOutcome,
    RecipientProfile,
    utc_now,
)
from testimony_digest.services.digest_service import build_digest
from testimony_digest.services.render_service import DigestRenderer, create_digest_renderer
from testimony_digest.services.window_service import (
    compute_next_digest_at,
    compute_window_start,
    parse_frequency,
    start_of_day,
)
from testimony_digest.utils.reliability import ParallelProcessor, track_performance

logger = get_logger(__name__)


class DigestDeliveryWorkflow:
    """Orchestrate digest delivery for every due recipient."""

    def __init__(
        self,
        recipient_store,
        identity_service,
        feed_store,
        email_queue,
        renderer: Optional[DigestRenderer] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        correlation_id: Optional[str] = None,
    ):
        """Initialise the workflow with its collaborators and settings."""
        self.recipient_store = recipient_store
        self.identity_service = identity_service
        self.feed_store = feed_store
        self.email_queue = email_queue
        self.settings = settings or get_settings()
        self.renderer = renderer or create_digest_renderer(self.settings.digest)
        self.clock = clock
        self.correlation_id = set_correlation_id(correlation_id)

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run

    def build_recipient_digest(
        self, recipient_id: str, frequency: Frequency, now: datetime
    ) -> DigestResult:
        """Fetch a recipient's window of notifications and aggregate them."""
        window_start = compute_window_start(frequency, now)
        records = self.feed_store.fetch_testimony_notifications(recipient_id, window_start, now)

        digest_config = self.settings.digest
        return build_digest(
            records,
            frequency,
            window_start,
            now,
            cap_bills=digest_config.max_bills,
            cap_users=digest_config.max_users,
            cap_bills_per_user=digest_config.max_bills_per_user,
        )

    def _advance(self, recipient_id: str, frequency: Frequency, now: datetime) -> datetime:
        next_digest_at = compute_next_digest_at(frequency, now)
        if self.dry_run:
            logger.info(
                "DRY RUN: Would update nextDigestAt",
                recipient_id=recipient_id,
                next_digest_at=next_digest_at.isoformat(),
            )
            return next_digest_at

        self.recipient_store.update_next_digest_at(recipient_id, next_digest_at)
        logger.info(
            "Updated nextDigestAt",
            recipient_id=recipient_id,
            next_digest_at=next_digest_at.isoformat(),
        )
        return next_digest_at

    def process_recipient(self, recipient: RecipientProfile, now: datetime) -> RecipientOutcome:
        """
        Build, queue and reschedule the digest for one recipient.

        Configuration problems and missing contacts produce a skipped outcome.
        Collaborator failures propagate to the caller.

        Args:
            recipient: Due recipient profile
            now: Start-of-day reference instant for this cycle

        Returns:
            RecipientOutcome
        """
        recipient_id = recipient.id

        try:
            frequency = parse_frequency(recipient.notification_frequency)
        except UnknownFrequencyError as e:
            logger.error(
                "Recipient has an unknown notificationFrequency - skipping",
                recipient_id=recipient_id,
                frequency=e.frequency,
            )
            return RecipientOutcome(
                recipient_id=recipient_id,
                status=DeliveryStatus.SKIPPED,
                reason="unknown_frequency",
                error_message=e.message,
            )

        if frequency is None:
            logger.info("Recipient has no notificationFrequency - skipping", recipient_id=recipient_id)
            return RecipientOutcome(
                recipient_id=recipient_id, status=DeliveryStatus.SKIPPED, reason="no_frequency"
            )

        verified_email = self.identity_service.get_verified_email(recipient_id)
        if not verified_email:
            logger.info(
                "Skipping recipient because they have no verified email address",
                recipient_id=recipient_id,
            )
            next_digest_at = self._advance(recipient_id, frequency, now)
            return RecipientOutcome(
                recipient_id=recipient_id,
                status=DeliveryStatus.SKIPPED,
                reason="no_verified_email",
                next_digest_at=next_digest_at,
            )

        digest = self.build_recipient_digest(recipient_id, frequency, now)
        counts = {
            "num_bills_with_new_testimony": digest.num_bills_with_new_testimony,
            "num_users_with_new_testimony": digest.num_users_with_new_testimony,
        }

        if digest.is_empty:
            logger.info("No new notifications - not sending email", recipient_id=recipient_id)
            next_digest_at = self._advance(recipient_id, frequency, now)
            return RecipientOutcome(
                recipient_id=recipient_id,
                status=DeliveryStatus.NO_ACTIVITY,
                next_digest_at=next_digest_at,
                **counts,
            )

        email = OutboundEmail(
            to=[verified_email],
            message=EmailMessageContent(
                subject=self.settings.digest.subject,
                text=self.renderer.render_digest_text(digest),
                html=self.renderer.render_digest(digest),
            ),
            created_at=self.clock(),
        )

        if self.dry_run:
            logger.info(
                "DRY RUN: Would queue digest email",
                recipient_id=recipient_id,
                html_size=len(email.message.html),
                **counts,
            )
            return RecipientOutcome(
                recipient_id=recipient_id,
                status=DeliveryStatus.DRY_RUN,
                next_digest_at=compute_next_digest_at(frequency, now),
                **counts,
            )

        email_id = self.email_queue.enqueue(email)
        logger.info("Saved email message to user", recipient_id=recipient_id, email_id=email_id)

        next_digest_at = self._advance(recipient_id, frequency, now)
        return RecipientOutcome(
            recipient_id=recipient_id,
            status=DeliveryStatus.SENT,
            email_id=email_id,
            next_digest_at=next_digest_at,
            **counts,
        )

    @track_performance("digest_delivery_cycle")
    def run_digest_cycle(self, reference_instant: Optional[datetime] = None) -> DeliveryCycleResult:
        """
        Run one delivery cycle over every due recipient.

        Recipients are processed concurrently. A failure for one recipient is
        recorded in its outcome and does not stop the others; only a failure
        to list due recipients fails the whole cycle.

        Args:
            reference_instant: Cycle time, defaults to now; normalized to start of day

        Returns:
            DeliveryCycleResult with one outcome per due recipient
        """
        now = start_of_day(reference_instant or self.clock())
        result = DeliveryCycleResult(
            correlation_id=self.correlation_id,
            reference_instant=now,
            dry_run=self.dry_run,
            status=ProcessingStatus.IN_PROGRESS,
            started_at=self.clock(),
        )

        logger.info(
            "Starting digest delivery cycle",
            reference_instant=now.isoformat(),
            dry_run=self.dry_run,
        )

        try:
            recipients = self.recipient_store.list_due_recipients(now)
        except Exception as e:
            result.status = ProcessingStatus.FAILED
            result.error_message = str(e)
            result.error_details = {
                "error_type": type(e).__name__,
                "correlation_id": self.correlation_id,
            }
            self._finish(result)

            logger.error(
                "Digest delivery cycle failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=result.duration_seconds,
            )
            return result

        by_id = {recipient.id: recipient for recipient in recipients}
        processor = ParallelProcessor(max_workers=self.settings.max_workers)
        task_outcomes = processor.process_batch(
            list(by_id), lambda recipient_id: self.process_recipient(by_id[recipient_id], now)
        )

        outcomes = []
        for recipient_id in by_id:
            task = task_outcomes[recipient_id]
            if task.ok:
                outcomes.append(task.result)
                continue

            error = task.error
            logger.error(
                "Digest delivery failed for recipient",
                recipient_id=recipient_id,
                error=str(error),
                error_type=type(error).__name__,
            )
            outcomes.append(
                RecipientOutcome(
                    recipient_id=recipient_id,
                    status=DeliveryStatus.FAILED,
                    error_message=str(error),
                    error_details={
                        "error_type": type(error).__name__,
                        **getattr(error, "details", {}),
                    },
                )
            )

        result.outcomes = outcomes
        result.status = ProcessingStatus.COMPLETED
        self._finish(result)

        logger.info("Digest delivery cycle completed", **result.summary())
        return result

    def _finish(self, result: DeliveryCycleResult) -> None:
        result.completed_at = self.clock()
        if result.started_at:
            result.duration_seconds = (result.completed_at - result.started_at).total_seconds()


def create_delivery_workflow(
    settings: Optional[Settings] = None,
    engine=None,
    correlation_id: Optional[str] = None,
) -> DigestDeliveryWorkflow:
    """Create a delivery workflow wired to the configured database."""
    from testimony_digest.data.db import create_engine_for_url
    from testimony_digest.data.email_queue import EmailQueue
    from testimony_digest.data.feed_store import NotificationFeedStore
    from testimony_digest.data.identity_service import IdentityService
    from testimony_digest.data.recipient_store import RecipientStore

    settings = settings or get_settings()
    if engine is None:
        try:
            engine = create_engine_for_url(settings.database.url, echo=settings.database.echo)
        except SQLAlchemyError as e:
            raise WorkflowError(
                f"Cannot open database {settings.database.url}: {e}",
                details={"database_url": settings.database.url},
            )

    return DigestDeliveryWorkflow(
        recipient_store=RecipientStore(engine),
        identity_service=IdentityService(engine),
        feed_store=NotificationFeedStore(engine),
        email_queue=EmailQueue(engine),
        settings=settings,
        correlation_id=correlation_id,
    )


def run_delivery_cycle(
    reference_instant: Optional[datetime] = None,
    dry_run: bool = False,
    correlation_id: Optional[str] = None,
) -> DeliveryCycleResult:
    """
    Run one delivery cycle with the global settings.

    Args:
        reference_instant: Optional cycle time override
        dry_run: Whether to run in dry-run mode
        correlation_id: Optional correlation ID for tracing

    Returns:
        DeliveryCycleResult
    """
    settings = get_settings()
    if dry_run:
        settings = settings.model_copy(update={"dry_run": True})

    workflow = create_delivery_workflow(settings, correlation_id=correlation_id)
    return workflow.run_digest_cycle(reference_instant)
