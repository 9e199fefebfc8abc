"""
Job Store
Database access for scheduled jobs and the message audit table, including the
atomic claim used by the sweep.
"""
import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from demo_followup.models import Message, ScheduledJob
from demo_followup.models.enums import JobOutcome, MessageChannel, MessageType

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_LENGTH = 500


def dialect_insert(session: Session, model):
    """INSERT construct with ON CONFLICT support for the session's database"""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert is not supported on {dialect}")


class JobStore:
    """Scheduled job persistence bound to one session. Every write commits."""

    def __init__(self, session: Session):
        self.session = session

    # ---------------------------------------------------------------- writes

    def upsert_job(self, demo_id: int, message_type: MessageType, scheduled_for: datetime) -> None:
        """
        Create the job for (demo, kind) or move an existing one.

        An unexecuted row gets the new target time and goes back to pending.
        Executed rows are history and are left as they are.
        """
        stmt = dialect_insert(self.session, ScheduledJob).values(
            demo_id=demo_id,
            message_type=message_type,
            scheduled_for=scheduled_for,
            executed=False,
            cancelled=False,
            processing=False,
            retry_count=0,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ScheduledJob.demo_id, ScheduledJob.message_type],
            set_={
                "scheduled_for": stmt.excluded.scheduled_for,
                "cancelled": False,
                "retry_count": 0,
                "last_error": None,
                "outcome": None,
            },
            where=ScheduledJob.executed.is_(False),
        )
        self.session.execute(stmt)
        self.session.commit()

    def cancel(self, demo_id: int, message_types: Iterable[MessageType] | None = None) -> int:
        """Cancel unexecuted jobs for a demo, optionally only some kinds. Returns rows changed."""
        stmt = (
            update(ScheduledJob)
            .where(
                ScheduledJob.demo_id == demo_id,
                ScheduledJob.executed.is_(False),
                ScheduledJob.cancelled.is_(False),
            )
            .values(cancelled=True)
            .execution_options(synchronize_session=False)
        )
        if message_types is not None:
            stmt = stmt.where(ScheduledJob.message_type.in_(list(message_types)))

        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount

    def claim(self, job_id: int, now: datetime) -> bool:
        """
        Take the claim on a job.

        A single conditional UPDATE; returns False when another sweep already
        holds the claim or the job is no longer pending.
        """
        stmt = (
            update(ScheduledJob)
            .where(
                ScheduledJob.id == job_id,
                ScheduledJob.executed.is_(False),
                ScheduledJob.cancelled.is_(False),
                ScheduledJob.processing.is_(False),
            )
            .values(processing=True, processing_started_at=now)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount == 1

    def release_claim(self, job_id: int) -> None:
        self._update(job_id, processing=False, processing_started_at=None)

    def release_stale_claims(self, claimed_before: datetime) -> int:
        """Drop claims taken before ``claimed_before``. Returns rows released."""
        stmt = (
            update(ScheduledJob)
            .where(
                ScheduledJob.processing.is_(True),
                ScheduledJob.processing_started_at < claimed_before,
            )
            .values(processing=False, processing_started_at=None)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        return result.rowcount

    def mark_executed(self, job_id: int, now: datetime, outcome: JobOutcome) -> bool:
        """
        Resolve a claimed job.

        A job cancelled in the meantime stays cancelled: only its claim is
        dropped and False is returned.
        """
        stmt = (
            update(ScheduledJob)
            .where(ScheduledJob.id == job_id, ScheduledJob.cancelled.is_(False))
            .values(
                executed=True,
                executed_at=now,
                outcome=outcome.value,
                processing=False,
                processing_started_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.commit()
        if result.rowcount == 1:
            return True

        self.release_claim(job_id)
        return False

    def release_for_retry(self, job_id: int, retry_count: int, error: str) -> None:
        self._update(
            job_id,
            processing=False,
            processing_started_at=None,
            retry_count=retry_count,
            last_error=error[:LAST_ERROR_MAX_LENGTH],
        )

    def mark_failed(self, job_id: int, retry_count: int, error: str) -> None:
        """Cancel a job that has used up its retries. It will not be picked up again."""
        self._update(
            job_id,
            cancelled=True,
            outcome=JobOutcome.PERMANENTLY_FAILED.value,
            processing=False,
            processing_started_at=None,
            retry_count=retry_count,
            last_error=error[:LAST_ERROR_MAX_LENGTH],
        )

    def record_message(
        self,
        demo_id: int,
        message_type: MessageType,
        channel: MessageChannel,
        recipient: str,
        body: str,
        subject: str | None = None,
        external_id: str | None = None,
    ) -> Message | None:
        """
        Write the audit row for a send.

        Returns None if a row for (demo, kind) already exists; the unique
        constraint is the last line of defence against double sends.
        """
        message = Message(
            demo_id=demo_id,
            message_type=message_type,
            channel=channel,
            recipient=recipient,
            subject=subject,
            body=body,
            external_id=external_id,
        )
        self.session.add(message)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.info("Message %s already recorded for demo %s", message_type.value, demo_id)
            return None
        self.session.refresh(message)
        return message

    def _update(self, job_id: int, **values) -> None:
        stmt = (
            update(ScheduledJob)
            .where(ScheduledJob.id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
        self.session.commit()

    # ----------------------------------------------------------------- reads

    def get(self, job_id: int) -> ScheduledJob | None:
        return self.session.get(ScheduledJob, job_id, populate_existing=True)

    def find(self, demo_id: int, message_type: MessageType) -> ScheduledJob | None:
        return self.session.scalars(
            select(ScheduledJob).where(
                ScheduledJob.demo_id == demo_id,
                ScheduledJob.message_type == message_type,
            )
        ).first()

    def for_demo(self, demo_id: int) -> list[ScheduledJob]:
        return list(self.session.scalars(
            select(ScheduledJob)
            .where(ScheduledJob.demo_id == demo_id)
            .order_by(ScheduledJob.scheduled_for)
        ))

    def find_due(self, now: datetime, limit: int) -> list[ScheduledJob]:
        """Pending, unclaimed jobs due at ``now``, oldest first"""
        return list(self.session.scalars(
            select(ScheduledJob)
            .where(
                ScheduledJob.executed.is_(False),
                ScheduledJob.cancelled.is_(False),
                ScheduledJob.processing.is_(False),
                ScheduledJob.scheduled_for <= now,
            )
            .order_by(ScheduledJob.scheduled_for, ScheduledJob.id)
            .limit(limit)
        ))

    def message_exists(self, demo_id: int, message_type: MessageType) -> bool:
        return self.session.scalar(
            select(Message.id).where(
                Message.demo_id == demo_id,
                Message.message_type == message_type,
            ).limit(1)
        ) is not None

    def messages_for_demo(self, demo_id: int) -> list[Message]:
        return list(self.session.scalars(
            select(Message).where(Message.demo_id == demo_id).order_by(Message.sent_at)
        ))

    def count_pending_due(self, due_before: datetime) -> int:
        """Pending jobs whose target time is at or before ``due_before``"""
        return self.session.scalar(
            select(func.count(ScheduledJob.id)).where(
                ScheduledJob.executed.is_(False),
                ScheduledJob.cancelled.is_(False),
                ScheduledJob.scheduled_for <= due_before,
            )
        ) or 0

    def count_executed_since(self, since: datetime) -> int:
        return self.session.scalar(
            select(func.count(ScheduledJob.id)).where(ScheduledJob.executed_at >= since)
        ) or 0
