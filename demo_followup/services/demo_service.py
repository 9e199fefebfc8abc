"""
Demo Service
Booking intake, lookups and the demo status state machine.
"""
import logging
import re
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from demo_followup.clock import Clock, utc_now
from demo_followup.exceptions import InvalidTransitionError
from demo_followup.models import Demo
from demo_followup.models.enums import OPEN_STATUSES, DemoStatus
from demo_followup.schemas import BookingEvent
from demo_followup.services.job_store import dialect_insert
from demo_followup.services.timeline import classify_demo_type

logger = logging.getLogger(__name__)

# Allowed moves; re-entering the current status is always a no-op
ALLOWED_TRANSITIONS: dict[DemoStatus, frozenset[DemoStatus]] = {
    DemoStatus.PENDING: frozenset({
        DemoStatus.CONFIRMED,
        DemoStatus.RESCHEDULED,
        DemoStatus.CANCELLED,
        DemoStatus.NO_SHOW,
        DemoStatus.COMPLETED,
    }),
    DemoStatus.CONFIRMED: frozenset({
        DemoStatus.RESCHEDULED,
        DemoStatus.CANCELLED,
        DemoStatus.NO_SHOW,
        DemoStatus.COMPLETED,
    }),
    DemoStatus.RESCHEDULED: frozenset(),
    DemoStatus.CANCELLED: frozenset(),
    DemoStatus.NO_SHOW: frozenset(),
    DemoStatus.COMPLETED: frozenset(),
}

NO_SHOW_BATCH_LIMIT = 100


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str | None) -> str | None:
    """'+1 (555) 010-2000' -> '+15550102000'; None when no digits"""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None
    return f"+{digits}"


@dataclass
class NoShowReport:
    candidates: int = 0
    marked: int = 0


class DemoService:
    """Demo records and their lifecycle"""

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    # ----------------------------------------------------------------- intake

    def upsert_from_event(self, event: BookingEvent) -> tuple[Demo, bool]:
        """
        Create the demo for a booking event, or return the existing one.

        Returns:
            (demo, created). A redelivered event gives (existing demo, False).
        """
        now = self.clock()
        stmt = dialect_insert(self.db, Demo).values(
            calendly_event_id=event.external_id,
            calendly_invitee_id=event.invitee_id,
            email=normalize_email(event.email),
            phone=normalize_phone(event.phone),
            name=event.name,
            scheduled_at=event.scheduled_at,
            timezone=event.timezone,
            demo_type=classify_demo_type(event.scheduled_at, now),
            join_url=event.join_url,
            status=DemoStatus.PENDING,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_nothing(index_elements=[Demo.calendly_event_id])

        result = self.db.execute(stmt)
        self.db.commit()
        created = result.rowcount == 1

        demo = self.get_by_event_id(event.external_id)
        if created:
            logger.info("Demo %s created for %s with type %s", demo.id, demo.email, demo.demo_type.value)
        else:
            logger.info("Booking event %s already recorded as demo %s", event.external_id, demo.id)
        return demo, created

    # ---------------------------------------------------------------- lookups

    def get_by_id(self, demo_id: int) -> Demo | None:
        return self.db.get(Demo, demo_id)

    def get_by_event_id(self, event_id: str) -> Demo | None:
        return self.db.scalars(select(Demo).where(Demo.calendly_event_id == event_id)).first()

    def find_open_by_email(self, email: str) -> Demo | None:
        """Earliest PENDING/CONFIRMED demo for an email address"""
        return self.db.scalars(
            select(Demo)
            .where(Demo.email == normalize_email(email), Demo.status.in_(OPEN_STATUSES))
            .order_by(Demo.scheduled_at)
            .limit(1)
        ).first()

    def find_open_by_phone(self, phone: str) -> Demo | None:
        """Earliest PENDING/CONFIRMED demo for a phone number"""
        normalized = normalize_phone(phone)
        if normalized is None:
            return None
        return self.db.scalars(
            select(Demo)
            .where(Demo.phone == normalized, Demo.status.in_(OPEN_STATUSES))
            .order_by(Demo.scheduled_at)
            .limit(1)
        ).first()

    def list_demos(self, limit: int = 100) -> list[Demo]:
        return list(self.db.scalars(select(Demo).order_by(Demo.scheduled_at.desc()).limit(limit)))

    # ---------------------------------------------------------- state machine

    def transition(self, demo: Demo, status: DemoStatus) -> bool:
        """
        Move a demo to ``status``.

        Returns False when the demo is already in that status (nothing written).
        confirmed_at is only ever set once; joined_at is set on COMPLETED.

        Raises:
            InvalidTransitionError: if the state machine does not allow the move
        """
        current = demo.status
        if current is status:
            return False
        if status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current, status)

        now = self.clock()
        demo.status = status
        if status is DemoStatus.CONFIRMED and demo.confirmed_at is None:
            demo.confirmed_at = now
        if status is DemoStatus.COMPLETED and demo.joined_at is None:
            demo.joined_at = now
        demo.updated_at = now

        self.db.commit()
        logger.info("Demo %s moved %s -> %s", demo.id, current.value, status.value)
        return True

    def mark_joined(self, demo: Demo) -> bool:
        return self.transition(demo, DemoStatus.COMPLETED)

    def cancel_from_source(self, event_id: str) -> Demo | None:
        """
        Apply a booking-source cancellation.

        Demos that already reached a terminal status are left alone.
        """
        demo = self.get_by_event_id(event_id)
        if demo is None:
            logger.info("Cancellation for unknown booking event %s", event_id)
            return None
        if demo.status in OPEN_STATUSES:
            self.transition(demo, DemoStatus.CANCELLED)
        return demo

    # ---------------------------------------------------------------- no-show

    def find_no_show_candidates(self, grace: timedelta) -> list[Demo]:
        """Open demos whose start is more than ``grace`` in the past"""
        cutoff = self.clock() - grace
        return list(self.db.scalars(
            select(Demo)
            .where(Demo.scheduled_at < cutoff, Demo.status.in_(OPEN_STATUSES))
            .order_by(Demo.scheduled_at)
            .limit(NO_SHOW_BATCH_LIMIT)
        ))

    def check_no_shows(self, grace: timedelta, mark_after: timedelta | None = None) -> NoShowReport:
        """
        Look for demos nobody joined.

        By default candidates are only reported; their post-demo jobs
        (SMS_URGENT, POST_NO_SHOW) do the follow-up. With ``mark_after`` set,
        candidates that started longer ago than that are moved to NO_SHOW.
        """
        candidates = self.find_no_show_candidates(grace)
        report = NoShowReport(candidates=len(candidates))
        if mark_after is None:
            logger.info("No-show check: %d candidates, automatic marking disabled", report.candidates)
            return report

        cutoff = self.clock() - mark_after
        for demo in candidates:
            if demo.scheduled_at <= cutoff and self.transition(demo, DemoStatus.NO_SHOW):
                report.marked += 1

        logger.info("No-show check: %d candidates, %d marked NO_SHOW", report.candidates, report.marked)
        return report
