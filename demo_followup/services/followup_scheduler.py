"""
Follow-up Scheduler
Writes a demo's timeline into the job table and cancels pending jobs.
"""
import logging
from typing import Iterable, Mapping, Sequence

from sqlalchemy.orm import Session

from demo_followup.clock import Clock, utc_now
from demo_followup.models import Demo
from demo_followup.models.enums import OPEN_STATUSES, DemoType, MessageType
from demo_followup.services.job_store import JobStore
from demo_followup.services.timeline import DEFAULT_SEQUENCES, SequenceStep, TimelineEntry, generate_timeline

logger = logging.getLogger(__name__)


class FollowupScheduler:
    """Turns timelines into job rows"""

    def __init__(
        self,
        session: Session,
        clock: Clock = utc_now,
        sequences: Mapping[DemoType, Sequence[SequenceStep]] = DEFAULT_SEQUENCES,
    ):
        self.jobs = JobStore(session)
        self.clock = clock
        self.sequences = sequences

    def schedule_timeline(self, demo: Demo) -> list[TimelineEntry]:
        """
        Schedule every remaining step of the demo's sequence.

        Safe to call again for the same demo: each kind is upserted, so a
        re-sync moves target times instead of adding rows.
        """
        timeline = generate_timeline(demo, self.clock(), self.sequences)

        for entry in timeline:
            logger.info(
                "Scheduling %s for demo %s at %s",
                entry.message_type.value, demo.id, entry.send_at.isoformat(),
            )
            self.jobs.upsert_job(demo.id, entry.message_type, entry.send_at)

        return timeline

    def schedule_missing(self, demo: Demo) -> list[TimelineEntry]:
        """
        Schedule only the steps that have no job row yet.

        Used when a booking event is redelivered: a timeline left half
        written by an earlier failed delivery gets completed, while rows
        that already exist keep their state.
        """
        if demo.status not in OPEN_STATUSES:
            return []

        existing = {job.message_type for job in self.jobs.for_demo(demo.id)}
        missing = [
            entry for entry in generate_timeline(demo, self.clock(), self.sequences)
            if entry.message_type not in existing
        ]
        for entry in missing:
            logger.info(
                "Scheduling missing %s for demo %s at %s",
                entry.message_type.value, demo.id, entry.send_at.isoformat(),
            )
            self.jobs.upsert_job(demo.id, entry.message_type, entry.send_at)

        return missing

    def cancel_all(self, demo_id: int) -> int:
        cancelled = self.jobs.cancel(demo_id)
        logger.info("Cancelled %d pending jobs for demo %s", cancelled, demo_id)
        return cancelled

    def cancel_kinds(self, demo_id: int, message_types: Iterable[MessageType]) -> int:
        kinds = list(message_types)
        cancelled = self.jobs.cancel(demo_id, kinds)
        logger.info(
            "Cancelled %d pending jobs (%s) for demo %s",
            cancelled, ", ".join(kind.value for kind in kinds), demo_id,
        )
        return cancelled
