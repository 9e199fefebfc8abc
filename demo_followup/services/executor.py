"""
Executor
One sweep over due jobs: claim, re-check, send, resolve.

A sweep is a bounded, stateless batch. Several sweeps may run at once (cron on
two hosts, a manual /cron call during a scheduled one); the conditional UPDATE
in ``JobStore.claim`` is the only coordination between them.
"""
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Callable, Mapping

from sqlalchemy.orm import Session

from demo_followup.clock import Clock, utc_now
from demo_followup.exceptions import AlreadyProcessedError
from demo_followup.models import Demo
from demo_followup.models.enums import BLOCKING_STATUSES, JobOutcome, MessageChannel
from demo_followup.services.job_store import JobStore
from demo_followup.services.messaging import MessageTransport, idempotency_key
from demo_followup.services.templates import TemplateRenderer

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 25
DEFAULT_CLAIM_LEASE = timedelta(minutes=5)
DEFAULT_MAX_RETRIES = 3


@dataclass
class JobResult:
    job_id: int
    status: JobOutcome
    message_id: int | None = None
    error: str | None = None


@dataclass
class SweepResult:
    run_id: str
    released_claims: int = 0
    due_jobs: int = 0
    results: list[JobResult] = field(default_factory=list)

    def count(self, status: JobOutcome) -> int:
        return sum(1 for result in self.results if result.status is status)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["processed"] = len(self.results)
        for result in data["results"]:
            result["status"] = result["status"].value
        return data


class Executor:
    """Runs sweeps against the job table"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        transports: Mapping[MessageChannel, MessageTransport],
        renderer: TemplateRenderer,
        clock: Clock = utc_now,
        batch_size: int = DEFAULT_BATCH_SIZE,
        claim_lease: timedelta = DEFAULT_CLAIM_LEASE,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self.session_factory = session_factory
        self.transports = transports
        self.renderer = renderer
        self.clock = clock
        self.batch_size = batch_size
        self.claim_lease = claim_lease
        self.max_retries = max_retries

    def run_sweep(self) -> SweepResult:
        """
        Process up to ``batch_size`` due jobs.

        A failing job is recorded in the result and the sweep moves on.
        """
        sweep = SweepResult(run_id=uuid.uuid4().hex[:8])
        now = self.clock()
        logger.info("[sweep:%s] Running at %s", sweep.run_id, now.isoformat())

        db = self.session_factory()
        try:
            store = JobStore(db)

            sweep.released_claims = store.release_stale_claims(now - self.claim_lease)
            if sweep.released_claims:
                logger.warning("[sweep:%s] Released %d stale claims", sweep.run_id, sweep.released_claims)

            due_ids = [job.id for job in store.find_due(now, self.batch_size)]
            sweep.due_jobs = len(due_ids)
            if not due_ids:
                logger.info("[sweep:%s] No due jobs", sweep.run_id)
                return sweep

            for job_id in due_ids:
                try:
                    result = self.process_job(store, job_id, sweep.run_id)
                except Exception as e:
                    db.rollback()
                    logger.exception("[sweep:%s] Job %s failed outside its retry bookkeeping", sweep.run_id, job_id)
                    result = JobResult(job_id=job_id, status=JobOutcome.ERROR, error=str(e))
                sweep.results.append(result)
        finally:
            db.close()

        logger.info(
            "[sweep:%s] Done: %d due, %d sent",
            sweep.run_id, sweep.due_jobs, sweep.count(JobOutcome.SENT),
        )
        return sweep

    def process_job(self, store: JobStore, job_id: int, run_id: str = "-") -> JobResult:
        """
        Claim one job and carry it to a resolution.

        The claim is released on every way out of this method; if even the
        failure bookkeeping cannot be written, the stale-claim release in a
        later sweep frees it.
        """
        if not store.claim(job_id, self.clock()):
            logger.info("[sweep:%s] Job %s already claimed by another process", run_id, job_id)
            return JobResult(job_id=job_id, status=JobOutcome.ALREADY_CLAIMED)

        resolved = False
        try:
            result = self._execute_claimed(store, job_id, run_id)
            resolved = True
            return result
        except Exception as e:
            store.session.rollback()
            result = self._record_failure(store, job_id, e, run_id)
            resolved = True
            return result
        finally:
            if not resolved:
                try:
                    store.release_claim(job_id)
                except Exception:
                    logger.exception("[sweep:%s] Could not release claim on job %s", run_id, job_id)

    def _execute_claimed(self, store: JobStore, job_id: int, run_id: str) -> JobResult:
        job = store.get(job_id)
        message_type = job.message_type

        if job.cancelled:
            return self._release_cancelled(store, job_id, run_id)

        demo = store.session.get(Demo, job.demo_id, populate_existing=True)

        if demo is None:
            return self._resolve(store, job_id, JobOutcome.SKIPPED_NO_DEMO, run_id)

        if demo.status in BLOCKING_STATUSES:
            return self._resolve(store, job_id, JobOutcome.SKIPPED_TERMINAL_STATE, run_id)

        if store.message_exists(demo.id, message_type):
            return self._resolve(store, job_id, JobOutcome.ALREADY_SENT, run_id)

        content = self.renderer.render(message_type, demo)
        if content is None:
            return self._resolve(store, job_id, JobOutcome.SKIPPED_NO_TEMPLATE, run_id)

        recipient = demo.phone if content.channel is MessageChannel.SMS else demo.email
        if not recipient:
            return self._resolve(store, job_id, JobOutcome.SKIPPED_NO_RECIPIENT, run_id)

        transport = self.transports.get(content.channel)
        if transport is None:
            return self._resolve(store, job_id, JobOutcome.SKIPPED_CHANNEL_DISABLED, run_id)

        key = idempotency_key(demo.id, message_type)
        status = JobOutcome.SENT
        try:
            external_id = transport.send(recipient, content, key)
        except AlreadyProcessedError:
            logger.info("[sweep:%s] Provider already processed %s", run_id, key)
            external_id = None
            status = JobOutcome.ALREADY_PROCESSED

        message = store.record_message(
            demo_id=demo.id,
            message_type=message_type,
            channel=content.channel,
            recipient=recipient,
            subject=content.subject,
            body=content.body,
            external_id=external_id,
        )
        if not store.mark_executed(job_id, self.clock(), status):
            # Narrow race: cancelled while the provider call was in flight
            logger.warning("[sweep:%s] Job %s was cancelled after %s went out", run_id, job_id, message_type.value)

        logger.info("[sweep:%s] Sent %s to %s", run_id, message_type.value, recipient)
        return JobResult(job_id=job_id, status=status, message_id=message.id if message else None)

    def _resolve(self, store: JobStore, job_id: int, outcome: JobOutcome, run_id: str) -> JobResult:
        """Mark a job executed without sending"""
        if not store.mark_executed(job_id, self.clock(), outcome):
            logger.info("[sweep:%s] Job %s cancelled while claimed", run_id, job_id)
            return JobResult(job_id=job_id, status=JobOutcome.SKIPPED_CANCELLED)
        logger.info("[sweep:%s] Job %s resolved without sending: %s", run_id, job_id, outcome.value)
        return JobResult(job_id=job_id, status=outcome)

    def _release_cancelled(self, store: JobStore, job_id: int, run_id: str) -> JobResult:
        """Cancelled after we claimed it; it stays cancelled"""
        store.release_claim(job_id)
        logger.info("[sweep:%s] Job %s cancelled while claimed", run_id, job_id)
        return JobResult(job_id=job_id, status=JobOutcome.SKIPPED_CANCELLED)

    def _record_failure(self, store: JobStore, job_id: int, error: Exception, run_id: str) -> JobResult:
        job = store.get(job_id)
        attempts = job.retry_count + 1
        message = str(error) or type(error).__name__

        if attempts >= self.max_retries:
            store.mark_failed(job_id, attempts, message)
            logger.error(
                "[sweep:%s] Job %s permanently failed after %d attempts: %s",
                run_id, job_id, attempts, message,
            )
            return JobResult(job_id=job_id, status=JobOutcome.PERMANENTLY_FAILED, error=message)

        store.release_for_retry(job_id, attempts, message)
        logger.warning(
            "[sweep:%s] Job %s failed (attempt %d of %d), will retry: %s",
            run_id, job_id, attempts, self.max_retries, message,
        )
        return JobResult(job_id=job_id, status=JobOutcome.RETRY_SCHEDULED, error=message)
