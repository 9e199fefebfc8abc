"""
Tests for the sweep: claim, re-check, send, retry
"""
from datetime import timedelta

import pytest

from demo_followup.exceptions import AlreadyProcessedError, TransportError
from demo_followup.models.enums import DemoStatus, JobOutcome, MessageChannel, MessageType
from demo_followup.services.demo_service import DemoService
from demo_followup.services.executor import Executor
from demo_followup.services.followup_scheduler import FollowupScheduler
from demo_followup.services.job_store import JobStore
from demo_followup.services.reply_handler import ReplyHandler

pytestmark = pytest.mark.integration


@pytest.fixture
def due_job(job_store, now):
    """Schedule one job due a minute ago and return it"""

    def _due(demo, kind=MessageType.CONFIRM_INITIAL, due_at=None):
        job_store.upsert_job(demo.id, kind, due_at or now - timedelta(minutes=1))
        return job_store.find(demo.id, kind)

    return _due


def _statuses(sweep):
    return [result.status for result in sweep.results]


class TestSweep:
    """Happy path"""

    def test_sends_due_email(self, executor, email_transport, job_store, make_demo, due_job):
        demo = make_demo()
        job = due_job(demo)

        sweep = executor.run_sweep()

        assert _statuses(sweep) == [JobOutcome.SENT]
        recipient, content, key = email_transport.sent[0]
        assert recipient == demo.email
        assert key == f"{demo.id}-CONFIRM_INITIAL"
        assert content.subject

        job = job_store.get(job.id)
        assert job.executed is True
        assert job.processing is False
        assert job.outcome == JobOutcome.SENT.value

        [message] = job_store.messages_for_demo(demo.id)
        assert message.external_id == "email-1"
        assert message.channel is MessageChannel.EMAIL

    def test_sms_kind_goes_to_phone(self, executor, sms_transport, email_transport, make_demo, due_job):
        demo = make_demo()
        due_job(demo, MessageType.SMS_CONFIRM)

        executor.run_sweep()

        assert email_transport.sent == []
        assert sms_transport.sent[0][0] == demo.phone

    def test_nothing_due(self, executor, make_demo, due_job, now):
        due_job(make_demo(), due_at=now + timedelta(minutes=5))

        sweep = executor.run_sweep()

        assert sweep.due_jobs == 0
        assert sweep.results == []

    def test_batch_limit_takes_oldest_first(self, executor, make_demo, due_job, now):
        demo = make_demo()
        oldest = due_job(demo, MessageType.CONFIRM_INITIAL, now - timedelta(minutes=30))
        middle = due_job(demo, MessageType.VALUE_BOMB, now - timedelta(minutes=20))
        due_job(demo, MessageType.DAY_OF_REMINDER, now - timedelta(minutes=10))
        executor.batch_size = 2

        sweep = executor.run_sweep()

        assert sweep.due_jobs == 2
        assert [result.job_id for result in sweep.results] == [oldest.id, middle.id]

    def test_sweep_result_serializes(self, executor, make_demo, due_job):
        due_job(make_demo())

        data = executor.run_sweep().to_dict()

        assert data["processed"] == 1
        assert data["results"][0]["status"] == "sent"


class TestSendGuards:
    """Jobs resolved without sending"""

    def test_already_claimed(self, executor, session_factory, job_store, make_demo, due_job, now, email_transport):
        job = due_job(make_demo())
        job_store.claim(job.id, now)

        store = JobStore(session_factory())
        try:
            result = executor.process_job(store, job.id)
        finally:
            store.session.close()

        assert result.status is JobOutcome.ALREADY_CLAIMED
        assert email_transport.sent == []

    def test_terminal_state_blocks_send(self, executor, email_transport, job_store, make_demo, due_job):
        job = due_job(make_demo(status=DemoStatus.CANCELLED))

        sweep = executor.run_sweep()

        assert _statuses(sweep) == [JobOutcome.SKIPPED_TERMINAL_STATE]
        assert email_transport.sent == []
        assert job_store.get(job.id).executed is True

    def test_confirmed_demo_still_gets_messages(self, executor, email_transport, make_demo, due_job):
        due_job(make_demo(status=DemoStatus.CONFIRMED))

        assert _statuses(executor.run_sweep()) == [JobOutcome.SENT]
        assert len(email_transport.sent) == 1

    def test_missing_demo(self, executor, job_store, now):
        job_store.upsert_job(9999, MessageType.CONFIRM_INITIAL, now - timedelta(minutes=1))

        assert _statuses(executor.run_sweep()) == [JobOutcome.SKIPPED_NO_DEMO]

    def test_duplicate_send_guard(self, executor, email_transport, job_store, make_demo, due_job):
        demo = make_demo()
        job_store.record_message(demo.id, MessageType.CONFIRM_INITIAL, MessageChannel.EMAIL, demo.email, "earlier")
        due_job(demo)

        assert _statuses(executor.run_sweep()) == [JobOutcome.ALREADY_SENT]
        assert email_transport.sent == []

    def test_join_link_without_url(self, executor, email_transport, make_demo, due_job):
        due_job(make_demo(join_url=""), MessageType.JOIN_LINK)

        assert _statuses(executor.run_sweep()) == [JobOutcome.SKIPPED_NO_TEMPLATE]
        assert email_transport.sent == []

    def test_sms_without_phone(self, executor, sms_transport, make_demo, due_job):
        due_job(make_demo(phone=None), MessageType.SMS_REMINDER)

        assert _statuses(executor.run_sweep()) == [JobOutcome.SKIPPED_NO_RECIPIENT]
        assert sms_transport.sent == []

    def test_channel_without_transport(self, session_factory, email_transport, renderer, clock, make_demo, due_job):
        executor = Executor(session_factory, {MessageChannel.EMAIL: email_transport}, renderer, clock)
        due_job(make_demo(), MessageType.SMS_URGENT)

        assert _statuses(executor.run_sweep()) == [JobOutcome.SKIPPED_CHANNEL_DISABLED]

    def test_cancelled_jobs_are_never_picked_up(self, executor, email_transport, job_store, make_demo, due_job, now):
        demo = make_demo()
        job = due_job(demo)
        # Claimed by a sweep that then dies, cancelled meanwhile
        job_store.claim(job.id, now - timedelta(minutes=30))
        job_store.cancel(demo.id)

        sweep = executor.run_sweep()

        assert sweep.released_claims == 1
        assert sweep.due_jobs == 0
        assert email_transport.sent == []


class TestFailures:
    """Retries and failure isolation"""

    def test_retry_ceiling(self, executor, email_transport, job_store, make_demo, due_job):
        job = due_job(make_demo())
        email_transport.fail(TransportError("provider down"))

        outcomes = [_statuses(executor.run_sweep()) for _ in range(4)]

        assert outcomes == [
            [JobOutcome.RETRY_SCHEDULED],
            [JobOutcome.RETRY_SCHEDULED],
            [JobOutcome.PERMANENTLY_FAILED],
            [],
        ]
        job = job_store.get(job.id)
        assert job.retry_count == 3
        assert job.cancelled is True
        assert job.executed is False
        assert job.processing is False
        assert job.last_error == "provider down"
        assert job.outcome == JobOutcome.PERMANENTLY_FAILED.value

    def test_recovers_after_transient_failure(self, executor, email_transport, job_store, make_demo, due_job):
        job = due_job(make_demo())
        email_transport.fail(TransportError("timeout"), times=1)

        assert _statuses(executor.run_sweep()) == [JobOutcome.RETRY_SCHEDULED]
        assert _statuses(executor.run_sweep()) == [JobOutcome.SENT]
        assert job_store.get(job.id).retry_count == 1

    def test_failing_job_does_not_stop_the_batch(self, executor, email_transport, sms_transport, make_demo, due_job, now):
        demo = make_demo()
        due_job(demo, MessageType.CONFIRM_INITIAL, now - timedelta(minutes=2))
        due_job(demo, MessageType.SMS_CONFIRM, now - timedelta(minutes=1))
        email_transport.fail(TransportError("provider down"))

        sweep = executor.run_sweep()

        assert _statuses(sweep) == [JobOutcome.RETRY_SCHEDULED, JobOutcome.SENT]
        assert len(sms_transport.sent) == 1

    def test_unexpected_error_is_retried(self, executor, email_transport, job_store, make_demo, due_job):
        job = due_job(make_demo())
        email_transport.fail(RuntimeError("boom"), times=1)

        assert _statuses(executor.run_sweep()) == [JobOutcome.RETRY_SCHEDULED]
        assert job_store.get(job.id).last_error == "boom"

    def test_provider_already_processed(self, executor, email_transport, job_store, make_demo, due_job):
        demo = make_demo()
        job = due_job(demo)
        email_transport.fail(AlreadyProcessedError("seen it"), times=1)

        assert _statuses(executor.run_sweep()) == [JobOutcome.ALREADY_PROCESSED]
        assert job_store.get(job.id).executed is True
        [message] = job_store.messages_for_demo(demo.id)
        assert message.external_id is None

    def test_stale_claim_is_recovered(self, executor, email_transport, job_store, make_demo, due_job, now):
        job = due_job(make_demo())
        job_store.claim(job.id, now - timedelta(minutes=10))

        sweep = executor.run_sweep()

        assert sweep.released_claims == 1
        assert _statuses(sweep) == [JobOutcome.SENT]
        assert len(email_transport.sent) == 1


class _HookedStore(JobStore):
    """JobStore that runs a callback at one point of the executor's path"""

    def __init__(self, session, after_claim=None, before_message_check=None):
        super().__init__(session)
        self.after_claim = after_claim
        self.before_message_check = before_message_check

    def claim(self, job_id, now):
        won = super().claim(job_id, now)
        if won and self.after_claim:
            self.after_claim()
        return won

    def message_exists(self, demo_id, message_type):
        if self.before_message_check:
            self.before_message_check()
        return super().message_exists(demo_id, message_type)


@pytest.fixture
def hooked_store(session_factory):
    stores = []

    def _make(**hooks):
        store = _HookedStore(session_factory(), **hooks)
        stores.append(store)
        return store

    yield _make
    for store in stores:
        store.session.close()


class TestCancelledWhileClaimed:
    """Cancellation that lands between the claim and the resolution"""

    def test_reschedule_reply_after_claim(
        self, executor, email_transport, job_store, test_db_session, hooked_store, make_demo, due_job, clock,
    ):
        demo = make_demo()
        job = due_job(demo)
        handler = ReplyHandler(
            test_db_session, DemoService(test_db_session, clock), FollowupScheduler(test_db_session, clock),
        )
        store = hooked_store(
            after_claim=lambda: handler.process_reply(
                MessageChannel.EMAIL, demo.email, "can't make it, need another time",
            ),
        )

        result = executor.process_job(store, job.id)

        assert result.status is JobOutcome.SKIPPED_CANCELLED
        assert email_transport.sent == []
        job = job_store.get(job.id)
        assert job.cancelled is True
        assert job.executed is False
        assert job.outcome is None
        assert job.processing is False

    def test_cancel_before_resolution_keeps_job_cancelled(
        self, executor, job_store, hooked_store, make_demo, due_job,
    ):
        demo = make_demo(join_url="")
        job = due_job(demo, MessageType.JOIN_LINK)
        store = hooked_store(before_message_check=lambda: job_store.cancel(demo.id))

        result = executor.process_job(store, job.id)

        assert result.status is JobOutcome.SKIPPED_CANCELLED
        job = job_store.get(job.id)
        assert job.cancelled is True
        assert job.executed is False
        assert job.processing is False

    def test_second_sweep_and_cancel_during_claim(
        self, executor, email_transport, sms_transport, job_store, test_db_session, hooked_store,
        make_demo, due_job, clock,
    ):
        demo = make_demo()
        job = due_job(demo)
        scheduler = FollowupScheduler(test_db_session, clock)
        competing = []

        def race():
            competing.append(executor.process_job(hooked_store(), job.id))
            scheduler.cancel_all(demo.id)

        result = executor.process_job(hooked_store(after_claim=race), job.id)

        assert [r.status for r in competing] == [JobOutcome.ALREADY_CLAIMED]
        assert result.status is JobOutcome.SKIPPED_CANCELLED
        assert job_store.messages_for_demo(demo.id) == []
        assert email_transport.sent == []
        assert sms_transport.sent == []

        later = executor.run_sweep()
        assert later.due_jobs == 0
        assert later.results == []
