"""
Wiring between settings, the database and the services.

Everything is built per call from explicit arguments; FastAPI routes get
their collaborators through ``Depends`` so tests can override them.
"""
from datetime import timedelta
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from demo_followup.clock import Clock, utc_now
from demo_followup.config import settings
from demo_followup.database import SessionLocal, get_db
from demo_followup.services.demo_service import DemoService
from demo_followup.services.executor import Executor
from demo_followup.services.followup_scheduler import FollowupScheduler
from demo_followup.services.messaging import build_transports
from demo_followup.services.reply_handler import ReplyHandler
from demo_followup.services.templates import TemplateRenderer
from demo_followup.services.timeline import DEFAULT_SEQUENCES, load_sequences


def get_clock() -> Clock:
    return utc_now


@lru_cache
def get_sequences():
    """Sequence table, from SEQUENCES_FILE when set"""
    if settings.sequences_file:
        return load_sequences(settings.sequences_file)
    return DEFAULT_SEQUENCES


def get_renderer() -> TemplateRenderer:
    return TemplateRenderer(
        product_name=settings.product_name,
        sender_name=settings.sender_name,
        reschedule_url=settings.reschedule_url,
    )


def get_transports():
    return build_transports(settings)


def build_executor(session_factory=SessionLocal, clock: Clock = utc_now) -> Executor:
    return Executor(
        session_factory=session_factory,
        transports=get_transports(),
        renderer=get_renderer(),
        clock=clock,
        batch_size=settings.sweep_batch_size,
        claim_lease=timedelta(seconds=settings.claim_lease_seconds),
        max_retries=settings.max_retries,
    )


def get_executor() -> Executor:
    return build_executor()


def get_demo_service(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> DemoService:
    return DemoService(db, clock)


def get_followup_scheduler(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)) -> FollowupScheduler:
    return FollowupScheduler(db, clock, get_sequences())


def get_reply_handler(
    db: Session = Depends(get_db),
    demos: DemoService = Depends(get_demo_service),
    scheduler: FollowupScheduler = Depends(get_followup_scheduler),
) -> ReplyHandler:
    return ReplyHandler(db, demos, scheduler)


def no_show_policy() -> tuple[timedelta, timedelta | None]:
    """(grace, mark_after) from settings; mark_after is None when marking is off"""
    grace = timedelta(minutes=settings.no_show_grace_minutes)
    if settings.no_show_mark_after_minutes > 0:
        return grace, timedelta(minutes=settings.no_show_mark_after_minutes)
    return grace, None


def run_no_show_check(session_factory=SessionLocal, clock: Clock = utc_now):
    """One pass of the no-show check with the configured policy"""
    grace, mark_after = no_show_policy()
    db = session_factory()
    try:
        return DemoService(db, clock).check_no_shows(grace, mark_after)
    finally:
        db.close()
