import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Form, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.orm import Session

from demo_followup.clock import Clock
from demo_followup.config import settings
from demo_followup.database import get_db
from demo_followup.dependencies import (
    get_clock,
    get_demo_service,
    get_executor,
    get_followup_scheduler,
    get_reply_handler,
    get_transports,
    no_show_policy,
)
from demo_followup.exceptions import InvalidTransitionError, WebhookSignatureError
from demo_followup.models import Demo
from demo_followup.models.enums import MessageChannel
from demo_followup.schemas import BookingEvent, CalendlyWebhook, PostmarkInbound, ResendInbound
from demo_followup.services.demo_service import DemoService
from demo_followup.services.executor import Executor
from demo_followup.services.followup_scheduler import FollowupScheduler
from demo_followup.services.inbound import clean_email_body, extract_email, html_to_text, verify_calendly_signature
from demo_followup.services.job_store import JobStore
from demo_followup.services.messaging import describe_channels
from demo_followup.services.reply_handler import ReplyHandler

logger = logging.getLogger(__name__)

router = APIRouter()

# Pending jobs due longer ago than this mean the sweep is not running
OVERDUE_THRESHOLD = timedelta(minutes=15)
BACKLOG_WARN_SIZE = 50

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def require_cron_secret(authorization: str | None = Header(None)):
    """Bearer token check for the cron endpoints, when CRON_SECRET is set"""
    if settings.cron_secret and authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _demo_summary(demo: Demo) -> dict:
    return {
        "id": demo.id,
        "calendly_event_id": demo.calendly_event_id,
        "email": demo.email,
        "phone": demo.phone,
        "name": demo.name,
        "scheduled_at": demo.scheduled_at,
        "timezone": demo.timezone,
        "demo_type": demo.demo_type.value,
        "status": demo.status.value,
        "confirmed_at": demo.confirmed_at,
        "joined_at": demo.joined_at,
    }


# ------------------------------------------------------------------ webhooks

@router.post("/webhooks/calendly")
async def calendly_webhook(
    request: Request,
    demos: DemoService = Depends(get_demo_service),
    scheduler: FollowupScheduler = Depends(get_followup_scheduler),
):
    """
    Calendly booking webhook.

    - invitee.created: record the demo and schedule its sequence
    - invitee.canceled: cancel the demo and every pending job
    """
    raw = await request.body()

    if settings.calendly_webhook_secret:
        try:
            verify_calendly_signature(
                raw,
                request.headers.get("Calendly-Webhook-Signature"),
                settings.calendly_webhook_secret,
            )
        except WebhookSignatureError as e:
            logger.warning("Rejected Calendly webhook: %s", e)
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        webhook = CalendlyWebhook.model_validate_json(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid Calendly payload: {e.error_count()} errors")

    if webhook.event == "invitee.created":
        demo, created = demos.upsert_from_event(BookingEvent.from_calendly(webhook.payload))
        if created:
            scheduled = scheduler.schedule_timeline(demo)
        else:
            scheduled = scheduler.schedule_missing(demo)
        return {
            "status": "created" if created else "duplicate",
            "demo_id": demo.id,
            "demo_type": demo.demo_type.value,
            "scheduled": [entry.message_type.value for entry in scheduled],
        }

    if webhook.event == "invitee.canceled":
        demo = demos.cancel_from_source(webhook.payload.scheduled_event.uuid)
        if demo is None:
            return {"status": "unknown_booking"}
        cancelled = scheduler.cancel_all(demo.id)
        return {"status": demo.status.value, "demo_id": demo.id, "cancelled_jobs": cancelled}

    logger.info("Ignoring Calendly event %s", webhook.event)
    return {"status": "ignored", "event": webhook.event}


@router.post("/webhooks/reply/email")
def email_reply_webhook(payload: dict, handler: ReplyHandler = Depends(get_reply_handler)):
    """Inbound email reply from Resend or Postmark"""
    if payload.get("type") == "email.received":
        try:
            inbound = ResendInbound.model_validate(payload)
        except ValidationError:
            raise HTTPException(status_code=400, detail="Invalid Resend inbound payload")
        from_field = inbound.data.from_
        body = inbound.data.text or html_to_text(inbound.data.html or "")
    elif "From" in payload:
        try:
            inbound = PostmarkInbound.model_validate(payload)
        except ValidationError:
            raise HTTPException(status_code=400, detail="Invalid Postmark inbound payload")
        from_field = inbound.FromFull.Email if inbound.FromFull else inbound.From
        body = inbound.TextBody or html_to_text(inbound.HtmlBody or "")
    else:
        raise HTTPException(status_code=400, detail="Unrecognised inbound email payload")

    outcome = handler.process_reply(MessageChannel.EMAIL, extract_email(from_field), clean_email_body(body))
    return outcome.to_dict()


@router.post("/webhooks/reply/sms")
def sms_reply_webhook(
    From: str = Form(...),
    Body: str = Form(""),
    handler: ReplyHandler = Depends(get_reply_handler),
):
    """Inbound SMS from Twilio. Answers with empty TwiML so Twilio sends nothing back."""
    handler.process_reply(MessageChannel.SMS, From, Body)
    return Response(content=EMPTY_TWIML, media_type="application/xml")


# ---------------------------------------------------------------------- cron

@router.api_route("/cron", methods=["GET", "POST"], dependencies=[Depends(require_cron_secret)])
def run_cron(executor: Executor = Depends(get_executor)):
    """Run one sweep over due jobs"""
    return executor.run_sweep().to_dict()


@router.post("/cron/no-show", dependencies=[Depends(require_cron_secret)])
def run_no_show(demos: DemoService = Depends(get_demo_service)):
    """Run the no-show check once"""
    grace, mark_after = no_show_policy()
    report = demos.check_no_shows(grace, mark_after)
    return {"candidates": report.candidates, "marked": report.marked}


@router.get("/health")
def health_check(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Database, sweep liveness and backlog checks"""
    checks = {}
    healthy = True
    now = clock()

    try:
        db.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok"}
    except Exception as e:
        logger.exception("Health check: database unreachable")
        checks["database"] = {"status": "fail", "error": str(e)}
        return JSONResponse({"status": "fail", "checks": checks}, status_code=503)

    store = JobStore(db)

    overdue = store.count_pending_due(now - OVERDUE_THRESHOLD)
    if overdue:
        healthy = False
        checks["cron_execution"] = {"status": "fail", "overdue_jobs": overdue}
    else:
        checks["cron_execution"] = {
            "status": "ok",
            "executed_last_hour": store.count_executed_since(now - timedelta(hours=1)),
        }

    backlog = store.count_pending_due(now)
    checks["backlog"] = {"status": "warn" if backlog > BACKLOG_WARN_SIZE else "ok", "due_jobs": backlog}

    checks["channels"] = {"status": "ok", "enabled": describe_channels(get_transports())}

    return JSONResponse(
        {"status": "ok" if healthy else "fail", "checks": checks},
        status_code=200 if healthy else 503,
    )


# --------------------------------------------------------------------- demos

@router.get("/demos")
def list_demos(limit: int = 100, demos: DemoService = Depends(get_demo_service)):
    """Most recent demos first"""
    return [_demo_summary(demo) for demo in demos.list_demos(limit)]


@router.get("/demos/{demo_id}")
def get_demo(demo_id: int, db: Session = Depends(get_db), demos: DemoService = Depends(get_demo_service)):
    """One demo with its jobs and sent messages"""
    demo = demos.get_by_id(demo_id)
    if not demo:
        raise HTTPException(status_code=404, detail="Demo not found")

    store = JobStore(db)
    return {
        **_demo_summary(demo),
        "jobs": [
            {
                "id": job.id,
                "message_type": job.message_type.value,
                "scheduled_for": job.scheduled_for,
                "executed": job.executed,
                "outcome": job.outcome,
                "cancelled": job.cancelled,
                "retry_count": job.retry_count,
                "last_error": job.last_error,
            }
            for job in store.for_demo(demo.id)
        ],
        "messages": [
            {
                "message_type": message.message_type.value,
                "channel": message.channel.value,
                "recipient": message.recipient,
                "external_id": message.external_id,
                "sent_at": message.sent_at,
            }
            for message in store.messages_for_demo(demo.id)
        ],
    }


@router.post("/demos/{demo_id}/joined")
def mark_demo_joined(demo_id: int, demos: DemoService = Depends(get_demo_service)):
    """Record that the invitee joined the call"""
    demo = demos.get_by_id(demo_id)
    if not demo:
        raise HTTPException(status_code=404, detail="Demo not found")

    try:
        demos.mark_joined(demo)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return _demo_summary(demo)


@router.get("/replies/unprocessed")
def unprocessed_replies(limit: int = 100, handler: ReplyHandler = Depends(get_reply_handler)):
    """Replies that still need a human"""
    return [
        {
            "id": reply.id,
            "demo_id": reply.demo_id,
            "channel": reply.channel.value,
            "from_address": reply.from_address,
            "body": reply.body,
            "intent": reply.intent,
            "received_at": reply.received_at,
        }
        for reply in handler.unprocessed(limit)
    ]
