"""
Inbound payload models for the booking source and reply webhooks.
"""
import logging
from datetime import datetime
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


def resolve_timezone(value: str | None) -> str:
    """Return an IANA zone name that zoneinfo can load, or UTC"""
    name = (value or "").strip()
    if not name:
        return "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", value)
        return "UTC"
    return name


# ------------------------------------------------------------------ Calendly

class CalendlyInvitee(BaseModel):
    uuid: str
    email: str
    name: str
    timezone: str = "UTC"
    text_reminder_number: str | None = None

    @field_validator("timezone", mode="before")
    @classmethod
    def _known_timezone(cls, value: str | None) -> str:
        return resolve_timezone(value)


class CalendlyLocation(BaseModel):
    join_url: str | None = None


class CalendlyScheduledEvent(BaseModel):
    uuid: str
    start_time: datetime
    end_time: datetime | None = None
    location: CalendlyLocation | None = None

    @field_validator("start_time")
    @classmethod
    def _require_offset(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("start_time must include a UTC offset")
        return value


class CalendlyQuestion(BaseModel):
    question: str
    answer: str


class CalendlyPayload(BaseModel):
    invitee: CalendlyInvitee
    scheduled_event: CalendlyScheduledEvent
    questions_and_answers: list[CalendlyQuestion] = Field(default_factory=list)


class CalendlyWebhook(BaseModel):
    """Calendly webhook envelope"""
    event: str
    payload: CalendlyPayload


class BookingEvent(BaseModel):
    """What the engine needs from any booking source"""
    external_id: str
    invitee_id: str = ""
    email: str
    name: str
    phone: str | None = None
    scheduled_at: datetime
    timezone: str = "UTC"
    join_url: str = ""

    @field_validator("timezone", mode="before")
    @classmethod
    def _known_timezone(cls, value: str | None) -> str:
        return resolve_timezone(value)

    @classmethod
    def from_calendly(cls, payload: CalendlyPayload) -> "BookingEvent":
        """Build from a Calendly payload; phone comes from the SMS reminder field or a phone question"""
        phone = payload.invitee.text_reminder_number
        if not phone:
            for qa in payload.questions_and_answers:
                if "phone" in qa.question.lower() and qa.answer.strip():
                    phone = qa.answer
                    break

        location = payload.scheduled_event.location
        return cls(
            external_id=payload.scheduled_event.uuid,
            invitee_id=payload.invitee.uuid,
            email=payload.invitee.email,
            name=payload.invitee.name,
            phone=phone,
            scheduled_at=payload.scheduled_event.start_time,
            timezone=payload.invitee.timezone or "UTC",
            join_url=(location.join_url if location else None) or "",
        )


# ------------------------------------------------------------- Email replies

class ResendInboundData(BaseModel):
    # "from" is a Python keyword
    from_: str = Field(alias="from")
    subject: str | None = None
    text: str | None = None
    html: str | None = None


class ResendInbound(BaseModel):
    """Resend inbound email webhook"""
    type: Literal["email.received"]
    data: ResendInboundData


class PostmarkFromFull(BaseModel):
    Email: str


class PostmarkInbound(BaseModel):
    """Postmark inbound email webhook"""
    From: str
    FromFull: PostmarkFromFull | None = None
    Subject: str | None = None
    TextBody: str | None = None
    HtmlBody: str | None = None
