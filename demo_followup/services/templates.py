"""
Message content for each step of a follow-up sequence.
"""
import html
from dataclasses import dataclass
from datetime import datetime
from typing import assert_never
from zoneinfo import ZoneInfo

from demo_followup.models.enums import MessageChannel, MessageType


@dataclass(frozen=True)
class RenderedMessage:
    channel: MessageChannel
    body: str
    subject: str | None = None
    html: str | None = None


def local_start(demo) -> datetime:
    """Demo start in the invitee's own timezone"""
    return demo.scheduled_at.astimezone(ZoneInfo(demo.timezone))


def format_time(moment: datetime) -> str:
    """3:05 PM"""
    return f"{moment.strftime('%I').lstrip('0')}:{moment.strftime('%M %p')}"


def format_date(moment: datetime) -> str:
    """Tue 3/10"""
    return f"{moment.strftime('%a')} {moment.month}/{moment.day}"


def first_name(demo) -> str:
    parts = (demo.name or "").split()
    return parts[0] if parts else "there"


def _paragraphs_to_html(text: str) -> str:
    paragraphs = [html.escape(p).replace("\n", "<br>") for p in text.split("\n\n")]
    return "".join(f"<p>{p}</p>" for p in paragraphs)


class TemplateRenderer:
    """Renders the message for a (kind, demo) pair"""

    def __init__(self, product_name: str, sender_name: str, reschedule_url: str = ""):
        self.product_name = product_name
        self.sender_name = sender_name
        self.reschedule_url = reschedule_url

    def render(self, message_type: MessageType, demo) -> RenderedMessage | None:
        """
        Render content for one message.

        Returns None when there is nothing to send for this kind (for example
        a join-link email for a demo without a join URL).
        """
        name = first_name(demo)
        start = local_start(demo)
        when = f"{format_date(start)} at {format_time(start)}"
        at = format_time(start)
        product = self.product_name

        match message_type:
            case MessageType.CONFIRM_INITIAL:
                return self._email(
                    f"Confirmed: your {product} demo on {when}",
                    f"Hi {name},\n\n"
                    f"Your {product} demo is booked for {when} ({demo.timezone}).\n\n"
                    f"Reply YES to confirm you'll be there, or reply R if you need another time."
                    f"{self._reschedule_line()}",
                )
            case MessageType.CONFIRM_REMINDER:
                return self._email(
                    f"{name}, today at {at}",
                    f"Hi {name},\n\n"
                    f"Quick check: we're still on for your {product} demo today at {at}.\n\n"
                    f"Reply YES to confirm, or R if something came up.",
                )
            case MessageType.VALUE_BOMB:
                return self._email(
                    f"Before we talk on {format_date(start)}",
                    f"Hi {name},\n\n"
                    f"Ahead of your {product} demo on {when}, think about the one workflow "
                    f"you most want to speed up. We'll start there.\n\n"
                    f"Reply YES to confirm, or R to pick another time.",
                )
            case MessageType.DAY_OF_REMINDER:
                return self._email(
                    f"{name}, your {product} demo is today at {at}",
                    f"Hi {name},\n\n"
                    f"Your {product} demo is today at {at}. The join link will follow "
                    f"10 minutes before we start.\n\n"
                    f"Reply R if you need to move it.",
                )
            case MessageType.JOIN_LINK:
                if not demo.join_url:
                    return None
                return self._email(
                    f"Join link: {product} demo starting at {at}",
                    f"Hi {name},\n\n"
                    f"We start at {at}. Join here:\n{demo.join_url}",
                )
            case MessageType.POST_NO_SHOW:
                return self._email(
                    f"Missed you today, {name}",
                    f"Hi {name},\n\n"
                    f"We didn't see you at the {product} demo. If you still want to see it, "
                    f"reply R and we'll find another time."
                    f"{self._reschedule_line()}",
                )
            case MessageType.SMS_CONFIRM:
                return self._sms(
                    f"{name}, it's {self.sender_name}. Your {product} demo is set for {when}. "
                    f"Reply YES to confirm or R to reschedule."
                )
            case MessageType.EVENING_BEFORE:
                return self._sms(
                    f"{name}, we're on tomorrow at {at} for your {product} demo. "
                    f"Reply YES to confirm or R to move it."
                )
            case MessageType.SMS_DAY_BEFORE:
                return self._sms(
                    f"{name}, your {product} demo is tomorrow at {at}. "
                    f"Reply YES to confirm or R to move it."
                )
            case MessageType.SMS_REMINDER:
                return self._sms(
                    f"{name}, we're on in 30 minutes for your {product} demo. "
                    f"If something came up, text R so we can free the slot."
                )
            case MessageType.SMS_URGENT:
                return self._sms(
                    f"{name}, we're on the call now. Reply A to reschedule or B to close this out."
                )
            case _:
                assert_never(message_type)

    def _reschedule_line(self) -> str:
        if not self.reschedule_url:
            return ""
        return f"\n\nOr pick a new time here: {self.reschedule_url}"

    def _email(self, subject: str, text: str) -> RenderedMessage:
        body = f"{text}\n\n{self.sender_name}"
        return RenderedMessage(
            channel=MessageChannel.EMAIL,
            subject=subject,
            body=body,
            html=_paragraphs_to_html(body),
        )

    @staticmethod
    def _sms(text: str) -> RenderedMessage:
        return RenderedMessage(channel=MessageChannel.SMS, body=text)
