"""
Message transport contract and channel wiring.
"""
import logging
from typing import Mapping, Protocol

from demo_followup.models.enums import MessageChannel, MessageType
from demo_followup.services.templates import RenderedMessage

logger = logging.getLogger(__name__)


class MessageTransport(Protocol):
    """
    Outbound delivery provider for one channel.

    ``send`` returns the provider's message id. It raises ``TransportError``
    when the message was not accepted, and ``AlreadyProcessedError`` when the
    provider has already handled ``idempotency_key``.
    """

    channel: MessageChannel

    def send(self, recipient: str, content: RenderedMessage, idempotency_key: str) -> str | None:
        ...


def idempotency_key(demo_id: int, message_type: MessageType) -> str:
    """Deterministic key for one logical send"""
    return f"{demo_id}-{message_type.value}"


def build_transports(settings) -> dict[MessageChannel, MessageTransport]:
    """
    Transports for every channel that has credentials configured.

    Channels left out here are skipped by the sweep.
    """
    from demo_followup.services.email_service import ResendEmailTransport
    from demo_followup.services.sms_service import TwilioSmsTransport

    transports: dict[MessageChannel, MessageTransport] = {}

    if settings.resend_api_key and settings.email_from:
        transports[MessageChannel.EMAIL] = ResendEmailTransport(
            api_key=settings.resend_api_key,
            sender=settings.email_from,
            reply_to=settings.email_reply_to or None,
        )
    else:
        logger.warning("Email channel disabled: RESEND_API_KEY or EMAIL_FROM not set")

    if settings.twilio_account_sid and settings.twilio_auth_token and settings.twilio_phone_number:
        transports[MessageChannel.SMS] = TwilioSmsTransport(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            phone_number=settings.twilio_phone_number,
        )
    else:
        logger.warning("SMS channel disabled: Twilio credentials not set")

    return transports


def describe_channels(transports: Mapping[MessageChannel, MessageTransport]) -> list[str]:
    return sorted(channel.value for channel in transports)
