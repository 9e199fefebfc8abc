"""
SMS transport using Twilio
"""
import logging

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.rest import Client

from demo_followup.exceptions import TransportError
from demo_followup.models.enums import MessageChannel
from demo_followup.services.templates import RenderedMessage

logger = logging.getLogger(__name__)


class TwilioSmsTransport:
    """Send SMS using Twilio"""

    channel = MessageChannel.SMS

    def __init__(self, account_sid: str, auth_token: str, phone_number: str, client: Client | None = None):
        self.phone_number = phone_number
        self.client = client or Client(account_sid, auth_token)

    def send(self, recipient: str, content: RenderedMessage, idempotency_key: str) -> str:
        """
        Send SMS using Twilio.

        Twilio has no idempotency keys for messages, so the key is only logged;
        the sweep's duplicate-send guard covers retries on this channel.

        Args:
            recipient: Phone number in E.164 form
            content: Rendered message; only ``body`` is used
            idempotency_key: Key of the logical send

        Returns:
            Twilio message SID
        """
        try:
            sms = self.client.messages.create(
                body=content.body,
                from_=self.phone_number,
                to=recipient,
            )
        except TwilioRestException as e:
            raise TransportError(f"Twilio rejected {idempotency_key} ({e.status}): {e.msg}") from e
        except TwilioException as e:
            raise TransportError(f"Twilio error for {idempotency_key}: {e}") from e

        logger.info("SMS %s sent to %s, sid: %s", idempotency_key, recipient, sms.sid)
        return sms.sid
