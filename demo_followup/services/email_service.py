"""
Email transport using Resend
"""
import logging

import resend
from resend.exceptions import ResendError

from demo_followup.exceptions import AlreadyProcessedError, TransportError
from demo_followup.models.enums import MessageChannel
from demo_followup.services.templates import RenderedMessage

logger = logging.getLogger(__name__)

# Resend answers 409 with this type when a key was already used for a different payload
IDEMPOTENCY_CONFLICT = "invalid_idempotent_request"


class ResendEmailTransport:
    """Send email using Resend, passing the idempotency key through"""

    channel = MessageChannel.EMAIL

    def __init__(self, api_key: str, sender: str, reply_to: str | None = None):
        resend.api_key = api_key
        self.sender = sender
        self.reply_to = reply_to

    def send(self, recipient: str, content: RenderedMessage, idempotency_key: str) -> str | None:
        params: resend.Emails.SendParams = {
            "from": self.sender,
            "to": [recipient],
            "subject": content.subject or "",
            "text": content.body,
        }
        if content.html:
            params["html"] = content.html
        if self.reply_to:
            params["reply_to"] = self.reply_to

        options: resend.Emails.SendOptions = {"idempotency_key": idempotency_key}

        try:
            response = resend.Emails.send(params, options)
        except ResendError as e:
            if getattr(e, "error_type", None) == IDEMPOTENCY_CONFLICT:
                raise AlreadyProcessedError(f"Resend already processed {idempotency_key}") from e
            raise TransportError(f"Resend rejected {idempotency_key}: {e}") from e

        message_id = response.get("id") if response else None
        logger.info("Email %s sent to %s, id: %s", idempotency_key, recipient, message_id)
        return message_id
