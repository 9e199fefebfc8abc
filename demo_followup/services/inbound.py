"""
Helpers for turning inbound webhook payloads into plain reply text.
"""
import hashlib
import hmac
import html
import re

from demo_followup.exceptions import WebhookSignatureError

_ADDRESS_IN_BRACKETS = re.compile(r"<([^>]+)>")
_QUOTE_HEADER = re.compile(r"^On .+ wrote:\s*$")


def extract_email(from_field: str) -> str:
    """'Jane Doe <jane@example.com>' -> 'jane@example.com'"""
    match = _ADDRESS_IN_BRACKETS.search(from_field)
    return (match.group(1) if match else from_field).strip()


def html_to_text(markup: str) -> str:
    """Rough HTML to text, enough to classify a short reply"""
    text = re.sub(r"<br\s*/?>", "\n", markup, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return html.unescape(text).replace("\xa0", " ").strip()


def clean_email_body(body: str) -> str:
    """
    Keep only the new text of an email reply.

    Stops at the first quoted line, an "On ... wrote:" header, or a signature
    delimiter.
    """
    kept = []
    for line in body.splitlines():
        stripped = line.strip()
        if line.startswith(">") or _QUOTE_HEADER.match(stripped):
            break
        if stripped == "--" or stripped.startswith("Sent from my"):
            break
        kept.append(line)
    return "\n".join(kept).strip()


def verify_calendly_signature(payload: bytes, header: str | None, secret: str) -> None:
    """
    Check a ``Calendly-Webhook-Signature`` header (``t=<ts>,v1=<hex>``).

    Raises:
        WebhookSignatureError: if the header is missing, malformed or wrong
    """
    if not header:
        raise WebhookSignatureError("Missing Calendly signature header")

    parts = dict(part.strip().split("=", 1) for part in header.split(",") if "=" in part)
    timestamp, signature = parts.get("t"), parts.get("v1")
    if not timestamp or not signature:
        raise WebhookSignatureError("Malformed Calendly signature header")

    signed = timestamp.encode() + b"." + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise WebhookSignatureError("Calendly signature mismatch")
