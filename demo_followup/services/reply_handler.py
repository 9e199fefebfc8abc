"""
Reply Handler
Records inbound replies and applies their intent to the matching demo.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from demo_followup.models import Demo, Reply
from demo_followup.models.enums import DemoStatus, MessageChannel, ReplyIntent
from demo_followup.services.demo_service import DemoService
from demo_followup.services.followup_scheduler import FollowupScheduler
from demo_followup.services.reply_classifier import classify_reply

logger = logging.getLogger(__name__)

# Intents that move the demo to a new status and stop its sequence
_STOPPING_INTENTS = {
    ReplyIntent.RESCHEDULE: DemoStatus.RESCHEDULED,
    ReplyIntent.CANCEL: DemoStatus.CANCELLED,
}

_SOONER_INTENTS = (ReplyIntent.SOONER, ReplyIntent.OPTION_1, ReplyIntent.OPTION_2)


@dataclass
class ReplyOutcome:
    reply_id: int
    demo_id: int | None
    intent: ReplyIntent
    action: str

    def to_dict(self) -> dict:
        return {
            "reply_id": self.reply_id,
            "demo_id": self.demo_id,
            "intent": self.intent.value,
            "action": self.action,
        }


class ReplyHandler:
    """Turns an inbound reply into an audit row plus a state change"""

    def __init__(self, db: Session, demos: DemoService, scheduler: FollowupScheduler):
        self.db = db
        self.demos = demos
        self.scheduler = scheduler

    def process_reply(self, channel: MessageChannel, from_address: str, body: str) -> ReplyOutcome:
        """
        Record a reply, then act on it.

        The reply row is committed before anything else happens so it survives
        a failure while applying the intent.
        """
        demo = self._match_demo(channel, from_address)
        intent = classify_reply(body) if demo else ReplyIntent.UNMATCHED

        reply = Reply(
            demo_id=demo.id if demo else None,
            channel=channel,
            from_address=from_address,
            body=body,
            intent=intent.value,
            processed=False,
        )
        self.db.add(reply)
        self.db.commit()
        self.db.refresh(reply)

        if demo is None:
            logger.warning("No open demo found for %s reply from %s", channel.value, from_address)
            return ReplyOutcome(reply.id, None, intent, "NO_DEMO_FOUND")

        action = self.apply_intent(demo, intent)

        # Replies that need a human stay unprocessed for the review queue
        if intent in (ReplyIntent.YES, *_STOPPING_INTENTS):
            reply.processed = True
            self.db.commit()

        logger.info("Reply %s for demo %s: intent=%s action=%s", reply.id, demo.id, intent.value, action)
        return ReplyOutcome(reply.id, demo.id, intent, action)

    def apply_intent(self, demo: Demo, intent: ReplyIntent) -> str:
        if intent is ReplyIntent.YES:
            changed = self.demos.transition(demo, DemoStatus.CONFIRMED)
            return "CONFIRMED" if changed else "ALREADY_CONFIRMED"

        if intent in _STOPPING_INTENTS:
            status = _STOPPING_INTENTS[intent]
            self.demos.transition(demo, status)
            self.scheduler.cancel_all(demo.id)
            return status.value

        if intent in _SOONER_INTENTS:
            logger.info("Demo %s asked for an earlier slot (%s)", demo.id, intent.value)
            return f"SOONER_REQUESTED_{intent.value}"

        return "UNKNOWN_INTENT"

    def unprocessed(self, limit: int = 100) -> list[Reply]:
        """Replies waiting for manual review, oldest first"""
        return list(self.db.scalars(
            select(Reply)
            .where(Reply.processed.is_(False))
            .order_by(Reply.received_at)
            .limit(limit)
        ))

    def _match_demo(self, channel: MessageChannel, from_address: str) -> Demo | None:
        if channel is MessageChannel.SMS:
            return self.demos.find_open_by_phone(from_address)
        return self.demos.find_open_by_email(from_address)
