from enum import Enum


class DemoType(str, Enum):
    """Sequence profile, chosen by lead time at booking"""
    SAME_DAY = "SAME_DAY"
    NEXT_DAY = "NEXT_DAY"
    FUTURE = "FUTURE"


class DemoStatus(str, Enum):
    """Booking lifecycle status"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    RESCHEDULED = "RESCHEDULED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    COMPLETED = "COMPLETED"


OPEN_STATUSES = (DemoStatus.PENDING, DemoStatus.CONFIRMED)

# Jobs for bookings in these states are resolved without sending
BLOCKING_STATUSES = (DemoStatus.CANCELLED, DemoStatus.RESCHEDULED)


class MessageChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"


class MessageType(str, Enum):
    """Kind of message in a follow-up sequence"""
    CONFIRM_INITIAL = "CONFIRM_INITIAL"
    SMS_CONFIRM = "SMS_CONFIRM"
    EVENING_BEFORE = "EVENING_BEFORE"
    VALUE_BOMB = "VALUE_BOMB"
    SMS_DAY_BEFORE = "SMS_DAY_BEFORE"
    CONFIRM_REMINDER = "CONFIRM_REMINDER"
    DAY_OF_REMINDER = "DAY_OF_REMINDER"
    SMS_REMINDER = "SMS_REMINDER"
    JOIN_LINK = "JOIN_LINK"
    SMS_URGENT = "SMS_URGENT"
    POST_NO_SHOW = "POST_NO_SHOW"

    @property
    def channel(self) -> MessageChannel:
        if self in _SMS_TYPES:
            return MessageChannel.SMS
        return MessageChannel.EMAIL


_SMS_TYPES = frozenset({
    MessageType.SMS_CONFIRM,
    MessageType.EVENING_BEFORE,
    MessageType.SMS_DAY_BEFORE,
    MessageType.SMS_REMINDER,
    MessageType.SMS_URGENT,
})


class ReplyIntent(str, Enum):
    """Classified meaning of an inbound reply"""
    YES = "YES"
    RESCHEDULE = "RESCHEDULE"
    CANCEL = "CANCEL"
    SOONER = "SOONER"
    OPTION_1 = "OPTION_1"
    OPTION_2 = "OPTION_2"
    UNKNOWN = "UNKNOWN"
    UNMATCHED = "UNMATCHED"


class JobOutcome(str, Enum):
    """How a job was resolved (or why a sweep left it alone)"""
    SENT = "sent"
    ALREADY_PROCESSED = "already_processed"
    ALREADY_SENT = "already_sent"
    ALREADY_CLAIMED = "already_claimed"
    SKIPPED_NO_DEMO = "skipped_no_demo"
    SKIPPED_TERMINAL_STATE = "skipped_terminal_state"
    SKIPPED_CANCELLED = "skipped_cancelled"
    SKIPPED_NO_TEMPLATE = "skipped_no_template"
    SKIPPED_NO_RECIPIENT = "skipped_no_recipient"
    SKIPPED_CHANNEL_DISABLED = "skipped_channel_disabled"
    RETRY_SCHEDULED = "retry_scheduled"
    PERMANENTLY_FAILED = "permanently_failed"
    ERROR = "error"
