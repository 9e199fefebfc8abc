from demo_followup.models.demo import Demo
from demo_followup.models.job import ScheduledJob
from demo_followup.models.message import Message
from demo_followup.models.reply import Reply

__all__ = ["Demo", "ScheduledJob", "Message", "Reply"]
