from sqlalchemy import Boolean, Column, Enum, ForeignKey, Integer, String, Text
from demo_followup.clock import utc_now
from demo_followup.database import Base, UTCDateTime
from demo_followup.models.enums import MessageChannel


class Reply(Base):
    """Audit row for an inbound reply"""
    __tablename__ = "replies"

    id = Column(Integer, primary_key=True, index=True)
    demo_id = Column(Integer, ForeignKey("demos.id"), nullable=True, index=True)  # Null when unmatched
    channel = Column(Enum(MessageChannel, name="message_channel"), nullable=False)
    from_address = Column(String(320), nullable=False, index=True)  # Email or phone
    body = Column(Text, nullable=False)
    intent = Column(String(32), nullable=True)  # ReplyIntent value
    processed = Column(Boolean, nullable=False, default=False, index=True)
    received_at = Column(UTCDateTime, nullable=False, default=utc_now)
