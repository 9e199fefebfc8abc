from sqlalchemy import Column, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from demo_followup.clock import utc_now
from demo_followup.database import Base, UTCDateTime
from demo_followup.models.enums import MessageChannel, MessageType


class Message(Base):
    """Audit row for a message that was sent. Never updated."""
    __tablename__ = "messages"
    __table_args__ = (
        # At most one send per kind per demo, independent of the job table
        UniqueConstraint("demo_id", "message_type", name="messages_demo_type_unique"),
    )

    id = Column(Integer, primary_key=True, index=True)
    demo_id = Column(Integer, ForeignKey("demos.id"), nullable=False, index=True)
    channel = Column(Enum(MessageChannel, name="message_channel"), nullable=False)
    message_type = Column(Enum(MessageType, name="message_type"), nullable=False)
    recipient = Column(String(320), nullable=False)
    subject = Column(String(500), nullable=True)
    body = Column(Text, nullable=False)
    external_id = Column(String(255), nullable=True)  # Resend / Twilio message ID
    sent_at = Column(UTCDateTime, nullable=False, default=utc_now)

    # Relationships
    demo = relationship("Demo", back_populates="messages")
