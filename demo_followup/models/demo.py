from sqlalchemy import Column, Enum, Integer, String, Text
from sqlalchemy.orm import relationship
from demo_followup.clock import utc_now
from demo_followup.database import Base, UTCDateTime
from demo_followup.models.enums import DemoStatus, DemoType


class Demo(Base):
    """One scheduled demo call (a booking)"""
    __tablename__ = "demos"

    id = Column(Integer, primary_key=True, index=True)

    # Booking source identity
    calendly_event_id = Column(String(255), unique=True, nullable=False, index=True)
    calendly_invitee_id = Column(String(255), nullable=False, default="")

    # Contact
    email = Column(String(320), nullable=False, index=True)  # Stored lower-cased
    phone = Column(String(32), nullable=True, index=True)  # Stored as +digits
    name = Column(String(255), nullable=False)

    # Demo details
    scheduled_at = Column(UTCDateTime, nullable=False, index=True)
    timezone = Column(String(64), nullable=False, default="UTC")  # IANA name, for local-time rendering
    demo_type = Column(Enum(DemoType, name="demo_type"), nullable=False)
    join_url = Column(Text, nullable=False, default="")

    # State
    status = Column(Enum(DemoStatus, name="demo_status"), nullable=False, default=DemoStatus.PENDING, index=True)
    confirmed_at = Column(UTCDateTime, nullable=True)
    joined_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)

    # Relationships
    jobs = relationship("ScheduledJob", back_populates="demo", order_by="ScheduledJob.scheduled_for")
    messages = relationship("Message", back_populates="demo", order_by="Message.sent_at")
