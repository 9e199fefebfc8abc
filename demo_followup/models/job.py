from sqlalchemy import Boolean, Column, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from demo_followup.clock import utc_now
from demo_followup.database import Base, UTCDateTime
from demo_followup.models.enums import MessageType


class ScheduledJob(Base):
    """One scheduled message delivery for one demo"""
    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        UniqueConstraint("demo_id", "message_type", name="scheduled_jobs_demo_type_unique"),
    )

    id = Column(Integer, primary_key=True, index=True)
    demo_id = Column(Integer, ForeignKey("demos.id"), nullable=False, index=True)
    message_type = Column(Enum(MessageType, name="message_type"), nullable=False)
    scheduled_for = Column(UTCDateTime, nullable=False, index=True)

    # Terminal states
    executed = Column(Boolean, nullable=False, default=False)
    executed_at = Column(UTCDateTime, nullable=True)
    outcome = Column(String(32), nullable=True)  # JobOutcome value written on resolution
    cancelled = Column(Boolean, nullable=False, default=False)

    # Claim held by a sweep while the job is in flight
    processing = Column(Boolean, nullable=False, default=False)
    processing_started_at = Column(UTCDateTime, nullable=True)

    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utc_now)

    # Relationships
    demo = relationship("Demo", back_populates="jobs")
