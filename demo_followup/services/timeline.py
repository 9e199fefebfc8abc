"""
Timeline Generator
Classifies a demo by lead time and turns its sequence into absolute send times.

Everything here is pure: no database, no clock. Callers pass ``now``.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Mapping, Sequence
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, RootModel, field_validator, model_validator

from demo_followup.exceptions import UnknownSequenceError
from demo_followup.models.enums import DemoType, MessageType

logger = logging.getLogger(__name__)

SAME_DAY_MAX_HOURS = 12
NEXT_DAY_MAX_HOURS = 36


def classify_demo_type(scheduled_at: datetime, now: datetime) -> DemoType:
    """
    Pick the sequence profile from the hours left until the demo.

    Boundaries belong to the shorter profile: exactly 12h is SAME_DAY and
    exactly 36h is NEXT_DAY.
    """
    hours_until_demo = (scheduled_at - now).total_seconds() / 3600

    if hours_until_demo <= SAME_DAY_MAX_HOURS:
        return DemoType.SAME_DAY
    if hours_until_demo <= NEXT_DAY_MAX_HOURS:
        return DemoType.NEXT_DAY
    return DemoType.FUTURE


class StepAnchor(str, Enum):
    """What a step's send time is measured from"""
    BOOKED = "booked"  # The booking instant ("now" at generation time)
    SCHEDULED = "scheduled"  # The demo start
    LOCAL_TIME = "local_time"  # A wall-clock time in the invitee's timezone, N days before


class SequenceStep(BaseModel):
    """One message in a sequence and when to send it"""

    model_config = ConfigDict(frozen=True)

    message_type: MessageType
    anchor: StepAnchor
    offset_seconds: int = 0
    local_time: time | None = None
    days_before: int = 1

    @model_validator(mode="after")
    def _check_local_time(self):
        if self.anchor is StepAnchor.LOCAL_TIME and self.local_time is None:
            raise ValueError(f"{self.message_type.value}: local_time anchor needs a local_time")
        return self

    def send_time(self, scheduled_at: datetime, booked_at: datetime, tz_name: str) -> datetime:
        """Absolute UTC send time for this step"""
        if self.anchor is StepAnchor.BOOKED:
            return booked_at + timedelta(seconds=self.offset_seconds)
        if self.anchor is StepAnchor.SCHEDULED:
            return scheduled_at + timedelta(seconds=self.offset_seconds)
        return local_time_before(scheduled_at, tz_name, self.local_time, self.days_before)


def local_time_before(scheduled_at: datetime, tz_name: str, at: time, days_before: int) -> datetime:
    """
    Wall-clock ``at`` in ``tz_name``, ``days_before`` calendar days before the
    demo's local date, returned in UTC.

    >>> local_time_before(datetime(2026, 3, 10, 15, tzinfo=timezone.utc), "America/New_York", time(19), 1)
    datetime.datetime(2026, 3, 9, 23, 0, tzinfo=datetime.timezone.utc)
    """
    tz = ZoneInfo(tz_name)
    local_date = scheduled_at.astimezone(tz).date() - timedelta(days=days_before)
    local = datetime.combine(local_date, at, tzinfo=tz)
    return local.astimezone(timezone.utc)


def _step(message_type, anchor, offset=timedelta(0), **extra) -> SequenceStep:
    return SequenceStep(
        message_type=message_type,
        anchor=anchor,
        offset_seconds=int(offset.total_seconds()),
        **extra,
    )


# Steps shared by every profile
_OPENING = (
    _step(MessageType.CONFIRM_INITIAL, StepAnchor.BOOKED),
    _step(MessageType.SMS_CONFIRM, StepAnchor.BOOKED, timedelta(seconds=2)),
)
_CLOSING = (
    _step(MessageType.SMS_REMINDER, StepAnchor.SCHEDULED, -timedelta(minutes=30)),
    _step(MessageType.JOIN_LINK, StepAnchor.SCHEDULED, -timedelta(minutes=10)),
    _step(MessageType.SMS_URGENT, StepAnchor.SCHEDULED, timedelta(minutes=8)),
    _step(MessageType.POST_NO_SHOW, StepAnchor.SCHEDULED, timedelta(hours=1)),
)

DEFAULT_SEQUENCES: dict[DemoType, tuple[SequenceStep, ...]] = {
    DemoType.SAME_DAY: _OPENING + _CLOSING,
    DemoType.NEXT_DAY: _OPENING + (
        _step(MessageType.EVENING_BEFORE, StepAnchor.LOCAL_TIME, local_time=time(19, 0), days_before=1),
        _step(MessageType.CONFIRM_REMINDER, StepAnchor.SCHEDULED, -timedelta(hours=4)),
    ) + _CLOSING,
    DemoType.FUTURE: _OPENING + (
        _step(MessageType.VALUE_BOMB, StepAnchor.SCHEDULED, -timedelta(hours=48)),
        _step(MessageType.SMS_DAY_BEFORE, StepAnchor.SCHEDULED, -timedelta(hours=24)),
        _step(MessageType.DAY_OF_REMINDER, StepAnchor.SCHEDULED, -timedelta(hours=4)),
    ) + _CLOSING,
}


class SequenceTable(RootModel[dict[DemoType, list[SequenceStep]]]):
    """JSON shape of a sequence table override"""

    @field_validator("root")
    @classmethod
    def _check_shape(cls, table):
        for demo_type, steps in table.items():
            if not steps:
                raise ValueError(f"{demo_type.value}: sequence is empty")
            if steps[0].anchor is not StepAnchor.BOOKED:
                raise ValueError(f"{demo_type.value}: sequence must open with an immediate step")
            last = steps[-1]
            if last.anchor is not StepAnchor.SCHEDULED or last.offset_seconds <= 0:
                raise ValueError(f"{demo_type.value}: sequence must close after the demo starts")
        return table


def load_sequences(path: str | Path) -> dict[DemoType, tuple[SequenceStep, ...]]:
    """
    Load a sequence table from a JSON file.

    Profiles missing from the file keep their default sequence.
    """
    with open(path, "r") as f:
        raw = json.load(f)

    table = SequenceTable.model_validate(raw).root
    sequences = dict(DEFAULT_SEQUENCES)
    sequences.update({demo_type: tuple(steps) for demo_type, steps in table.items()})
    return sequences


@dataclass(frozen=True)
class TimelineEntry:
    message_type: MessageType
    send_at: datetime


def generate_timeline(
    demo,
    now: datetime,
    sequences: Mapping[DemoType, Sequence[SequenceStep]] = DEFAULT_SEQUENCES,
) -> list[TimelineEntry]:
    """
    Compute the send times for a demo's sequence.

    Args:
        demo: Object with ``demo_type``, ``scheduled_at`` and ``timezone``
        now: Generation instant; ``booked`` steps are measured from it
        sequences: Sequence table to read from

    Returns:
        Entries sorted by send time. Steps that would fire before ``now`` are
        dropped rather than sent late.

    Raises:
        UnknownSequenceError: if the demo's type has no sequence
    """
    steps = sequences.get(demo.demo_type)
    if steps is None:
        raise UnknownSequenceError(f"No sequence configured for demo type {demo.demo_type!r}")

    entries = []
    for step in steps:
        send_at = step.send_time(demo.scheduled_at, now, demo.timezone)
        if send_at < now:
            logger.debug("Dropping %s for demo %s: %s is in the past", step.message_type.value, getattr(demo, "id", None), send_at)
            continue
        entries.append(TimelineEntry(step.message_type, send_at))

    return sorted(entries, key=lambda entry: entry.send_at)
