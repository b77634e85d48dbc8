"""
Event data models.

An Event is a dated, deduplicated record that a definition (or its display
group) fired. At most one system-sourced event exists per
(user_id, type, occurred_date); re-evaluation appends to ``notes`` instead of
inserting again.
"""

from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from riskcast.utils.timeutil import utcnow

from .enums import EventKind, EventSource


class Event(BaseModel):
    """
    A fired occurrence.

    Attributes:
        event_id: Surrogate identifier
        user_id: Owner
        type: Definition label or display group
        kind: Trigger or prodrome family
        source: system for evaluator output, manual for user entries
        occurred_date: Local day the event belongs to
        notes: Human-readable reasons, newline separated
        contributors: Definition labels that contributed to this event
        created_at: Insertion time
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    type: str = Field(min_length=1)
    kind: EventKind = Field(default=EventKind.TRIGGER)
    source: EventSource = Field(default=EventSource.SYSTEM)
    occurred_date: date
    notes: Optional[str] = Field(default=None)
    contributors: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
