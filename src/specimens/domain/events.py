"""Domain events raised by the specimen aggregate."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Event:
    """Base class for all domain events."""
    pass


@dataclass
class SpecimenCreated(Event):
    """A specimen was registered for an order."""
    specimen_id: str
    barcode: str
    order_ref: str
    patient_ref: str
    priority: str
    created_by_ref: str
    created_at: datetime


@dataclass
class SpecimenStatusChanged(Event):
    """A transition (including a re-affirmation) was applied."""
    specimen_id: str
    from_status: str
    to_status: str
    changed_by_ref: str
    changed_at: datetime
    notes: Optional[str] = None


@dataclass
class QualityCheckRecorded(Event):
    """A quality control result was appended."""
    specimen_id: str
    check_type: str
    result: str
    checked_by_ref: str
    checked_at: datetime


@dataclass
class QualityCheckFailed(Event):
    """A quality check failed; the ordering workflow may reject the specimen."""
    specimen_id: str
    check_type: str
    checked_by_ref: str
    checked_at: datetime
    notes: Optional[str] = None
