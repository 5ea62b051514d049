"""Commands for the specimen lifecycle service."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from specimens.domain.model import (
    CollectionMethod,
    QualityResult,
    SpecimenPriority,
    SpecimenStatus,
    SpecimenType,
)


@dataclass
class Command:
    """Base class for all commands."""
    pass


@dataclass
class CreateSpecimen(Command):
    """Register a new specimen for an order (status pending)."""
    order_ref: str
    patient_ref: str
    test_refs: List[str]
    specimen_type: SpecimenType
    container_type: str
    volume: float
    actor: str
    volume_unit: str = "ml"
    priority: SpecimenPriority = SpecimenPriority.ROUTINE
    scheduled_collection_time: Optional[datetime] = None
    collection_method: Optional[CollectionMethod] = None
    collection_notes: Optional[str] = None
    storage_location: Optional[str] = None
    storage_temperature: Optional[float] = None
    storage_conditions: Optional[str] = None
    expiry_date: Optional[datetime] = None  # explicit override of the derived expiry
    timeout: Optional[float] = None


@dataclass
class QualityCheckInput:
    """A quality check supplied together with a collection confirmation."""
    check_type: str
    result: QualityResult
    notes: Optional[str] = None


@dataclass
class ConfirmCollection(Command):
    """Confirm that a pending specimen has been collected."""
    specimen_id: str
    actor: str
    actual_volume: Optional[float] = None
    notes: Optional[str] = None
    quality_checks: Tuple[QualityCheckInput, ...] = ()
    timeout: Optional[float] = None


@dataclass
class TransitionSpecimen(Command):
    """Move one specimen to another status."""
    specimen_id: str
    requested: SpecimenStatus
    actor: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    timeout: Optional[float] = None


@dataclass
class BulkTransition(Command):
    """
    Move many specimens to one status; invalid ones are skipped.

    required_status restricts the batch to specimens currently in that status.
    """
    specimen_ids: List[str]
    requested: SpecimenStatus
    actor: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    required_status: Optional[SpecimenStatus] = None
    timeout: Optional[float] = None


@dataclass
class ReceiveSamples(Command):
    """Mark collected specimens as received in the laboratory."""
    specimen_ids: List[str]
    actor: str
    notes: Optional[str] = None
    timeout: Optional[float] = None


@dataclass
class StartProcessing(Command):
    """Start analysis of received specimens."""
    specimen_ids: List[str]
    actor: str
    notes: Optional[str] = None
    timeout: Optional[float] = None


@dataclass
class CompleteProcessing(Command):
    """Finish analysis of specimens in processing."""
    specimen_ids: List[str]
    actor: str
    notes: Optional[str] = None
    timeout: Optional[float] = None


@dataclass
class RecordQualityCheck(Command):
    """Append a quality control result to a specimen."""
    specimen_id: str
    check_type: str
    result: QualityResult
    actor: str
    notes: Optional[str] = None
    timeout: Optional[float] = None


@dataclass
class ExpireOverdueSpecimens(Command):
    """Expire every non-terminal specimen whose expiry date has passed."""
    now: Optional[datetime] = None
    actor: Optional[str] = None
    batch_size: int = field(default=500)
