"""Domain model for specimens tracked through the laboratory."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from specimens.domain.events import (
    QualityCheckFailed,
    QualityCheckRecorded,
    SpecimenCreated,
    SpecimenStatusChanged,
)
from specimens.domain.exceptions import IntegrityViolation, ValidationError


class SpecimenStatus(str, Enum):
    PENDING = "pending"
    COLLECTED = "collected"
    IN_RECEIPT = "in_receipt"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"


class SpecimenPriority(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"
    STAT = "stat"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return PRIORITY_ORDER.index(self)


PRIORITY_ORDER = [
    SpecimenPriority.ROUTINE,
    SpecimenPriority.URGENT,
    SpecimenPriority.STAT,
    SpecimenPriority.CRITICAL,
]


class SpecimenType(str, Enum):
    BLOOD = "blood"
    URINE = "urine"
    SWAB = "swab"
    TISSUE = "tissue"
    FLUID = "fluid"
    STOOL = "stool"
    SPUTUM = "sputum"
    OTHER = "other"


class CollectionMethod(str, Enum):
    VENIPUNCTURE = "venipuncture"
    CATHETER = "catheter"
    LUMBAR_PUNCTURE = "lumbar_puncture"
    SWAB = "swab"
    VOIDED = "voided"
    BIOPSY = "biopsy"
    OTHER = "other"


class QualityResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"


TERMINAL_STATES = frozenset({
    SpecimenStatus.COMPLETED,
    SpecimenStatus.CANCELLED,
    SpecimenStatus.REJECTED,
    SpecimenStatus.EXPIRED,
})

MAX_COLLECTION_NOTES = 1000
MAX_REJECTION_REASON = 500


@dataclass(unsafe_hash=True)
class StatusChange:
    """One entry of the audit trail."""
    status: SpecimenStatus
    changed_by_ref: str
    changed_at: datetime
    notes: Optional[str] = None


@dataclass(unsafe_hash=True)
class QualityCheck:
    check_type: str
    result: QualityResult
    checked_by_ref: str
    checked_at: datetime
    notes: Optional[str] = None


class Specimen:
    """
    A physical sample ordered for one or more tests.

    Status only changes through apply(), which takes a StateDelta produced by
    state_machine.transition(). status_history and quality_checks are append
    only.
    """

    def __init__(
        self,
        specimen_id: str,
        barcode: str,
        order_ref: str,
        patient_ref: str,
        test_refs: List[str],
        specimen_type: SpecimenType,
        container_type: str,
        volume: float,
        volume_unit: str = "ml",
        status: SpecimenStatus = SpecimenStatus.PENDING,
        priority: SpecimenPriority = SpecimenPriority.ROUTINE,
        collection_method: Optional[CollectionMethod] = None,
        scheduled_collection_time: Optional[datetime] = None,
        actual_collection_time: Optional[datetime] = None,
        collected_by_ref: Optional[str] = None,
        collection_notes: Optional[str] = None,
        received_time: Optional[datetime] = None,
        received_by_ref: Optional[str] = None,
        processing_start_time: Optional[datetime] = None,
        processing_end_time: Optional[datetime] = None,
        processed_by_ref: Optional[str] = None,
        quality_checks: Optional[List[QualityCheck]] = None,
        storage_location: Optional[str] = None,
        storage_temperature: Optional[float] = None,
        storage_conditions: Optional[str] = None,
        expiry_date: Optional[datetime] = None,
        status_history: Optional[List[StatusChange]] = None,
        rejection_reason: Optional[str] = None,
        rejected_by_ref: Optional[str] = None,
        rejected_at: Optional[datetime] = None,
        created_by_ref: Optional[str] = None,
        last_modified_by_ref: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        version_number: Optional[int] = None,
    ):
        self.specimen_id = specimen_id
        self.barcode = barcode
        self.order_ref = order_ref
        self.patient_ref = patient_ref
        self.test_refs = list(test_refs)
        self.specimen_type = SpecimenType(specimen_type)
        self.container_type = container_type
        self.volume = volume
        self.volume_unit = volume_unit
        self.status = SpecimenStatus(status)
        self.priority = SpecimenPriority(priority)
        self.collection_method = CollectionMethod(collection_method) if collection_method else None
        self.scheduled_collection_time = scheduled_collection_time
        self.actual_collection_time = actual_collection_time
        self.collected_by_ref = collected_by_ref
        self.collection_notes = collection_notes
        self.received_time = received_time
        self.received_by_ref = received_by_ref
        self.processing_start_time = processing_start_time
        self.processing_end_time = processing_end_time
        self.processed_by_ref = processed_by_ref
        self.quality_checks = list(quality_checks or [])
        self.storage_location = storage_location
        self.storage_temperature = storage_temperature
        self.storage_conditions = storage_conditions
        self.expiry_date = expiry_date
        self.status_history = list(status_history or [])
        self.rejection_reason = rejection_reason
        self.rejected_by_ref = rejected_by_ref
        self.rejected_at = rejected_at
        self.created_by_ref = created_by_ref
        self.last_modified_by_ref = last_modified_by_ref
        self.created_at = created_at
        self.updated_at = updated_at
        self.version_number = version_number
        self.events = []  # type: List

    def __repr__(self):
        return f"<Specimen {self.specimen_id} {self.status.value}>"

    def __eq__(self, other):
        if not isinstance(other, Specimen):
            return False
        return other.specimen_id == self.specimen_id

    def __hash__(self):
        return hash(self.specimen_id)

    @classmethod
    def register(
        cls,
        specimen_id: str,
        barcode: str,
        actor: str,
        now: datetime,
        **fields,
    ) -> "Specimen":
        """Create a pending specimen with its first audit entry."""
        volume = fields.get("volume")
        if volume is None or volume < 0:
            raise ValidationError("volume must be a non-negative number")
        if not fields.get("order_ref") or not fields.get("patient_ref"):
            raise ValidationError("order_ref and patient_ref are required")
        if not fields.get("test_refs"):
            raise ValidationError("at least one test reference is required")
        if not fields.get("container_type"):
            raise ValidationError("container_type is required")
        _check_length("collection_notes", fields.get("collection_notes"), MAX_COLLECTION_NOTES)

        specimen = cls(
            specimen_id=specimen_id,
            barcode=barcode,
            status=SpecimenStatus.PENDING,
            status_history=[
                StatusChange(
                    status=SpecimenStatus.PENDING,
                    changed_by_ref=actor,
                    changed_at=now,
                    notes="Sample created",
                )
            ],
            created_by_ref=actor,
            last_modified_by_ref=actor,
            created_at=now,
            updated_at=now,
            **fields,
        )
        specimen.events.append(
            SpecimenCreated(
                specimen_id=specimen.specimen_id,
                barcode=specimen.barcode,
                order_ref=specimen.order_ref,
                patient_ref=specimen.patient_ref,
                priority=specimen.priority.value,
                created_by_ref=actor,
                created_at=now,
            )
        )
        return specimen

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def processing_duration(self) -> Optional[timedelta]:
        if self.processing_start_time is None or self.processing_end_time is None:
            return None
        return self.processing_end_time - self.processing_start_time

    def time_since_collection(self, now: datetime) -> Optional[timedelta]:
        if self.actual_collection_time is None:
            return None
        return now - self.actual_collection_time

    def is_overdue(self, now: datetime) -> bool:
        """Non-terminal and past its expiry date."""
        return (
            not self.is_terminal
            and self.expiry_date is not None
            and self.expiry_date <= now
        )

    def check_integrity(self) -> None:
        if not self.status_history:
            raise IntegrityViolation(f"Specimen {self.specimen_id} has an empty status history")
        if self.status_history[-1].status != self.status:
            raise IntegrityViolation(
                f"Specimen {self.specimen_id} status {self.status.value} diverges from "
                f"last history entry {self.status_history[-1].status.value}"
            )

    def apply(self, delta) -> None:
        """
        Apply a StateDelta.

        Derived fields are written before the history entry is appended so a
        reader of the new entry also sees its timestamps.
        """
        self.check_integrity()
        for name, value in delta.changes.items():
            setattr(self, name, value)
        self.status = delta.to_status
        self.status_history.append(delta.history_entry)

        self.events.append(
            SpecimenStatusChanged(
                specimen_id=self.specimen_id,
                from_status=delta.from_status.value,
                to_status=delta.to_status.value,
                changed_by_ref=delta.history_entry.changed_by_ref,
                changed_at=delta.history_entry.changed_at,
                notes=delta.history_entry.notes,
            )
        )

    def confirm_collection(
        self,
        delta,
        actual_volume: Optional[float] = None,
        notes: Optional[str] = None,
        checks=(),
    ) -> None:
        """Apply a pending -> collected delta with the collection details."""
        if actual_volume is not None:
            if actual_volume < 0:
                raise ValidationError("actual_volume must be a non-negative number")
            self.volume = actual_volume
        if notes:
            _check_length("collection_notes", notes, MAX_COLLECTION_NOTES)
            self.collection_notes = notes
        self.apply(delta)
        for check in checks:
            self.record_quality_check(
                check.check_type,
                check.result,
                delta.history_entry.changed_by_ref,
                delta.history_entry.changed_at,
                check.notes,
            )

    def record_quality_check(
        self,
        check_type: str,
        result: QualityResult,
        actor: str,
        now: datetime,
        notes: Optional[str] = None,
    ) -> QualityCheck:
        if not check_type:
            raise ValidationError("check_type is required")
        check = QualityCheck(
            check_type=check_type,
            result=QualityResult(result),
            checked_by_ref=actor,
            checked_at=now,
            notes=notes,
        )
        self.quality_checks.append(check)
        self.last_modified_by_ref = actor
        self.updated_at = now

        self.events.append(
            QualityCheckRecorded(
                specimen_id=self.specimen_id,
                check_type=check.check_type,
                result=check.result.value,
                checked_by_ref=actor,
                checked_at=now,
            )
        )
        if check.result == QualityResult.FAIL:
            self.events.append(
                QualityCheckFailed(
                    specimen_id=self.specimen_id,
                    check_type=check.check_type,
                    checked_by_ref=actor,
                    checked_at=now,
                    notes=notes,
                )
            )
        return check


def _check_length(name: str, value: Optional[str], limit: int) -> None:
    if value is not None and len(value) > limit:
        raise ValidationError(f"{name} must be at most {limit} characters")
