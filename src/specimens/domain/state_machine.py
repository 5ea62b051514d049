"""
Specimen lifecycle state machine.

transition() is pure: it inspects a specimen and returns a StateDelta that
describes every field to set and the audit entry to append. It never mutates
the specimen; Specimen.apply() does that, and the unit of work persists it as
one write.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Optional

from specimens.domain.exceptions import (
    InvalidTransitionError,
    TerminalStateError,
    ValidationError,
)
from specimens.domain.model import (
    MAX_REJECTION_REASON,
    TERMINAL_STATES,
    Specimen,
    SpecimenStatus,
    StatusChange,
)

DEFAULT_EXPIRY_WINDOW = timedelta(days=7)

_ADMINISTRATIVE_SOURCES = frozenset({
    SpecimenStatus.PENDING,
    SpecimenStatus.COLLECTED,
    SpecimenStatus.IN_RECEIPT,
    SpecimenStatus.PROCESSING,
})


def _build_edges() -> Dict[SpecimenStatus, FrozenSet[SpecimenStatus]]:
    forward = {
        SpecimenStatus.PENDING: SpecimenStatus.COLLECTED,
        SpecimenStatus.COLLECTED: SpecimenStatus.IN_RECEIPT,
        SpecimenStatus.IN_RECEIPT: SpecimenStatus.PROCESSING,
        SpecimenStatus.PROCESSING: SpecimenStatus.COMPLETED,
    }
    edges = {}
    for status in SpecimenStatus:
        if status in TERMINAL_STATES:
            edges[status] = frozenset()
            continue
        targets = {SpecimenStatus.EXPIRED}
        if status in forward:
            targets.add(forward[status])
        if status in _ADMINISTRATIVE_SOURCES:
            targets.update({SpecimenStatus.CANCELLED, SpecimenStatus.REJECTED})
        edges[status] = frozenset(targets)
    return edges


ALLOWED_TRANSITIONS = _build_edges()


@dataclass(frozen=True)
class StateDelta:
    """Everything a single transition changes on a specimen."""
    specimen_id: str
    from_status: SpecimenStatus
    to_status: SpecimenStatus
    history_entry: StatusChange
    changes: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return self.from_status == self.to_status


def allowed_targets(status: SpecimenStatus) -> FrozenSet[SpecimenStatus]:
    return ALLOWED_TRANSITIONS[SpecimenStatus(status)]


def can_transition(current: SpecimenStatus, requested: SpecimenStatus) -> bool:
    """Edge check only; re-affirmations are handled by transition()."""
    return SpecimenStatus(requested) in allowed_targets(current)


def transition(
    specimen: Specimen,
    requested: SpecimenStatus,
    actor: str,
    now: datetime,
    notes: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    expiry_window: timedelta = DEFAULT_EXPIRY_WINDOW,
) -> StateDelta:
    """
    Decide whether `specimen` may move to `requested` and compute the delta.

    Raises:
        TerminalStateError: the specimen is already in a terminal state
        InvalidTransitionError: the edge is not part of the lifecycle
        ValidationError: required input for the target state is missing
    """
    requested = SpecimenStatus(requested)
    current = specimen.status

    if not actor:
        raise ValidationError("actor is required")
    if current in TERMINAL_STATES:
        raise TerminalStateError(specimen.specimen_id, current, requested)

    changes = {
        "last_modified_by_ref": actor,
        "updated_at": now,
    }
    history_entry = StatusChange(
        status=requested,
        changed_by_ref=actor,
        changed_at=now,
        notes=notes,
    )

    # Re-affirmation: audit entry only, derived timestamps stay untouched
    if requested == current:
        return StateDelta(specimen.specimen_id, current, requested, history_entry, changes)

    if requested not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(specimen.specimen_id, current, requested)

    if requested == SpecimenStatus.COLLECTED:
        collected_at = specimen.actual_collection_time
        if collected_at is None:
            collected_at = now
            changes["actual_collection_time"] = now
        if specimen.collected_by_ref is None:
            changes["collected_by_ref"] = actor
        if specimen.expiry_date is None:
            changes["expiry_date"] = collected_at + expiry_window

    elif requested == SpecimenStatus.IN_RECEIPT:
        if specimen.received_time is None:
            changes["received_time"] = now
            changes["received_by_ref"] = actor

    elif requested == SpecimenStatus.PROCESSING:
        if specimen.processing_start_time is None:
            changes["processing_start_time"] = now
            changes["processed_by_ref"] = actor

    elif requested == SpecimenStatus.COMPLETED:
        if specimen.processing_end_time is None:
            changes["processing_end_time"] = now

    elif requested == SpecimenStatus.REJECTED:
        if not rejection_reason or not rejection_reason.strip():
            raise ValidationError(f"Specimen {specimen.specimen_id}: a rejection reason is required")
        if len(rejection_reason) > MAX_REJECTION_REASON:
            raise ValidationError(
                f"rejection_reason must be at most {MAX_REJECTION_REASON} characters"
            )
        changes["rejection_reason"] = rejection_reason
        changes["rejected_at"] = now
        changes["rejected_by_ref"] = actor

    return StateDelta(specimen.specimen_id, current, requested, history_entry, changes)
