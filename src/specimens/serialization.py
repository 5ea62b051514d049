"""
Wire representation of specimens.

Enum fields travel as their lowercase values, datetimes as ISO-8601 strings,
statusHistory and qualityChecks as arrays in chronological order.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from specimens.domain import model

_DATETIME_FIELDS = {
    "scheduled_collection_time": "scheduledCollectionTime",
    "actual_collection_time": "actualCollectionTime",
    "received_time": "receivedTime",
    "processing_start_time": "processingStartTime",
    "processing_end_time": "processingEndTime",
    "expiry_date": "expiryDate",
    "rejected_at": "rejectedAt",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

_PLAIN_FIELDS = {
    "specimen_id": "specimenId",
    "barcode": "barcode",
    "order_ref": "orderRef",
    "patient_ref": "patientRef",
    "container_type": "containerType",
    "volume": "volume",
    "volume_unit": "volumeUnit",
    "collected_by_ref": "collectedByRef",
    "collection_notes": "collectionNotes",
    "received_by_ref": "receivedByRef",
    "processed_by_ref": "processedByRef",
    "storage_location": "storageLocation",
    "storage_temperature": "storageTemperature",
    "storage_conditions": "storageConditions",
    "rejection_reason": "rejectionReason",
    "rejected_by_ref": "rejectedByRef",
    "created_by_ref": "createdByRef",
    "last_modified_by_ref": "lastModifiedByRef",
    "version_number": "version",
}

_ENUM_FIELDS = {
    "specimen_type": ("specimenType", model.SpecimenType),
    "status": ("status", model.SpecimenStatus),
    "priority": ("priority", model.SpecimenPriority),
    "collection_method": ("collectionMethod", model.CollectionMethod),
}


def _dt_out(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _dt_in(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def status_change_to_wire(entry: model.StatusChange) -> Dict[str, Any]:
    return {
        "status": entry.status.value,
        "changedByRef": entry.changed_by_ref,
        "changedAt": _dt_out(entry.changed_at),
        "notes": entry.notes,
    }


def quality_check_to_wire(check: model.QualityCheck) -> Dict[str, Any]:
    return {
        "checkType": check.check_type,
        "result": check.result.value,
        "notes": check.notes,
        "checkedByRef": check.checked_by_ref,
        "checkedAt": _dt_out(check.checked_at),
    }


def to_wire(specimen: model.Specimen, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Serialize a specimen.

    When `now` is given the derived read-only fields timeSinceCollection and
    processingDuration (seconds) are included; from_wire ignores them.
    """
    data = {wire: getattr(specimen, attr) for attr, wire in _PLAIN_FIELDS.items()}
    data["testRefs"] = list(specimen.test_refs)
    for attr, (wire, _) in _ENUM_FIELDS.items():
        value = getattr(specimen, attr)
        data[wire] = value.value if value is not None else None
    for attr, wire in _DATETIME_FIELDS.items():
        data[wire] = _dt_out(getattr(specimen, attr))
    data["statusHistory"] = [status_change_to_wire(e) for e in specimen.status_history]
    data["qualityChecks"] = [quality_check_to_wire(c) for c in specimen.quality_checks]

    if now is not None:
        since = specimen.time_since_collection(now)
        duration = specimen.processing_duration
        data["timeSinceCollection"] = since.total_seconds() if since is not None else None
        data["processingDuration"] = duration.total_seconds() if duration is not None else None
        data["isOverdue"] = specimen.is_overdue(now)
    return data


def from_wire(data: Dict[str, Any]) -> model.Specimen:
    kwargs = {attr: data.get(wire) for attr, wire in _PLAIN_FIELDS.items()}
    kwargs["test_refs"] = list(data.get("testRefs") or [])
    for attr, (wire, enum_cls) in _ENUM_FIELDS.items():
        value = data.get(wire)
        kwargs[attr] = enum_cls(value) if value is not None else None
    for attr, wire in _DATETIME_FIELDS.items():
        kwargs[attr] = _dt_in(data.get(wire))
    kwargs["status_history"] = [
        model.StatusChange(
            status=model.SpecimenStatus(e["status"]),
            changed_by_ref=e["changedByRef"],
            changed_at=_dt_in(e["changedAt"]),
            notes=e.get("notes"),
        )
        for e in data.get("statusHistory") or []
    ]
    kwargs["quality_checks"] = [
        model.QualityCheck(
            check_type=c["checkType"],
            result=model.QualityResult(c["result"]),
            checked_by_ref=c["checkedByRef"],
            checked_at=_dt_in(c["checkedAt"]),
            notes=c.get("notes"),
        )
        for c in data.get("qualityChecks") or []
    ]
    return model.Specimen(**kwargs)


def to_label(specimen: model.Specimen) -> Dict[str, Any]:
    """Data printed on a tube label; collection date falls back to the scheduled time."""
    return {
        "specimenId": specimen.specimen_id,
        "barcode": specimen.barcode,
        "specimenType": specimen.specimen_type.value,
        "priority": specimen.priority.value,
        "collectionDate": _dt_out(specimen.actual_collection_time or specimen.scheduled_collection_time),
    }
