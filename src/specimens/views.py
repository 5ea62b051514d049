"""
Views for read operations - separate from command/write path.
Following Cosmic Python CQRS pattern: views query the tables directly and
return plain dicts, serialized while the session is still open.

Reads never take locks and may lag in-flight writes.
"""
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import case, exists, func, or_, select

from specimens import serialization
from specimens.adapters import orm
from specimens.adapters.reference_clients import AbstractActorDirectory, ReferenceLookupError
from specimens.domain.exceptions import NotFoundError
from specimens.domain.model import (
    PRIORITY_ORDER,
    Specimen,
    SpecimenPriority,
    SpecimenStatus,
    SpecimenType,
)
from specimens.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

QUEUE_STATUSES = (SpecimenStatus.PENDING, SpecimenStatus.COLLECTED)


def _priority_rank():
    return case(
        {priority: rank for rank, priority in enumerate(PRIORITY_ORDER)},
        value=Specimen.priority,
    )


@dataclass
class SpecimenFilters:
    status: Optional[SpecimenStatus] = None
    priority: Optional[SpecimenPriority] = None
    specimen_type: Optional[SpecimenType] = None
    patient_ref: Optional[str] = None
    order_ref: Optional[str] = None
    collected_by_ref: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    search: Optional[str] = None


def get_specimen(specimen_id: str, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    with uow:
        specimen = uow.session.get(Specimen, specimen_id)
        if specimen is None:
            raise NotFoundError(f"Specimen {specimen_id} not found")
        return serialization.to_wire(specimen, now=uow.now())


def get_by_barcode(barcode: str, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    with uow:
        specimen = uow.session.scalars(
            select(Specimen).where(Specimen.barcode == barcode)
        ).first()
        if specimen is None:
            raise NotFoundError(f"No specimen with barcode {barcode}")
        return serialization.to_wire(specimen, now=uow.now())


def label_data(specimen_id: str, uow: AbstractUnitOfWork) -> Dict[str, Any]:
    with uow:
        specimen = uow.session.get(Specimen, specimen_id)
        if specimen is None:
            raise NotFoundError(f"Specimen {specimen_id} not found")
        return serialization.to_label(specimen)


def labels(specimen_ids: List[str], uow: AbstractUnitOfWork) -> Dict[str, Any]:
    """Label data for a print batch, in request order; unknown ids are left out."""
    with uow:
        found = {
            s.specimen_id: s
            for s in uow.session.scalars(
                select(Specimen).where(Specimen.specimen_id.in_(list(dict.fromkeys(specimen_ids))))
            )
        }
        items = [serialization.to_label(found[i]) for i in specimen_ids if i in found]
    return {"labels": items, "count": len(items)}


def find_specimens(
    filters: SpecimenFilters,
    uow: AbstractUnitOfWork,
    page: int = 1,
    page_size: int = 20,
) -> Dict[str, Any]:
    """
    Filtered, paginated specimen listing.

    Sorted by priority (highest first), scheduled collection time (earliest
    first, unscheduled last), then newest first.
    """
    page = max(page, 1)
    page_size = max(page_size, 1)
    conditions = _filter_conditions(filters)

    with uow:
        total = uow.session.scalar(
            select(func.count()).select_from(orm.specimens).where(*conditions)
        )
        stmt = (
            select(Specimen)
            .where(*conditions)
            .order_by(
                _priority_rank().desc(),
                Specimen.scheduled_collection_time.is_(None),
                Specimen.scheduled_collection_time.asc(),
                Specimen.created_at.desc(),
                Specimen.specimen_id.asc(),
            )
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        now = uow.now()
        items = [serialization.to_wire(s, now=now) for s in uow.session.scalars(stmt)]

    return {
        "items": items,
        "total": total,
        "page": page,
        "pageSize": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }


def search_specimens(query: str, uow: AbstractUnitOfWork, limit: int = 20) -> List[Dict[str, Any]]:
    result = find_specimens(SpecimenFilters(search=query), uow, page=1, page_size=limit)
    return result["items"]


def pending_collections_queue(uow: AbstractUnitOfWork, limit: int = 50) -> List[Dict[str, Any]]:
    """
    Specimens waiting for collection or hand-over to the lab.

    Ordered by priority (critical first), scheduled collection time
    (unscheduled last), creation time, then specimen id.
    """
    with uow:
        stmt = (
            select(Specimen)
            .where(Specimen.status.in_(QUEUE_STATUSES))
            .order_by(
                _priority_rank().desc(),
                Specimen.scheduled_collection_time.is_(None),
                Specimen.scheduled_collection_time.asc(),
                Specimen.created_at.asc(),
                Specimen.specimen_id.asc(),
            )
            .limit(limit)
        )
        now = uow.now()
        return [serialization.to_wire(s, now=now) for s in uow.session.scalars(stmt)]


def status_counts(uow: AbstractUnitOfWork) -> Dict[str, int]:
    """Number of specimens per status, every status present."""
    counts = {status.value: 0 for status in SpecimenStatus}
    with uow:
        rows = uow.session.execute(
            select(orm.specimens.c.status, func.count())
            .group_by(orm.specimens.c.status)
        ).all()
    for status, count in rows:
        counts[SpecimenStatus(status).value] = count
    return counts


def collection_statistics(
    uow: AbstractUnitOfWork,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Specimen counts per status with mean processing time (seconds).

    The date range applies to the creation time. The mean only covers
    specimens with both processing start and end set.
    """
    table = orm.specimens
    conditions = []
    if date_from is not None:
        conditions.append(table.c.created_at >= date_from)
    if date_to is not None:
        conditions.append(table.c.created_at <= date_to)

    with uow:
        rows = uow.session.execute(
            select(
                table.c.status,
                table.c.processing_start_time,
                table.c.processing_end_time,
            ).where(*conditions)
        ).all()

    counts = defaultdict(int)
    durations = defaultdict(list)
    for status, started, ended in rows:
        status = SpecimenStatus(status)
        counts[status] += 1
        if started is not None and ended is not None:
            durations[status].append((ended - started).total_seconds())

    per_status = []
    for status in SpecimenStatus:
        if not counts[status]:
            continue
        samples = durations[status]
        per_status.append({
            "status": status.value,
            "count": counts[status],
            "avgProcessingTime": sum(samples) / len(samples) if samples else None,
        })

    return {
        "totalSamples": len(rows),
        "perStatus": per_status,
    }


def status_history_display(
    specimen_id: str,
    uow: AbstractUnitOfWork,
    actor_directory: AbstractActorDirectory,
) -> List[Dict[str, Any]]:
    """Audit trail with actor display names for the UI."""
    with uow:
        specimen = uow.session.get(Specimen, specimen_id)
        if specimen is None:
            raise NotFoundError(f"Specimen {specimen_id} not found")
        history = [serialization.status_change_to_wire(e) for e in specimen.status_history]

    names = {}
    for entry in history:
        actor_ref = entry["changedByRef"]
        if actor_ref not in names:
            try:
                names[actor_ref] = actor_directory.get(actor_ref)["displayName"]
            except ReferenceLookupError as e:
                logger.warning(f"Could not resolve actor {actor_ref}: {e}")
                names[actor_ref] = actor_ref
        entry["changedByName"] = names[actor_ref]
    return history


def _filter_conditions(filters: SpecimenFilters) -> list:
    conditions = []
    if filters.status is not None:
        conditions.append(Specimen.status == SpecimenStatus(filters.status))
    if filters.priority is not None:
        conditions.append(Specimen.priority == SpecimenPriority(filters.priority))
    if filters.specimen_type is not None:
        conditions.append(Specimen.specimen_type == SpecimenType(filters.specimen_type))
    if filters.patient_ref:
        conditions.append(Specimen.patient_ref == filters.patient_ref)
    if filters.order_ref:
        conditions.append(Specimen.order_ref == filters.order_ref)
    if filters.collected_by_ref:
        conditions.append(Specimen.collected_by_ref == filters.collected_by_ref)
    if filters.date_from is not None:
        conditions.append(Specimen.created_at >= filters.date_from)
    if filters.date_to is not None:
        conditions.append(Specimen.created_at <= filters.date_to)
    if filters.search:
        term = filters.search
        history = orm.status_history
        conditions.append(
            or_(
                Specimen.specimen_id.icontains(term, autoescape=True),
                Specimen.barcode.icontains(term, autoescape=True),
                Specimen.collection_notes.icontains(term, autoescape=True),
                exists().where(
                    history.c.specimen_id == Specimen.specimen_id,
                    history.c.notes.icontains(term, autoescape=True),
                ),
            )
        )
    return conditions
