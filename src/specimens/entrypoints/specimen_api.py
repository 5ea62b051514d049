"""
Specimen API - thin API with command dispatch.
Writes go through the message bus, reads through views.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from specimens import views
from specimens.adapters import orm
from specimens.adapters.reference_clients import (
    HTTPActorDirectory,
    HTTPOrderLookup,
    ReferenceLookupError,
)
from specimens.domain import commands
from specimens.domain.exceptions import (
    ConcurrentModificationError,
    IdentityExhaustionError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    SpecimenError,
    TransitionError,
    ValidationError,
)
from specimens.domain.model import (
    CollectionMethod,
    QualityResult,
    SpecimenPriority,
    SpecimenStatus,
    SpecimenType,
)
from specimens.service_layer import messagebus
from specimens.service_layer.unit_of_work import SqlAlchemyUnitOfWork

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize ORM mappers (Cosmic Python pattern)
orm.start_mappers()
logger.info("ORM mappers initialized")

app = FastAPI(
    title="Specimen Lifecycle API",
    description="Specimen collection, receipt, processing and audit trail",
    version="1.0.0"
)

ERROR_STATUS_CODES = [
    (NotFoundError, 404),
    (ValidationError, 422),
    (TransitionError, 409),
    (InvalidStateError, 409),
    (ConcurrentModificationError, 409),
    (IdentityExhaustionError, 503),
    (OperationTimeoutError, 504),
]


def get_uow():
    return SqlAlchemyUnitOfWork()


def get_order_lookup():
    return HTTPOrderLookup()


def get_actor_directory():
    return HTTPActorDirectory()


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSpecimenRequest(CamelModel):
    order_ref: str
    patient_ref: str
    test_refs: List[str]
    specimen_type: SpecimenType
    container_type: str
    volume: float = Field(ge=0)
    volume_unit: str = "ml"
    priority: SpecimenPriority = SpecimenPriority.ROUTINE
    scheduled_collection_time: Optional[datetime] = None
    collection_method: Optional[CollectionMethod] = None
    collection_notes: Optional[str] = Field(default=None, max_length=1000)
    storage_location: Optional[str] = None
    storage_temperature: Optional[float] = None
    storage_conditions: Optional[str] = None
    expiry_date: Optional[datetime] = None
    actor: str
    timeout: Optional[float] = None


class CreateFromOrderRequest(CamelModel):
    order_ref: str
    specimen_type: SpecimenType
    container_type: str
    volume: float = Field(ge=0)
    volume_unit: str = "ml"
    priority: SpecimenPriority = SpecimenPriority.ROUTINE
    scheduled_collection_time: Optional[datetime] = None
    collection_method: Optional[CollectionMethod] = None
    actor: str
    timeout: Optional[float] = None


class QualityCheckRequest(CamelModel):
    check_type: str
    result: QualityResult
    notes: Optional[str] = None
    actor: str
    timeout: Optional[float] = None


class CollectedQualityCheck(CamelModel):
    check_type: str
    result: QualityResult
    notes: Optional[str] = None


class ConfirmCollectionRequest(CamelModel):
    actor: str
    actual_volume: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    quality_checks: List[CollectedQualityCheck] = []
    timeout: Optional[float] = None


class TransitionRequest(CamelModel):
    status: SpecimenStatus
    actor: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = Field(default=None, max_length=500)
    timeout: Optional[float] = None


class BulkStatusRequest(CamelModel):
    specimen_ids: List[str]
    status: SpecimenStatus
    actor: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = Field(default=None, max_length=500)
    timeout: Optional[float] = None


class BatchRequest(CamelModel):
    specimen_ids: List[str]
    actor: str
    notes: Optional[str] = None
    timeout: Optional[float] = None


class LabelsRequest(CamelModel):
    specimen_ids: List[str]


@app.exception_handler(SpecimenError)
async def specimen_error_handler(request: Request, exc: SpecimenError):
    status_code = next(
        (code for error_cls, code in ERROR_STATUS_CODES if isinstance(exc, error_cls)),
        400,
    )
    logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(ReferenceLookupError)
async def reference_error_handler(request: Request, exc: ReferenceLookupError):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "specimen-lifecycle-api",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.post("/api/v1/specimens", status_code=201)
def create_specimen(body: CreateSpecimenRequest, uow=Depends(get_uow)):
    cmd = commands.CreateSpecimen(**body.model_dump())
    [specimen_id] = messagebus.handle(cmd, uow)
    return views.get_specimen(specimen_id, uow)


@app.post("/api/v1/specimens/from-order", status_code=201)
def create_specimen_from_order(
    body: CreateFromOrderRequest,
    uow=Depends(get_uow),
    order_lookup=Depends(get_order_lookup),
):
    """Create a specimen with patient and tests taken from the order service."""
    order = order_lookup.get(body.order_ref)
    cmd = commands.CreateSpecimen(
        patient_ref=order["patientRef"],
        test_refs=order["testRefs"],
        **body.model_dump(),
    )
    [specimen_id] = messagebus.handle(cmd, uow)
    logger.info(f"Specimen {specimen_id} created for order {order['orderNumber']}")
    return views.get_specimen(specimen_id, uow)


@app.get("/api/v1/specimens")
def list_specimens(
    status: Optional[SpecimenStatus] = None,
    priority: Optional[SpecimenPriority] = None,
    specimen_type: Optional[SpecimenType] = Query(default=None, alias="specimenType"),
    patient_ref: Optional[str] = Query(default=None, alias="patientRef"),
    order_ref: Optional[str] = Query(default=None, alias="orderRef"),
    collected_by_ref: Optional[str] = Query(default=None, alias="collectedByRef"),
    date_from: Optional[datetime] = Query(default=None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(default=None, alias="dateTo"),
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200, alias="pageSize"),
    uow=Depends(get_uow),
):
    filters = views.SpecimenFilters(
        status=status,
        priority=priority,
        specimen_type=specimen_type,
        patient_ref=patient_ref,
        order_ref=order_ref,
        collected_by_ref=collected_by_ref,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    return views.find_specimens(filters, uow, page=page, page_size=page_size)


@app.get("/api/v1/specimens/search")
def search_specimens(q: str = Query(min_length=1), limit: int = Query(default=20, ge=1, le=200), uow=Depends(get_uow)):
    return views.search_specimens(q, uow, limit=limit)


@app.get("/api/v1/specimens/queue")
def pending_collections_queue(limit: int = Query(default=50, ge=1, le=500), uow=Depends(get_uow)):
    return views.pending_collections_queue(uow, limit=limit)


@app.get("/api/v1/specimens/status-counts")
def status_counts(uow=Depends(get_uow)):
    return views.status_counts(uow)


@app.get("/api/v1/specimens/statistics")
def collection_statistics(
    date_from: Optional[datetime] = Query(default=None, alias="dateFrom"),
    date_to: Optional[datetime] = Query(default=None, alias="dateTo"),
    uow=Depends(get_uow),
):
    return views.collection_statistics(uow, date_from=date_from, date_to=date_to)


@app.post("/api/v1/specimens/labels")
def print_labels(body: LabelsRequest, uow=Depends(get_uow)):
    return views.labels(body.specimen_ids, uow)


@app.get("/api/v1/specimens/barcode/{barcode}")
def get_specimen_by_barcode(barcode: str, uow=Depends(get_uow)):
    return views.get_by_barcode(barcode, uow)


@app.get("/api/v1/specimens/{specimen_id}")
def get_specimen(specimen_id: str, uow=Depends(get_uow)):
    return views.get_specimen(specimen_id, uow)


@app.get("/api/v1/specimens/{specimen_id}/label")
def get_label(specimen_id: str, uow=Depends(get_uow)):
    return views.label_data(specimen_id, uow)


@app.get("/api/v1/specimens/{specimen_id}/history")
def get_status_history(
    specimen_id: str,
    uow=Depends(get_uow),
    actor_directory=Depends(get_actor_directory),
):
    return views.status_history_display(specimen_id, uow, actor_directory)


@app.post("/api/v1/specimens/{specimen_id}/collect")
def confirm_collection(specimen_id: str, body: ConfirmCollectionRequest, uow=Depends(get_uow)):
    cmd = commands.ConfirmCollection(
        specimen_id=specimen_id,
        actor=body.actor,
        actual_volume=body.actual_volume,
        notes=body.notes,
        quality_checks=tuple(
            commands.QualityCheckInput(check_type=c.check_type, result=c.result, notes=c.notes)
            for c in body.quality_checks
        ),
        timeout=body.timeout,
    )
    messagebus.handle(cmd, uow)
    return views.get_specimen(specimen_id, uow)


@app.post("/api/v1/specimens/{specimen_id}/transition")
def transition_specimen(specimen_id: str, body: TransitionRequest, uow=Depends(get_uow)):
    cmd = commands.TransitionSpecimen(
        specimen_id=specimen_id,
        requested=body.status,
        actor=body.actor,
        notes=body.notes,
        rejection_reason=body.rejection_reason,
        timeout=body.timeout,
    )
    messagebus.handle(cmd, uow)
    return views.get_specimen(specimen_id, uow)


@app.post("/api/v1/specimens/{specimen_id}/quality-checks", status_code=201)
def record_quality_check(specimen_id: str, body: QualityCheckRequest, uow=Depends(get_uow)):
    cmd = commands.RecordQualityCheck(
        specimen_id=specimen_id,
        check_type=body.check_type,
        result=body.result,
        actor=body.actor,
        notes=body.notes,
        timeout=body.timeout,
    )
    messagebus.handle(cmd, uow)
    return views.get_specimen(specimen_id, uow)


def _bulk_response(result):
    return {"matchedCount": result.matched_count, "modifiedCount": result.modified_count}


@app.post("/api/v1/specimens/bulk-status")
def bulk_status(body: BulkStatusRequest, uow=Depends(get_uow)):
    cmd = commands.BulkTransition(
        specimen_ids=body.specimen_ids,
        requested=body.status,
        actor=body.actor,
        notes=body.notes,
        rejection_reason=body.rejection_reason,
        timeout=body.timeout,
    )
    [result] = messagebus.handle(cmd, uow)
    return _bulk_response(result)


@app.post("/api/v1/specimens/receive")
def receive_samples(body: BatchRequest, uow=Depends(get_uow)):
    [result] = messagebus.handle(commands.ReceiveSamples(**body.model_dump()), uow)
    return _bulk_response(result)


@app.post("/api/v1/specimens/start-processing")
def start_processing(body: BatchRequest, uow=Depends(get_uow)):
    [result] = messagebus.handle(commands.StartProcessing(**body.model_dump()), uow)
    return _bulk_response(result)


@app.post("/api/v1/specimens/complete-processing")
def complete_processing(body: BatchRequest, uow=Depends(get_uow)):
    [result] = messagebus.handle(commands.CompleteProcessing(**body.model_dump()), uow)
    return _bulk_response(result)
