import logging
from datetime import timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    event,
    inspect,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import registry, relationship
from sqlalchemy.types import TypeDecorator

from specimens.domain import model

logger = logging.getLogger(__name__)

# SQLAlchemy 2.0 pattern: use registry
mapper_registry = registry()
metadata = mapper_registry.metadata


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back timezone-aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _enum(enum_cls):
    # persist the lowercase wire values, not the member names
    return Enum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


specimens = Table(
    "specimens",
    metadata,
    Column("specimen_id", String(32), primary_key=True),
    Column("barcode", String(32), unique=True, nullable=False),
    Column("order_ref", String(255), nullable=False, index=True),
    Column("patient_ref", String(255), nullable=False, index=True),
    Column("test_refs", JSON, nullable=False),
    Column("specimen_type", _enum(model.SpecimenType), nullable=False),
    Column("container_type", String(255), nullable=False),
    Column("volume", Float, nullable=False),
    Column("volume_unit", String(16), nullable=False, server_default="ml"),
    Column("status", _enum(model.SpecimenStatus), nullable=False, index=True),
    Column("priority", _enum(model.SpecimenPriority), nullable=False, index=True),
    Column("collection_method", _enum(model.CollectionMethod)),
    Column("scheduled_collection_time", UTCDateTime, index=True),
    Column("actual_collection_time", UTCDateTime, index=True),
    Column("collected_by_ref", String(255), index=True),
    Column("collection_notes", Text),
    Column("received_time", UTCDateTime, index=True),
    Column("received_by_ref", String(255)),
    Column("processing_start_time", UTCDateTime),
    Column("processing_end_time", UTCDateTime),
    Column("processed_by_ref", String(255)),
    Column("storage_location", String(255)),
    Column("storage_temperature", Float),
    Column("storage_conditions", String(255)),
    Column("expiry_date", UTCDateTime, index=True),
    Column("rejection_reason", String(500)),
    Column("rejected_by_ref", String(255)),
    Column("rejected_at", UTCDateTime),
    Column("created_by_ref", String(255), nullable=False),
    Column("last_modified_by_ref", String(255)),
    Column("created_at", UTCDateTime, nullable=False, index=True),
    Column("updated_at", UTCDateTime, nullable=False),
    Column("version_number", Integer, nullable=False, server_default="1"),
)

status_history = Table(
    "status_history",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("specimen_id", String(32), ForeignKey("specimens.specimen_id"), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("status", _enum(model.SpecimenStatus), nullable=False),
    Column("changed_by_ref", String(255), nullable=False),
    Column("changed_at", UTCDateTime, nullable=False),
    Column("notes", Text),
)

quality_checks = Table(
    "quality_checks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("specimen_id", String(32), ForeignKey("specimens.specimen_id"), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("check_type", String(255), nullable=False),
    Column("result", _enum(model.QualityResult), nullable=False),
    Column("checked_by_ref", String(255), nullable=False),
    Column("checked_at", UTCDateTime, nullable=False),
    Column("notes", Text),
)

# Identity Generator counters, one row per sequence name
counters = Table(
    "counters",
    metadata,
    Column("name", String(64), primary_key=True),
    Column("value", Integer, nullable=False),
)


def start_mappers():
    if inspect(model.Specimen, raiseerr=False) is not None:
        return
    logger.info("Starting mappers")
    status_changes_mapper = mapper_registry.map_imperatively(model.StatusChange, status_history)
    quality_checks_mapper = mapper_registry.map_imperatively(model.QualityCheck, quality_checks)
    mapper_registry.map_imperatively(
        model.Specimen,
        specimens,
        version_id_col=specimens.c.version_number,
        properties={
            "status_history": relationship(
                status_changes_mapper,
                order_by=status_history.c.position,
                collection_class=ordering_list("position"),
                cascade="all, delete-orphan",
                lazy="selectin",
            ),
            "quality_checks": relationship(
                quality_checks_mapper,
                order_by=quality_checks.c.position,
                collection_class=ordering_list("position"),
                cascade="all, delete-orphan",
                lazy="selectin",
            ),
        },
    )


@event.listens_for(model.Specimen, "load")
def receive_load(specimen, _):
    specimen.events = []
