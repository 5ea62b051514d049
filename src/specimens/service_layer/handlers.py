import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

import config
from specimens.adapters.redis_publisher import QUALITY_ALERTS_CHANNEL, SPECIMEN_EVENTS_CHANNEL
from specimens.domain import commands, events, model, state_machine
from specimens.domain.exceptions import (
    ConcurrentModificationError,
    IdentityExhaustionError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    TransitionError,
    ValidationError,
)
from specimens.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    matched_count: int = 0
    modified_count: int = 0


def create_specimen(
    command: commands.CreateSpecimen,
    uow: AbstractUnitOfWork
) -> str:
    """
    Register a pending specimen and assign its accession number and barcode.

    A unique violation on insert means an identifier was taken in the
    meantime; the whole registration is retried with fresh identifiers.

    Returns:
        specimen_id of the new specimen

    Raises:
        ValidationError: If the request is incomplete
        IdentityExhaustionError: If no unique identifiers could be assigned
    """
    max_retries = config.get_identity_max_retries()

    for attempt in range(1, max_retries + 1):
        with uow:
            uow.set_timeout(command.timeout)
            now = uow.now()
            specimen = model.Specimen.register(
                specimen_id=uow.identities.next_specimen_id(now),
                barcode=uow.identities.next_barcode(now),
                actor=command.actor,
                now=now,
                order_ref=command.order_ref,
                patient_ref=command.patient_ref,
                test_refs=command.test_refs,
                specimen_type=command.specimen_type,
                container_type=command.container_type,
                volume=command.volume,
                volume_unit=command.volume_unit,
                priority=command.priority,
                scheduled_collection_time=command.scheduled_collection_time,
                collection_method=command.collection_method,
                collection_notes=command.collection_notes,
                storage_location=command.storage_location,
                storage_temperature=command.storage_temperature,
                storage_conditions=command.storage_conditions,
                expiry_date=command.expiry_date,
            )
            specimen_id = uow.specimens.add(specimen)
            try:
                uow.commit()
            except IntegrityError as e:
                logger.warning(
                    f"Identifier collision for {specimen_id} (attempt {attempt}/{max_retries}): {e}"
                )
                continue

        logger.info(f"Created specimen {specimen_id} for order {command.order_ref}")
        return specimen_id

    raise IdentityExhaustionError(
        f"No unique specimen identifier after {max_retries} attempts"
    )


def transition_specimen(
    command: commands.TransitionSpecimen,
    uow: AbstractUnitOfWork
) -> str:
    """Apply one transition as a single atomic write."""
    with uow:
        uow.set_timeout(command.timeout)
        specimen = _get_for_update(uow, command.specimen_id)
        now = uow.now()

        if command.requested != model.SpecimenStatus.EXPIRED:
            _expire_if_overdue(specimen, uow, now, command.timeout)

        delta = state_machine.transition(
            specimen,
            command.requested,
            command.actor,
            now,
            notes=command.notes,
            rejection_reason=command.rejection_reason,
            expiry_window=config.get_expiry_window(),
        )
        specimen.apply(delta)
        uow.commit()

    logger.info(
        f"Specimen {command.specimen_id}: {delta.from_status.value} -> {delta.to_status.value} by {command.actor}"
    )
    return command.specimen_id


def confirm_collection(
    command: commands.ConfirmCollection,
    uow: AbstractUnitOfWork
) -> str:
    """
    Confirm collection of a pending specimen.

    Sets the collection time and derived expiry date, optionally overwrites
    the volume with the measured one and appends the supplied quality checks.

    Raises:
        NotFoundError: If the specimen does not exist
        InvalidStateError: If the specimen is not pending
    """
    with uow:
        uow.set_timeout(command.timeout)
        specimen = _get_for_update(uow, command.specimen_id)
        now = uow.now()

        _expire_if_overdue(specimen, uow, now, command.timeout)

        if specimen.status == model.SpecimenStatus.COLLECTED:
            raise InvalidStateError(f"Sample {command.specimen_id} has already been collected")
        if specimen.status != model.SpecimenStatus.PENDING:
            raise InvalidStateError(
                f"Sample {command.specimen_id} is {specimen.status.value}; only pending samples can be collected"
            )

        delta = state_machine.transition(
            specimen,
            model.SpecimenStatus.COLLECTED,
            command.actor,
            now,
            notes=command.notes or "Sample collected successfully",
            expiry_window=config.get_expiry_window(),
        )
        specimen.confirm_collection(
            delta,
            actual_volume=command.actual_volume,
            notes=command.notes,
            checks=command.quality_checks,
        )
        uow.commit()

    logger.info(f"Confirmed collection of specimen {command.specimen_id} by {command.actor}")
    return command.specimen_id


def bulk_transition(
    command: commands.BulkTransition,
    uow: AbstractUnitOfWork
) -> BulkResult:
    """
    Transition many specimens, one atomic write per specimen.

    Unknown specimens, refused transitions and write conflicts are skipped
    and logged; only valid transitions count as modified.
    """
    result = BulkResult()
    now = uow.now()

    for specimen_id in dict.fromkeys(command.specimen_ids):
        try:
            with uow:
                uow.set_timeout(command.timeout)
                specimen = uow.specimens.get(specimen_id)
                if specimen is None:
                    logger.info(f"Bulk {command.requested.value}: specimen {specimen_id} not found, skipped")
                    continue
                specimen.check_integrity()

                expirable = command.requested != model.SpecimenStatus.EXPIRED
                if expirable and _expire_if_overdue(specimen, uow, now, command.timeout):
                    logger.info(f"Bulk {command.requested.value}: specimen {specimen_id} expired, skipped")
                    continue

                if command.required_status is not None and specimen.status != command.required_status:
                    continue
                result.matched_count += 1

                delta = state_machine.transition(
                    specimen,
                    command.requested,
                    command.actor,
                    now,
                    notes=command.notes,
                    rejection_reason=command.rejection_reason,
                    expiry_window=config.get_expiry_window(),
                )
                specimen.apply(delta)
                uow.commit()
                result.modified_count += 1

        except (TransitionError, ValidationError) as e:
            logger.info(f"Bulk {command.requested.value}: specimen {specimen_id} skipped: {e}")
        except (ConcurrentModificationError, OperationTimeoutError) as e:
            logger.warning(f"Bulk {command.requested.value}: specimen {specimen_id} not written: {e}")

    logger.info(
        f"Bulk {command.requested.value} by {command.actor}: "
        f"matched={result.matched_count} modified={result.modified_count}"
    )
    return result


def receive_samples(command: commands.ReceiveSamples, uow: AbstractUnitOfWork) -> BulkResult:
    return bulk_transition(
        commands.BulkTransition(
            specimen_ids=command.specimen_ids,
            requested=model.SpecimenStatus.IN_RECEIPT,
            actor=command.actor,
            notes=command.notes or "Sample received in laboratory",
            required_status=model.SpecimenStatus.COLLECTED,
            timeout=command.timeout,
        ),
        uow,
    )


def start_processing(command: commands.StartProcessing, uow: AbstractUnitOfWork) -> BulkResult:
    return bulk_transition(
        commands.BulkTransition(
            specimen_ids=command.specimen_ids,
            requested=model.SpecimenStatus.PROCESSING,
            actor=command.actor,
            notes=command.notes or "Processing started",
            required_status=model.SpecimenStatus.IN_RECEIPT,
            timeout=command.timeout,
        ),
        uow,
    )


def complete_processing(command: commands.CompleteProcessing, uow: AbstractUnitOfWork) -> BulkResult:
    return bulk_transition(
        commands.BulkTransition(
            specimen_ids=command.specimen_ids,
            requested=model.SpecimenStatus.COMPLETED,
            actor=command.actor,
            notes=command.notes or "Processing completed",
            required_status=model.SpecimenStatus.PROCESSING,
            timeout=command.timeout,
        ),
        uow,
    )


def record_quality_check(
    command: commands.RecordQualityCheck,
    uow: AbstractUnitOfWork
) -> str:
    """
    Append a quality check; the status is left alone.

    Under the lazy expiry policy an overdue specimen is expired first; the
    check is still recorded against the expired specimen.
    """
    with uow:
        uow.set_timeout(command.timeout)
        specimen = _get_for_update(uow, command.specimen_id)
        now = uow.now()

        _expire_if_overdue(specimen, uow, now, command.timeout)

        specimen.record_quality_check(
            command.check_type,
            command.result,
            command.actor,
            now,
            command.notes,
        )
        uow.commit()

    logger.info(
        f"Recorded {command.result.value} {command.check_type} check on specimen {command.specimen_id}"
    )
    return command.specimen_id


def expire_overdue_specimens(
    command: commands.ExpireOverdueSpecimens,
    uow: AbstractUnitOfWork
) -> int:
    """
    Expire non-terminal specimens past their expiry date.

    Each specimen is expired in its own write; one that changed meanwhile is
    left for the next sweep.

    Returns:
        number of specimens expired
    """
    with uow:
        now = command.now or uow.now()
        overdue_ids = [s.specimen_id for s in uow.specimens.list_overdue(now, command.batch_size)]

    actor = command.actor or config.get_system_actor()
    expired = 0
    for specimen_id in overdue_ids:
        try:
            with uow:
                specimen = uow.specimens.get(specimen_id)
                if specimen is None or not specimen.is_overdue(now):
                    continue
                specimen.check_integrity()
                specimen.apply(
                    state_machine.transition(
                        specimen, model.SpecimenStatus.EXPIRED, actor, now, notes="Specimen expired"
                    )
                )
                uow.commit()
                expired += 1
        except (TransitionError, ConcurrentModificationError, OperationTimeoutError) as e:
            logger.warning(f"Expiry of specimen {specimen_id} skipped: {e}")

    logger.info(f"Expiry sweep at {now.isoformat()}: {expired} of {len(overdue_ids)} overdue specimens expired")
    return expired


def publish_specimen_event(event: events.Event, uow: AbstractUnitOfWork):
    """Publish specimen events for the ordering workflow and dashboards."""
    uow.publisher.publish(SPECIMEN_EVENTS_CHANNEL, event)


def publish_quality_alert(event: events.QualityCheckFailed, uow: AbstractUnitOfWork):
    logger.warning(
        f"Quality check {event.check_type} failed on specimen {event.specimen_id}: {event.notes}"
    )
    uow.publisher.publish(QUALITY_ALERTS_CHANNEL, event)


def _get_for_update(uow: AbstractUnitOfWork, specimen_id: str) -> model.Specimen:
    specimen = uow.specimens.get(specimen_id)
    if specimen is None:
        raise NotFoundError(f"Specimen {specimen_id} not found")
    specimen.check_integrity()
    return specimen


def _expire_if_overdue(specimen: model.Specimen, uow: AbstractUnitOfWork, now, timeout=None) -> bool:
    """
    Lazy expiry policy: persist the expiry before handling the request.

    The expiry commit ends the transaction, so the statement timeout is set
    again for the write that follows.
    """
    if config.get_expiry_policy() != "lazy" or not specimen.is_overdue(now):
        return False

    specimen.apply(
        state_machine.transition(
            specimen,
            model.SpecimenStatus.EXPIRED,
            config.get_system_actor(),
            now,
            notes="Specimen expired",
        )
    )
    uow.commit()
    uow.set_timeout(timeout)
    logger.info(f"Specimen {specimen.specimen_id} expired on access")
    return True
