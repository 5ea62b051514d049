"""Errors raised by the specimen lifecycle core."""


class SpecimenError(Exception):
    """Base class for all recoverable specimen errors."""
    pass


class NotFoundError(SpecimenError):
    """Unknown specimen id or barcode."""
    pass


class ValidationError(SpecimenError):
    """Missing or malformed input, e.g. a rejection without a reason."""
    pass


class TransitionError(SpecimenError):
    """Base class for refused state transitions."""

    def __init__(self, specimen_id, current, requested, message=None):
        self.specimen_id = specimen_id
        self.current = current
        self.requested = requested
        super().__init__(
            message
            or f"Specimen {specimen_id}: transition {_value(current)} -> {_value(requested)} not permitted"
        )


class InvalidTransitionError(TransitionError):
    """The requested edge is not part of the lifecycle."""
    pass


class TerminalStateError(TransitionError):
    """The specimen is completed, cancelled, rejected or expired."""

    def __init__(self, specimen_id, current, requested):
        super().__init__(
            specimen_id,
            current,
            requested,
            f"Specimen {specimen_id} is in terminal state {_value(current)}",
        )


class InvalidStateError(SpecimenError):
    """A workflow precondition on the current status does not hold."""
    pass


class IdentityExhaustionError(SpecimenError):
    """No unique specimen id/barcode could be produced."""
    pass


class ConcurrentModificationError(SpecimenError):
    """The specimen changed between read and write; re-read and retry."""
    pass


class OperationTimeoutError(SpecimenError):
    """A write did not finish in time; the specimen state is unknown."""
    pass


class IntegrityViolation(Exception):
    """
    A persisted specimen breaks an invariant (e.g. empty status history).

    Not a SpecimenError: this is an internal consistency failure and is
    never repaired or retried.
    """
    pass


def _value(status):
    return getattr(status, "value", status)
