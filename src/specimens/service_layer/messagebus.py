# pylint: disable=broad-except
"""Message bus for the specimen lifecycle service following Cosmic Python pattern."""

from __future__ import annotations
import logging
from typing import List, Dict, Callable, Type, Union, TYPE_CHECKING

from specimens.domain import commands, events
from specimens.domain.commands import Command
from specimens.domain.events import Event
from specimens.service_layer import handlers

if TYPE_CHECKING:
    from specimens.service_layer.unit_of_work import AbstractUnitOfWork

logger = logging.getLogger(__name__)

Message = Union[Command, Event]


def handle(
    message: Message,
    uow: AbstractUnitOfWork,
):
    """Handle message (command or event) with the appropriate handler."""
    results = []
    queue = [message]

    while queue:
        message = queue.pop(0)

        if isinstance(message, Event):
            handle_event(message, queue, uow)
        elif isinstance(message, Command):
            cmd_result = handle_command(message, queue, uow)
            results.append(cmd_result)
        else:
            raise Exception(f"{message} was not an Event or Command")

    return results


def handle_event(
    event: Event,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle event by calling all registered event handlers."""
    for handler in EVENT_HANDLERS[type(event)]:
        try:
            logger.debug(f"handling event {event} with handler {handler}")
            handler(event, uow=uow)
            queue.extend(uow.collect_new_events())
        except Exception:
            logger.exception("Exception handling event %s", event)
            continue


def handle_command(
    command: Command,
    queue: List[Message],
    uow: AbstractUnitOfWork,
):
    """Handle command by calling the registered command handler."""
    logger.debug(f"handling command {command}")
    try:
        handler = COMMAND_HANDLERS[type(command)]
        result = handler(command, uow=uow)
        queue.extend(uow.collect_new_events())
        return result
    except Exception:
        logger.exception("Exception handling command %s", command)
        raise


# Event handlers - multiple handlers can respond to same event
EVENT_HANDLERS = {
    events.SpecimenCreated: [handlers.publish_specimen_event],
    events.SpecimenStatusChanged: [handlers.publish_specimen_event],
    events.QualityCheckRecorded: [handlers.publish_specimen_event],
    events.QualityCheckFailed: [handlers.publish_quality_alert],
}  # type: Dict[Type[Event], List[Callable]]

# Command handlers - single handler per command type
COMMAND_HANDLERS = {
    commands.CreateSpecimen: handlers.create_specimen,
    commands.TransitionSpecimen: handlers.transition_specimen,
    commands.ConfirmCollection: handlers.confirm_collection,
    commands.BulkTransition: handlers.bulk_transition,
    commands.ReceiveSamples: handlers.receive_samples,
    commands.StartProcessing: handlers.start_processing,
    commands.CompleteProcessing: handlers.complete_processing,
    commands.RecordQualityCheck: handlers.record_quality_check,
    commands.ExpireOverdueSpecimens: handlers.expire_overdue_specimens,
}  # type: Dict[Type[Command], Callable]
