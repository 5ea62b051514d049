"""Redis adapter for publishing specimen events following Cosmic Python pattern."""

import abc
import json
import logging
from dataclasses import asdict
from datetime import datetime

import redis

from config import get_redis_host_and_port
from specimens.domain.events import Event

logger = logging.getLogger(__name__)

SPECIMEN_EVENTS_CHANNEL = "lab:specimens"
QUALITY_ALERTS_CHANNEL = "lab:specimens:quality-alerts"


def serialize_event(event: Event) -> str:
    """Serialize event to JSON, handling datetime objects."""
    event_dict = asdict(event)

    for key, value in event_dict.items():
        if isinstance(value, datetime):
            event_dict[key] = value.isoformat()

    event_dict["event_type"] = type(event).__name__
    return json.dumps(event_dict)


class AbstractPublisher(abc.ABC):
    @abc.abstractmethod
    def publish(self, channel: str, event: Event):
        raise NotImplementedError


class RedisPublisher(AbstractPublisher):
    def __init__(self, client=None):
        self.client = client or redis.Redis(**get_redis_host_and_port())

    def publish(self, channel: str, event: Event):
        logger.info("publishing: channel=%s, event=%s", channel, event)
        self.client.publish(channel, serialize_event(event))
