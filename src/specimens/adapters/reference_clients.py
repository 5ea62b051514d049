"""Clients for the order service and user directory this core refers to."""

import abc
import logging
from typing import Any, Dict, Optional

import requests

import config

logger = logging.getLogger(__name__)


class ReferenceLookupError(Exception):
    """Exception raised when an external reference cannot be resolved."""
    pass


class AbstractOrderLookup(abc.ABC):
    @abc.abstractmethod
    def get(self, order_ref: str) -> Dict[str, Any]:
        """
        Resolve an order reference.

        Returns:
            Dict with orderNumber, patientRef and testRefs

        Raises:
            ReferenceLookupError: If the order cannot be fetched
        """
        raise NotImplementedError


class AbstractActorDirectory(abc.ABC):
    @abc.abstractmethod
    def get(self, actor_ref: str) -> Dict[str, Any]:
        """
        Resolve an actor reference to {"displayName": ...}.

        Raises:
            ReferenceLookupError: If the actor cannot be fetched
        """
        raise NotImplementedError


def _get_json(url: str, timeout: int, what: str) -> Dict[str, Any]:
    logger.info(f"Fetching {what} from {url}")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.json()

    except requests.exceptions.HTTPError as e:
        if e.response is not None and e.response.status_code == 404:
            logger.error(f"{what} not found")
            raise ReferenceLookupError(f"{what} not found") from e
        logger.error(f"HTTP error fetching {what}: {e}")
        raise ReferenceLookupError(f"Failed to fetch {what}: {e}") from e

    except requests.exceptions.RequestException as e:
        logger.error(f"Network error fetching {what}: {e}")
        raise ReferenceLookupError(f"Network error: {e}") from e

    except ValueError as e:
        logger.error(f"Invalid JSON for {what}: {e}")
        raise ReferenceLookupError(f"Invalid response for {what}") from e


class HTTPOrderLookup(AbstractOrderLookup):
    """HTTP-based client for the order service."""

    def __init__(self, base_url: Optional[str] = None, timeout: int = 10):
        self.base_url = base_url or config.get_order_service_url()
        self.timeout = timeout

    def get(self, order_ref: str) -> Dict[str, Any]:
        data = _get_json(
            f"{self.base_url}/api/v1/orders/{order_ref}",
            self.timeout,
            f"order {order_ref}",
        )
        try:
            return {
                "orderNumber": data["orderNumber"],
                "patientRef": data["patientRef"],
                "testRefs": list(data.get("testRefs") or []),
            }
        except KeyError as e:
            raise ReferenceLookupError(f"Order {order_ref} response is missing {e}") from e


class HTTPActorDirectory(AbstractActorDirectory):
    """HTTP-based client for the user directory."""

    def __init__(self, base_url: Optional[str] = None, timeout: int = 5):
        self.base_url = base_url or config.get_actor_directory_url()
        self.timeout = timeout

    def get(self, actor_ref: str) -> Dict[str, Any]:
        data = _get_json(
            f"{self.base_url}/api/v1/users/{actor_ref}",
            self.timeout,
            f"actor {actor_ref}",
        )
        return {"displayName": data.get("displayName") or data.get("fullName") or actor_ref}
