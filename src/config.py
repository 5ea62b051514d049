"""Configuration settings for the specimen lifecycle tracker."""

import os
from datetime import timedelta


def get_postgres_uri():
    """Get PostgreSQL connection URI from environment variables."""
    host = os.environ.get("DB_HOST", "localhost")
    port = 5433 if host == "localhost" else 5432
    password = os.environ.get("DB_PASSWORD", "specimens_pass")
    user = os.environ.get("DB_USER", "specimens_user")
    db_name = os.environ.get("DB_NAME", "specimens_db")
    return f"postgresql://{user}:{password}@{host}:{port}/{db_name}"


def get_redis_host_and_port():
    """Get Redis connection details from environment variables."""
    host = os.environ.get("REDIS_HOST", "localhost")
    port = int(os.environ.get("REDIS_PORT", 6379))
    return dict(host=host, port=port)


def get_api_url():
    """Get specimen API URL from environment variables."""
    host = os.environ.get("API_HOST", "localhost")
    port = int(os.environ.get("API_PORT", 8000))
    return f"http://{host}:{port}"


def get_order_service_url():
    """Base URL of the order service used to resolve order references."""
    return os.environ.get("ORDER_SERVICE_URL", "http://localhost:8001")


def get_actor_directory_url():
    """Base URL of the user directory used to display audit actors."""
    return os.environ.get("ACTOR_DIRECTORY_URL", "http://localhost:8002")


def get_expiry_window():
    """Time a collected specimen stays usable before it expires."""
    return timedelta(days=int(os.environ.get("EXPIRY_WINDOW_DAYS", 7)))


def get_expiry_policy():
    """
    How overdue specimens become expired.

    - sweep: a periodic process expires overdue specimens
    - lazy: specimens are expired when loaded for a mutation
    - off: nothing expires automatically
    """
    policy = os.environ.get("EXPIRY_POLICY", "sweep").lower()
    if policy not in ("sweep", "lazy", "off"):
        raise ValueError(f"Unknown EXPIRY_POLICY {policy!r}")
    return policy


def get_expiry_sweep_interval():
    """Seconds between two expiry sweeps."""
    return int(os.environ.get("EXPIRY_SWEEP_INTERVAL", 300))


def get_identity_max_retries():
    """How often specimen creation retries after an identifier collision."""
    return int(os.environ.get("IDENTITY_MAX_RETRIES", 5))


def get_system_actor():
    """Actor reference recorded for transitions nobody requested by hand."""
    return os.environ.get("SYSTEM_ACTOR", "system")
