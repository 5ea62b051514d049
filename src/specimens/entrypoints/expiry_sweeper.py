"""Periodic expiry sweep - expires overdue specimens when EXPIRY_POLICY=sweep."""

import logging
import time

from sqlalchemy import create_engine

import config
from specimens.adapters import orm
from specimens.domain import commands
from specimens.service_layer import messagebus
from specimens.service_layer.unit_of_work import SqlAlchemyUnitOfWork

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_once(uow=None) -> int:
    """Run a single sweep and return the number of expired specimens."""
    [expired] = messagebus.handle(commands.ExpireOverdueSpecimens(), uow or SqlAlchemyUnitOfWork())
    return expired


def main():
    """Main entry point for the expiry sweeper."""
    policy = config.get_expiry_policy()
    if policy != "sweep":
        logger.info(f"EXPIRY_POLICY={policy}, sweeper not needed")
        return

    logger.info("Initializing database schema and ORM mappers...")
    engine = create_engine(config.get_postgres_uri())
    orm.metadata.create_all(engine)
    orm.start_mappers()

    interval = config.get_expiry_sweep_interval()
    logger.info(f"Expiry sweeper started, sweeping every {interval}s")

    while True:
        try:
            run_once()
        except Exception:
            logger.exception("Expiry sweep failed, retrying next interval")
        time.sleep(interval)


if __name__ == "__main__":
    main()
