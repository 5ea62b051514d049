"""
Identity Generator - accession numbers and barcodes for new specimens.

Identifiers come from named counters incremented with one atomic UPDATE, so
concurrent callers never see the same value and nothing else is serialized.
"""

import abc
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, text, update
from sqlalchemy.exc import IntegrityError, OperationalError

from specimens.adapters.orm import counters
from specimens.domain.exceptions import IdentityExhaustionError, OperationTimeoutError

logger = logging.getLogger(__name__)

SPECIMEN_ID_COUNTER = "specimenId"
BARCODE_COUNTER = "barcode"

# PostgreSQL SQLSTATE for a statement cancelled by statement_timeout
QUERY_CANCELED = "57014"


def format_specimen_id(now: datetime, value: int) -> str:
    """SPL-YYYY-NNNNNN"""
    return f"SPL-{now.year}-{value:06d}"


def format_barcode(now: datetime, value: int) -> str:
    """SMP-YYYYMMDD-NNNNNN"""
    return f"SMP-{now:%Y%m%d}-{value:06d}"


class AbstractIdentityGenerator(abc.ABC):
    """Hands out unique specimen ids and barcodes."""

    def next_specimen_id(self, now: datetime) -> str:
        return format_specimen_id(now, self._next_value(SPECIMEN_ID_COUNTER))

    def next_barcode(self, now: datetime) -> str:
        return format_barcode(now, self._next_value(BARCODE_COUNTER))

    @abc.abstractmethod
    def _next_value(self, name: str) -> int:
        raise NotImplementedError


class SqlCounterIdentityGenerator(AbstractIdentityGenerator):
    """
    Counter rows in the `counters` table, created on first use.

    Increments run on their own autocommit connection: a value handed out is
    never given out again, even when the caller's transaction rolls back.
    `timeout` (seconds) bounds each increment on PostgreSQL.
    """

    def __init__(self, session, max_attempts: int = 5, timeout: Optional[float] = None):
        self.session = session
        self.max_attempts = max_attempts
        self.timeout = timeout

    def _next_value(self, name):
        engine = self.session.get_bind().execution_options(isolation_level="AUTOCOMMIT")

        for _ in range(self.max_attempts):
            with engine.connect() as conn, self._statement_timeout(conn):
                value = conn.execute(
                    update(counters)
                    .where(counters.c.name == name)
                    .values(value=counters.c.value + 1)
                    .returning(counters.c.value)
                ).scalar()
                if value is not None:
                    return value

                # first use: another caller may create the row at the same time
                try:
                    conn.execute(insert(counters).values(name=name, value=1))
                    return 1
                except IntegrityError:
                    logger.debug(f"Counter {name} created concurrently, retrying increment")

        raise IdentityExhaustionError(f"Could not advance counter {name} after {self.max_attempts} attempts")

    @contextmanager
    def _statement_timeout(self, conn):
        # autocommit has no transaction for SET LOCAL, so set and reset per connection
        if self.timeout is None or conn.dialect.name != "postgresql":
            yield
            return

        conn.execute(text(f"SET statement_timeout = {int(self.timeout * 1000)}"))
        try:
            yield
        except OperationalError as e:
            if getattr(e.orig, "pgcode", None) == QUERY_CANCELED:
                raise OperationTimeoutError(
                    "Identifier generation timed out; no specimen was created"
                ) from e
            raise
        finally:
            conn.execute(text("RESET statement_timeout"))
