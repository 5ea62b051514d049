# pylint: disable=attribute-defined-outside-init
from __future__ import annotations
import abc
from datetime import datetime, timezone

from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.orm.session import Session

import config
from specimens.adapters import identity, redis_publisher, repository
from specimens.adapters.identity import QUERY_CANCELED
from specimens.domain.exceptions import ConcurrentModificationError, OperationTimeoutError

# PostgreSQL SQLSTATEs
SERIALIZATION_FAILURE = "40001"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AbstractUnitOfWork(abc.ABC):
    specimens: repository.AbstractRepository
    identities: identity.AbstractIdentityGenerator
    publisher: redis_publisher.AbstractPublisher
    clock = staticmethod(utc_now)

    def __init__(self):
        # events of committed specimens, kept across repeated `with uow:` blocks
        self.committed_events = []

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args):
        self.rollback()

    def commit(self):
        self._commit()
        for specimen in self.specimens.seen:
            while specimen.events:
                self.committed_events.append(specimen.events.pop(0))

    def now(self) -> datetime:
        return self.clock()

    def set_timeout(self, seconds):
        """Bound the remaining statements of this unit of work."""
        if seconds is not None:
            self._set_timeout(seconds)

    def collect_new_events(self):
        while self.committed_events:
            yield self.committed_events.pop(0)

    def _set_timeout(self, seconds):
        pass

    @abc.abstractmethod
    def _commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self):
        raise NotImplementedError


DEFAULT_SESSION_FACTORY = sessionmaker(
    bind=create_engine(
        config.get_postgres_uri(),
        isolation_level="REPEATABLE READ",
    )
)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(self, session_factory=DEFAULT_SESSION_FACTORY, publisher_impl=None, clock=None):
        super().__init__()
        self.session_factory = session_factory
        self.publisher_impl = publisher_impl
        if clock is not None:
            self.clock = clock

    def __enter__(self):
        self.session = self.session_factory()  # type: Session
        self.specimens = repository.SqlAlchemyRepository(self.session)
        self.identities = identity.SqlCounterIdentityGenerator(self.session)
        if self.publisher_impl is None:
            self.publisher_impl = redis_publisher.RedisPublisher()
        self.publisher = self.publisher_impl
        return super().__enter__()

    def __exit__(self, *args):
        super().__exit__(*args)
        self.session.close()

    def _commit(self):
        try:
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            raise ConcurrentModificationError(
                "Specimen was modified concurrently, re-read and retry"
            ) from e
        except OperationalError as e:
            self.session.rollback()
            _translate_operational_error(e)
            raise

    def _set_timeout(self, seconds):
        self.identities.timeout = seconds
        if self.session.get_bind().dialect.name == "postgresql":
            self.session.execute(text(f"SET LOCAL statement_timeout = {int(seconds * 1000)}"))

    def rollback(self):
        self.session.rollback()


def _translate_operational_error(error: OperationalError):
    pgcode = getattr(error.orig, "pgcode", None)
    if pgcode == SERIALIZATION_FAILURE:
        raise ConcurrentModificationError(
            "Specimen was modified concurrently, re-read and retry"
        ) from error
    if pgcode == QUERY_CANCELED:
        raise OperationTimeoutError(
            "Write timed out; specimen state is unknown, re-fetch before retrying"
        ) from error
