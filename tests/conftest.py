# pylint: disable=redefined-outer-name
import itertools
from collections import defaultdict
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from specimens.adapters import orm
from specimens.adapters.identity import AbstractIdentityGenerator
from specimens.adapters.redis_publisher import AbstractPublisher
from specimens.adapters.repository import AbstractRepository
from specimens.domain import model, state_machine
from specimens.domain.model import SpecimenStatus
from specimens.service_layer.unit_of_work import AbstractUnitOfWork, SqlAlchemyUnitOfWork

NOW = datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

LIFECYCLE_PATH = [
    SpecimenStatus.PENDING,
    SpecimenStatus.COLLECTED,
    SpecimenStatus.IN_RECEIPT,
    SpecimenStatus.PROCESSING,
    SpecimenStatus.COMPLETED,
]


def build_specimen(
    specimen_id="SPL-2024-000001",
    status=SpecimenStatus.PENDING,
    now=NOW,
    actor="nurse-1",
    **fields,
):
    """Register a specimen and walk it through the lifecycle up to `status`."""
    data = dict(
        order_ref="ORD-1001",
        patient_ref="PAT-42",
        test_refs=["CBC"],
        specimen_type=model.SpecimenType.BLOOD,
        container_type="EDTA tube",
        volume=4.0,
    )
    data.update(fields)
    specimen = model.Specimen.register(
        specimen_id=specimen_id,
        barcode=f"BC-{specimen_id}",
        actor=actor,
        now=now,
        **data,
    )

    if status in LIFECYCLE_PATH:
        steps = LIFECYCLE_PATH[1:LIFECYCLE_PATH.index(status) + 1]
    else:
        steps = [status]
    for step in steps:
        specimen.apply(
            state_machine.transition(specimen, step, actor, now, rejection_reason="Haemolysed")
        )

    specimen.events.clear()
    return specimen


class FakeRepository(AbstractRepository):
    def __init__(self, specimens=()):
        super().__init__()
        self._specimens = {s.specimen_id: s for s in specimens}

    def _add(self, specimen):
        self._specimens[specimen.specimen_id] = specimen

    def _get(self, specimen_id):
        return self._specimens.get(specimen_id)

    def _get_by_barcode(self, barcode):
        return next((s for s in self._specimens.values() if s.barcode == barcode), None)

    def _list_overdue(self, now, limit):
        overdue = [s for s in self._specimens.values() if s.is_overdue(now)]
        return sorted(overdue, key=lambda s: (s.expiry_date, s.specimen_id))[:limit]


class FakeIdentityGenerator(AbstractIdentityGenerator):
    def __init__(self):
        self.counters = defaultdict(lambda: itertools.count(1))

    def _next_value(self, name):
        return next(self.counters[name])


class FakePublisher(AbstractPublisher):
    def __init__(self):
        self.published = []

    def publish(self, channel, event):
        self.published.append((channel, event))

    def channel(self, name):
        return [event for channel, event in self.published if channel == name]


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, specimens=(), now=NOW):
        super().__init__()
        self.specimens = FakeRepository(specimens)
        self.identities = FakeIdentityGenerator()
        self.publisher = FakePublisher()
        self.clock = lambda: now
        self.commits = 0
        self.timeouts = []

    def _commit(self):
        self.commits += 1

    def _set_timeout(self, seconds):
        self.timeouts.append(seconds)

    def rollback(self):
        pass


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_specimen():
    return build_specimen


@pytest.fixture
def make_fake_uow():
    """Fake unit of work preloaded with the given specimens."""
    def _make(*specimens, now=NOW):
        return FakeUnitOfWork(specimens, now=now)
    return _make


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def sqlite_session_factory(tmp_path):
    """File-backed SQLite database; each session gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'specimens.db'}",
        connect_args={"check_same_thread": False},
    )
    orm.metadata.create_all(engine)
    orm.start_mappers()

    yield sessionmaker(bind=engine)

    orm.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def sqlite_uow(sqlite_session_factory, fake_publisher):
    """Unit of work on SQLite with a fixed clock and an in-memory publisher."""
    def _make(now=NOW):
        return SqlAlchemyUnitOfWork(
            sqlite_session_factory,
            publisher_impl=fake_publisher,
            clock=lambda: now,
        )
    return _make
