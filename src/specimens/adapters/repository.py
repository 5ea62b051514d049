import abc
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy import select

from specimens.domain import model


class AbstractRepository(abc.ABC):
    def __init__(self):
        self.seen = set()  # type: Set[model.Specimen]

    def add(self, specimen: model.Specimen) -> str:
        self._add(specimen)
        self.seen.add(specimen)
        return specimen.specimen_id

    def get(self, specimen_id) -> Optional[model.Specimen]:
        specimen = self._get(specimen_id)
        if specimen:
            self.seen.add(specimen)
        return specimen

    def get_by_barcode(self, barcode) -> Optional[model.Specimen]:
        specimen = self._get_by_barcode(barcode)
        if specimen:
            self.seen.add(specimen)
        return specimen

    def list_overdue(self, now: datetime, limit: int) -> List[model.Specimen]:
        """Non-terminal specimens whose expiry date is at or before `now`."""
        specimens = self._list_overdue(now, limit)
        for specimen in specimens:
            self.seen.add(specimen)
        return specimens

    @abc.abstractmethod
    def _add(self, specimen: model.Specimen):
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, specimen_id) -> Optional[model.Specimen]:
        raise NotImplementedError

    @abc.abstractmethod
    def _get_by_barcode(self, barcode) -> Optional[model.Specimen]:
        raise NotImplementedError

    @abc.abstractmethod
    def _list_overdue(self, now: datetime, limit: int) -> List[model.Specimen]:
        raise NotImplementedError


class SqlAlchemyRepository(AbstractRepository):
    def __init__(self, session):
        super().__init__()
        self.session = session

    def _add(self, specimen):
        self.session.add(specimen)

    def _get(self, specimen_id):
        return self.session.query(model.Specimen).filter_by(specimen_id=specimen_id).first()

    def _get_by_barcode(self, barcode):
        return self.session.query(model.Specimen).filter_by(barcode=barcode).first()

    def _list_overdue(self, now, limit):
        stmt = (
            select(model.Specimen)
            .where(model.Specimen.status.not_in(list(model.TERMINAL_STATES)))
            .where(model.Specimen.expiry_date.is_not(None))
            .where(model.Specimen.expiry_date <= now)
            .order_by(model.Specimen.expiry_date, model.Specimen.specimen_id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt))
