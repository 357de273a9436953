"""
store.py
========
Entity Store: a thin keyed-record API over one ORM table.

Filters are plain dicts of column -> value (`{"id": 3}`, `{"pat_id": 1,
"medicine_id": 2}`), patches are dicts of column -> new value. Every write
commits on its own; a unique or check constraint violation is rolled back
and surfaced as `Conflict`.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import Conflict


class EntityStore:

    def __init__(self, db: Session, model, label: Optional[str] = None):
        self.db = db
        self.model = model
        self.label = label or model.__name__

    def _query(self, filter: Optional[Dict[str, Any]] = None):
        return self.db.query(self.model).filter_by(**(filter or {}))

    def find(self, filter: Optional[Dict[str, Any]] = None) -> List[Any]:
        return self._query(filter).order_by(self.model.id).all()

    def find_one(self, filter: Dict[str, Any]) -> Optional[Any]:
        return self._query(filter).first()

    def find_in(self, field: str, values: Iterable[Any]) -> List[Any]:
        values = list(values)
        if not values:
            return []
        return self.db.query(self.model).filter(getattr(self.model, field).in_(values)).all()

    def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        return self._query(filter).count()

    def insert(self, record: Dict[str, Any]):
        obj = self.model(**record)
        self.db.add(obj)
        self._commit()
        self.db.refresh(obj)
        return obj

    def update_one(self, filter: Dict[str, Any], patch: Dict[str, Any]) -> Optional[Any]:
        obj = self.find_one(filter)
        if obj is None:
            return None
        for key, value in patch.items():
            setattr(obj, key, value)
        self._commit()
        self.db.refresh(obj)
        return obj

    def delete_one(self, filter: Dict[str, Any]) -> bool:
        obj = self.find_one(filter)
        if obj is None:
            return False
        self.db.delete(obj)
        self._commit()
        return True

    def find_max_field(self, field: str) -> Optional[Any]:
        return self.db.query(func.max(getattr(self.model, field))).scalar()

    def _commit(self):
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise Conflict(f"{self.label} already exists or violates a constraint") from exc
