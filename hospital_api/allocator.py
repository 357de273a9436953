"""
allocator.py
============
Sequential ID allocation: next id = current max `id` + 1 (1 when empty).

Two concurrent creations of the same entity type can compute the same
value; the unique index on `id` rejects the second insert with `Conflict`,
which the caller may retry.
"""

from sqlalchemy.orm import Session

from .store import EntityStore


class IdAllocator:

    def __init__(self, db: Session):
        self.db = db

    def next_id(self, model) -> int:
        current = EntityStore(self.db, model).find_max_field("id")
        return 1 if current is None else int(current) + 1
