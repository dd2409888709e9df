"""Generic persistence for expenses, subscriptions and budgets.

Filters are plain dicts. A key is either a column name (equality) or
``column__op`` where op is one of ``eq, ne, lt, lte, gt, gte, in``. Sort
orders are lists of column names, prefixed with ``-`` for descending.
Nothing here scopes by owner: callers put ``owner_id`` in the filter.
"""
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import ForbiddenError, NotFoundError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

_OPERATORS = {
    "eq": lambda col, v: col == v,
    "ne": lambda col, v: col != v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "in": lambda col, v: col.in_(list(v)),
}


def _column(model, name):
    col = model.__table__.columns.get(name)
    if col is None:
        raise ValidationError(f"Unknown field '{name}' for {model.__name__}", field=name)
    return getattr(model, name)


def _criteria(model, filters):
    criteria = []
    for key, value in (filters or {}).items():
        name, _, op = key.partition("__")
        op = op or "eq"
        if op not in _OPERATORS:
            raise ValidationError(f"Unsupported filter operator '{op}'", field=key)
        criteria.append(_OPERATORS[op](_column(model, name), value))
    return criteria


def _ordering(model, order_by):
    clauses = []
    for key in order_by or ():
        descending = key.startswith("-")
        col = _column(model, key.lstrip("-+"))
        clauses.append(col.desc() if descending else col.asc())
    return clauses


class LedgerStore:
    def __init__(self, session: Session):
        self.session = session

    def find(self, model, filters=None, order_by=None):
        return (
            self.session.query(model)
            .filter(*_criteria(model, filters))
            .order_by(*_ordering(model, order_by))
            .all()
        )

    def first(self, model, filters=None, order_by=None):
        return (
            self.session.query(model)
            .filter(*_criteria(model, filters))
            .order_by(*_ordering(model, order_by))
            .first()
        )

    def get(self, model, record_id):
        return self.session.get(model, record_id)

    def insert(self, model, fields):
        record = model(**fields)
        self.session.add(record)
        self.session.flush()
        return record

    def update_by_id(self, model, record_id, fields):
        record = self.get(model, record_id)
        if record is None:
            return None
        for name, value in fields.items():
            _column(model, name)
            setattr(record, name, value)
        self.session.flush()
        return record

    def update_where(self, model, filters, fields):
        values = {_column(model, name): value for name, value in fields.items()}
        count = (
            self.session.query(model)
            .filter(*_criteria(model, filters))
            .update(values, synchronize_session="fetch")
        )
        return count

    def increment(self, model, record_id, field, delta):
        """Add ``delta`` to a numeric column in one UPDATE statement."""
        col = _column(model, field)
        count = (
            self.session.query(model)
            .filter(model.id == record_id)
            .update({col: col + delta}, synchronize_session=False)
        )
        record = self.get(model, record_id)
        if record is not None:
            self.session.refresh(record, attribute_names=[field])
        return count

    def delete_by_id(self, model, record_id):
        record = self.get(model, record_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.flush()
        return True

    def total(self, model, field, filters=None):
        value = (
            self.session.query(func.coalesce(func.sum(_column(model, field)), 0))
            .filter(*_criteria(model, filters))
            .scalar()
        )
        return value

    def commit(self):
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Commit failed: %s", e)
            raise UpstreamError("Could not save changes") from e

    def rollback(self):
        self.session.rollback()


def load_owned(store, model, record_id, owner_id, noun):
    """Fetch a record by id and make sure ``owner_id`` may touch it."""
    record = store.get(model, record_id)
    if record is None:
        raise NotFoundError(f"{noun} not found")
    if record.owner_id != owner_id:
        raise ForbiddenError(f"Not authorized to access this {noun.lower()}")
    return record
