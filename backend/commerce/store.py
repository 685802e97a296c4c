# Overview: Document-store collaborator used by every lifecycle service.

"""
Document Store

WHY: The lifecycle services only ever talk to persistence through this
narrow contract (find / find_many / create / update / delete / count /
transaction), so they never touch the SQLAlchemy session directly and can
be handed a store at construction time.

SEMANTICS:
- Outside transaction(), every write is its own commit (retried on lock
  and optimistic-version conflicts).
- Inside transaction(), writes are only flushed; the outermost
  transaction() commits them together or rolls all of them back.
- Records are addressed by integer id or by document_id string.
- Filters are keyword arguments: field=value, or field__op=value with op
  in gt, gte, lt, lte, ne, in, isnull.
"""

from __future__ import annotations

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import ConflictError, InvalidStateError, NotFoundError, PersistenceError, ValidationError
from .extensions import db
from .services.concurrency import run_with_retry


_OPERATORS = {
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
    "ne": lambda col, v: col.is_not(None) if v is None else col != v,
    "in": lambda col, v: col.in_(list(v)),
    "isnull": lambda col, v: col.is_(None) if v else col.is_not(None),
}


class DocumentStore:
    def __init__(self, session=None):
        self._session = session
        self._depth = 0

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, model, ident):
        """Load one record by integer id or document_id; None when missing."""
        if ident is None:
            return None
        if isinstance(ident, int) and not isinstance(ident, bool):
            return self.session.query(model).filter(model.id == ident).first()
        return self.session.query(model).filter(model.document_id == str(ident)).first()

    def find(self, model, **filters):
        return self._query(model, filters).first()

    def find_many(self, model, order_by: str | None = None, **filters) -> list:
        query = self._query(model, filters)
        if order_by:
            descending = order_by.startswith("-")
            column = self._column(model, order_by.lstrip("-"))
            query = query.order_by(column.desc() if descending else column.asc())
        else:
            query = query.order_by(model.id.asc())
        return query.all()

    def count(self, model, **filters) -> int:
        return self._query(model, filters).count()

    # =========================================================================
    # WRITES
    # =========================================================================

    def create(self, model, data: dict):
        def _op():
            record = model(**data)
            self.session.add(record)
            return record

        return self._write(_op, model)

    def update(self, model, ident, data: dict, *, expect: dict | None = None):
        """
        Apply data to one record.

        expect: field values the freshly loaded record must still have,
        otherwise InvalidStateError (guards status transitions against a
        concurrent writer).
        """
        for key in list(data) + list(expect or {}):
            self._column(model, key)

        def _op():
            record = self.get(model, ident)
            if record is None:
                raise NotFoundError(f"{model.__name__} {ident} not found", id=str(ident))
            for key, value in (expect or {}).items():
                if getattr(record, key) != value:
                    raise InvalidStateError(
                        f"{model.__name__} {ident} is no longer {key}={value}", id=str(ident),
                    )
            for key, value in data.items():
                setattr(record, key, value)
            return record

        return self._write(_op, model)

    def delete(self, model, ident) -> None:
        def _op():
            record = self.get(model, ident)
            if record is None:
                raise NotFoundError(f"{model.__name__} {ident} not found", id=str(ident))
            self.session.delete(record)

        self._write(_op, model)

    def transaction(self, fn):
        """
        Run fn() under one commit boundary.

        All writes made by fn through this store become visible together
        when the outermost transaction returns, or none of them do.
        """
        self._depth += 1
        try:
            result = fn()
        except SQLAlchemyError as exc:
            self._depth -= 1
            if not self._depth:
                self.session.rollback()
            raise self._translate(exc) from exc
        except BaseException:
            self._depth -= 1
            if not self._depth:
                self.session.rollback()
            raise

        self._depth -= 1
        if not self._depth:
            try:
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                raise self._translate(exc) from exc
        return result

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _write(self, op, model):
        if self._depth:
            result = op()
            self.session.flush()
            return result

        def _attempt():
            result = op()
            self.session.commit()
            return result

        try:
            return run_with_retry(_attempt, self.session)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise self._translate(exc, model) from exc
        except (NotFoundError, InvalidStateError):
            self.session.rollback()
            raise

    def _query(self, model, filters: dict):
        query = self.session.query(model)
        for key, value in filters.items():
            field, _, op = key.partition("__")
            column = self._column(model, field)
            if not op:
                clause = column.is_(None) if value is None else column == value
            elif op in _OPERATORS:
                clause = _OPERATORS[op](column, value)
            else:
                raise ValidationError(f"Unsupported filter operator: {op}")
            query = query.filter(clause)
        return query

    @staticmethod
    def _column(model, field: str):
        mapper = inspect(model)
        if field not in mapper.columns and field not in mapper.relationships:
            raise ValidationError(f"Unknown field {model.__name__}.{field}")
        return getattr(model, field)

    @staticmethod
    def _translate(exc: SQLAlchemyError, model=None):
        name = model.__name__ if model is not None else "record"
        if isinstance(exc, IntegrityError):
            return ConflictError(f"Uniqueness constraint violated for {name}")
        return PersistenceError(f"Store call failed for {name}: {exc.__class__.__name__}")
