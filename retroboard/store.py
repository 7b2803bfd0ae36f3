"""Tabular store interface shared by every view-model.

Rows cross this boundary as plain dicts with ISO-8601 timestamps, whichever
backend holds them. Two backends exist: :class:`SqlStore` (SQLAlchemy, local
database) and :class:`retroboard.rest_store.RestStore` (PostgREST over HTTP).
"""
from __future__ import annotations

import abc
import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from retroboard.models import TABLES, Base

log = logging.getLogger(__name__)

# Code PostgREST uses when a single-row request matches nothing.
NO_ROWS_CODE = "PGRST116"
UNIQUE_VIOLATION_CODE = "23505"
NOT_NULL_VIOLATION_CODE = "23502"

Row = dict[str, Any]


class StoreError(Exception):
    """A store operation failed."""
    def __init__(self, message: str, code: str = ""):
        super().__init__(message)
        self.code = code


class NoRowsError(StoreError):
    """A single-row lookup matched no rows."""
    def __init__(self, message: str = "No rows returned", code: str = NO_ROWS_CODE):
        super().__init__(message, code)


class Store(abc.ABC):
    """Select / insert / delete against named tables with equality filters."""

    @abc.abstractmethod
    async def select(
        self, table: str, filters: dict[str, Any] | None = None, *,
        order_by: str | None = None, descending: bool = False, limit: int | None = None,
    ) -> list[Row]:
        ...

    @abc.abstractmethod
    async def select_one(self, table: str, filters: dict[str, Any]) -> Row:
        """Return the single matching row or raise :class:`NoRowsError`."""

    @abc.abstractmethod
    async def insert(self, table: str, rows: list[Row]) -> list[Row]:
        ...

    @abc.abstractmethod
    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        ...

    @abc.abstractmethod
    async def count(self, table: str, filters: dict[str, Any]) -> int:
        ...

    @abc.abstractmethod
    async def upsert(self, table: str, values: Row, keys: tuple[str, ...]) -> Row:
        """Insert *values*, or return the existing row with the same *keys*."""

    async def ensure(self, table: str, values: Row, keys: tuple[str, ...]) -> Row:
        """Get-or-create keyed by *keys*.

        Looks the row up first; only a no-rows answer falls through to the
        upsert, any other failure propagates.
        """
        filters = {k: values[k] for k in keys}
        try:
            return await self.select_one(table, filters)
        except NoRowsError:
            log.debug("No %s row for %s, creating it", table, filters)
        return await self.upsert(table, values, keys)

    async def aclose(self) -> None:
        return None


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------


def _plain(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def row_dict(obj: Base) -> Row:
    return {col.key: _plain(getattr(obj, col.key)) for col in obj.__table__.columns}


class SqlStore(Store):
    """Store backed by a SQLAlchemy session. Every mutation commits."""

    def __init__(self, session: Session):
        self.session = session

    def _model(self, table: str) -> type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise StoreError(f"Unknown table '{table}'", code="42P01") from None

    def _criteria(self, model: type[Base], filters: dict[str, Any] | None) -> list:
        criteria = []
        for key, value in (filters or {}).items():
            if key not in model.__table__.columns:
                raise StoreError(f"Unknown column '{key}' on {model.__tablename__}", code="42703")
            criteria.append(getattr(model, key) == value)
        return criteria

    async def select(self, table, filters=None, *, order_by=None, descending=False, limit=None):
        model = self._model(table)
        query = select(model).where(*self._criteria(model, filters))
        if order_by is not None:
            if order_by not in model.__table__.columns:
                raise StoreError(f"Unknown column '{order_by}' on {table}", code="42703")
            column = getattr(model, order_by)
            query = query.order_by(column.desc() if descending else column.asc())
        # id breaks ties between rows created within the same clock tick
        query = query.order_by(model.id.desc() if descending else model.id.asc())
        if limit is not None:
            query = query.limit(limit)
        try:
            rows = self.session.execute(query).scalars().all()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc
        return [row_dict(r) for r in rows]

    async def select_one(self, table, filters):
        rows = await self.select(table, filters, limit=1)
        if not rows:
            raise NoRowsError(f"No {table} row matches {filters}")
        return rows[0]

    async def insert(self, table, rows):
        model = self._model(table)
        try:
            objs = [model(**row) for row in rows]
        except TypeError as exc:
            raise StoreError(str(exc), code="42703") from exc
        try:
            self.session.add_all(objs)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            message = str(exc.orig)
            code = UNIQUE_VIOLATION_CODE if "UNIQUE" in message.upper() else NOT_NULL_VIOLATION_CODE
            raise StoreError(message, code=code) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc
        for obj in objs:
            self.session.refresh(obj)
        return [row_dict(obj) for obj in objs]

    async def delete(self, table, filters):
        model = self._model(table)
        if not filters:
            raise StoreError(f"Refusing to delete from {table} without a filter")
        try:
            result = self.session.execute(delete(model).where(*self._criteria(model, filters)))
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc
        return result.rowcount or 0

    async def count(self, table, filters):
        model = self._model(table)
        query = select(func.count(model.id)).where(*self._criteria(model, filters))
        try:
            return self.session.execute(query).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    async def upsert(self, table, values, keys):
        try:
            return (await self.insert(table, [values]))[0]
        except StoreError as exc:
            if exc.code != UNIQUE_VIOLATION_CODE:
                raise
        log.info("Concurrent insert into %s detected, returning existing row", table)
        return await self.select_one(table, {k: values[k] for k in keys})
