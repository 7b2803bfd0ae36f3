"""Remote-backed ordered collection.

Local rows are a cache of the store. They change only after the store has
confirmed a mutation; a failed call leaves them exactly as they were.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from retroboard.store import Row, Store, StoreError

log = logging.getLogger(__name__)


class ActionFailed(Exception):
    """A user action failed remotely. Carries a fixed, user-facing message."""
    title = "Error"

    def __init__(self, description: str):
        super().__init__(description)
        self.description = description

    def as_detail(self) -> dict[str, str]:
        return {"title": self.title, "description": self.description}


class RetroNotFound(Exception):
    """No retrospective with the requested id."""
    def __init__(self, retro_id: int):
        super().__init__(f"Retrospective {retro_id} not found")
        self.retro_id = retro_id


class RemoteCollection:
    def __init__(
        self, store: Store, table: str, *,
        parent_key: str, parent_id: int | None = None,
        order_by: str = "created_at", label: str = "item",
    ):
        self.store = store
        self.table = table
        self.parent_key = parent_key
        self.parent_id = parent_id
        self.order_by = order_by
        self.label = label
        self.rows: list[Row] = []

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self):
        return iter(self.rows)

    def find(self, row_id: Any) -> Row | None:
        key = str(row_id)
        return next((r for r in self.rows if str(r["id"]) == key), None)

    async def load(self) -> list[Row]:
        try:
            rows = await self.store.select(
                self.table, {self.parent_key: self.parent_id}, order_by=self.order_by,
            )
        except StoreError as exc:
            log.warning("Loading %s for %s=%s failed: %s", self.table, self.parent_key, self.parent_id, exc)
            raise ActionFailed(f"Failed to load {self.label}s") from exc
        self.rows = list(rows)
        return self.rows

    async def add(self, values: dict[str, Any]) -> Row:
        try:
            inserted = await self.store.insert(self.table, [{self.parent_key: self.parent_id, **values}])
        except StoreError as exc:
            log.warning("Adding to %s failed: %s", self.table, exc)
            raise ActionFailed(f"Failed to add {self.label}") from exc
        row = inserted[0]
        self.rows.append(row)
        return row

    async def remove(
        self, row_id: Any, *, cleanup: Callable[[int], Awaitable[Any]] | None = None,
    ) -> int:
        """Delete one row of this parent by id. Returns the number of rows the store deleted.

        A row of another parent is left alone and 0 is returned. *cleanup* runs
        with the id after the row itself is gone; local rows change only once
        both have succeeded.
        """
        try:
            key = int(row_id)
            deleted = await self.store.delete(self.table, {"id": key, self.parent_key: self.parent_id})
            if deleted and cleanup is not None:
                await cleanup(key)
        except (StoreError, ValueError) as exc:
            log.warning("Removing %s %s failed: %s", self.table, row_id, exc)
            raise ActionFailed(f"Failed to remove {self.label}") from exc
        key = str(row_id)
        self.rows = [r for r in self.rows if str(r["id"]) != key]
        return deleted
