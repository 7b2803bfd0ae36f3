"""Section view-models: item sections (optionally upvotable) and action items."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from retroboard.collection import ActionFailed, RemoteCollection
from retroboard.store import Row, Store, StoreError

log = logging.getLogger(__name__)

ACTION_ITEMS = "action_items"
CATEGORIES = ("went_well", "improve", "kudos", ACTION_ITEMS, "product_design")
ITEM_CATEGORIES = tuple(c for c in CATEGORIES if c != ACTION_ITEMS)

PRIORITIES = ("High", "Medium", "Low")
DEFAULT_PRIORITY = "Medium"

SECTION_KEYS = ("retro_id", "name")

SECTION_TITLES = {
    "went_well": "What Went Well",
    "improve": "What Could Be Improved",
    "kudos": "Kudos & Recognition",
    ACTION_ITEMS: "Action Items",
    "product_design": "Product & Design Discussion",
}

SECTION_PROMPTS = {
    "went_well": (
        "What should we continue doing?",
        "What exceeded expectations?",
        "Which processes worked smoothly?",
    ),
    "improve": (
        "What slowed us down?",
        "What would we do differently?",
        "Which processes need refinement?",
    ),
    "kudos": (
        "Who went above and beyond?",
        "What achievements should we celebrate?",
        "Which collaboration was exceptional?",
    ),
    ACTION_ITEMS: (
        "What specific steps will we take?",
        "Who is responsible for each action?",
        "When should this be completed?",
    ),
    "product_design": (
        "How can we improve requirements clarity?",
        "What design decisions need discussion?",
        "How can we enhance cross-team collaboration?",
    ),
}


def section_title(name: str) -> str:
    return SECTION_TITLES.get(name) or name.replace("_", " ").title()


class _SectionBase:
    table = "items"
    label = "item"

    def __init__(self, store: Store, retro_id: int, category: str):
        self.store = store
        self.retro_id = retro_id
        self.category = category
        self.section: Row | None = None
        self.collection = RemoteCollection(store, self.table, parent_key="section_id", label=self.label)

    @property
    def section_id(self) -> int | None:
        return self.section["id"] if self.section else None

    @property
    def rows(self) -> list[Row]:
        return self.collection.rows

    @property
    def title(self) -> str:
        return section_title(self.category)

    async def resolve(self) -> Row:
        """Find or create the backing section row. Safe to call repeatedly."""
        try:
            self.section = await self.store.ensure(
                "sections", {"retro_id": self.retro_id, "name": self.category}, SECTION_KEYS,
            )
        except StoreError as exc:
            log.warning("Resolving section %s for retro %s failed: %s", self.category, self.retro_id, exc)
            raise ActionFailed(f"Failed to load {self.label}s") from exc
        self.collection.parent_id = self.section["id"]
        return self.section

    async def load(self) -> list[Row]:
        await self.resolve()
        return await self.collection.load()

    async def remove(self, row_id: Any) -> int:
        return await self.collection.remove(row_id)


class SectionView(_SectionBase):
    """Free-text items of one category, with optional upvote counts."""

    def __init__(self, store: Store, retro_id: int, category: str, *, upvotes: bool = False):
        super().__init__(store, retro_id, category)
        self.upvotes = upvotes

    async def load(self) -> list[Row]:
        rows = await super().load()
        if self.upvotes:
            await self._load_upvotes(rows)
        return rows

    async def _load_upvotes(self, rows: list[Row]) -> None:
        try:
            counts = await asyncio.gather(
                *(self.store.count("upvotes", {"item_id": row["id"]}) for row in rows)
            )
        except StoreError as exc:
            log.warning("Counting upvotes in section %s failed: %s", self.section_id, exc)
            raise ActionFailed("Failed to load items") from exc
        for row, count in zip(rows, counts):
            row["upvotes"] = count
            # No voter identity exists, so the flag always starts cleared.
            row["has_upvoted"] = False

    async def add(self, content: str) -> Row | None:
        """Add an item. Returns None, without touching the store, for blank text."""
        text = (content or "").strip()
        if not text or self.section_id is None:
            return None
        row = await self.collection.add({"content": text})
        if self.upvotes:
            row["upvotes"] = 0
            row["has_upvoted"] = False
        return row

    async def remove(self, row_id: Any) -> int:
        """Remove an item of this section, then its upvotes."""
        cleanup = self._delete_upvotes if self.upvotes else None
        return await self.collection.remove(row_id, cleanup=cleanup)

    async def _delete_upvotes(self, item_id: int) -> None:
        await self.store.delete("upvotes", {"item_id": item_id})

    async def toggle_upvote(self, item_id: Any, has_upvoted: bool | None = None) -> Row:
        """Flip the local upvote flag, adding or removing one upvote row.

        *has_upvoted* overrides the locally held flag, for callers that keep
        their own copy of the view state.
        """
        if not self.upvotes:
            raise RuntimeError(f"Upvotes are not enabled for section {self.category}")
        row = self.collection.find(item_id)
        if row is None:
            log.warning("Upvote toggle for unknown item %s in section %s", item_id, self.section_id)
            raise ActionFailed("Failed to update upvote")

        flag = row.get("has_upvoted", False) if has_upvoted is None else has_upvoted
        count = row.get("upvotes", 0)
        try:
            if flag:
                existing = await self.store.select("upvotes", {"item_id": row["id"]}, limit=1)
                if existing:
                    await self.store.delete("upvotes", {"id": existing[0]["id"]})
                count, flag = max(0, count - 1), False
            else:
                await self.store.insert("upvotes", [{"item_id": row["id"]}])
                count, flag = count + 1, True
        except StoreError as exc:
            log.warning("Toggling upvote on item %s failed: %s", item_id, exc)
            raise ActionFailed("Failed to update upvote") from exc
        row["upvotes"] = count
        row["has_upvoted"] = flag
        return row


class ActionItemsView(_SectionBase):
    """Action items (description, owner, priority) of one retrospective."""
    table = "action_items"
    label = "action item"

    def __init__(self, store: Store, retro_id: int):
        super().__init__(store, retro_id, ACTION_ITEMS)

    async def load(self) -> list[Row]:
        rows = await super().load()
        for row in rows:
            row["priority"] = row.get("priority") or DEFAULT_PRIORITY
        return rows

    async def add(
        self, description: str, owner: str,
        priority: str | None = DEFAULT_PRIORITY, due_date: str | None = None,
    ) -> Row | None:
        """Add an action item. Blank description or owner returns None.

        The due date is accepted but there is no column to keep it in.
        """
        description = (description or "").strip()
        owner = (owner or "").strip()
        if not description or not owner or self.section_id is None:
            return None
        priority = priority or DEFAULT_PRIORITY
        if priority not in PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
        if due_date:
            log.debug("Dropping due date %s for action item %r", due_date, description)
        row = await self.collection.add(
            {"description": description, "assigned_owner": owner, "priority": priority}
        )
        row["priority"] = row.get("priority") or DEFAULT_PRIORITY
        return row
