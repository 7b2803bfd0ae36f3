"""Shared business logic for the Retroboard API, MCP server and CLI."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from retroboard.collection import ActionFailed, RetroNotFound
from retroboard.config import Settings, get_settings
from retroboard.db import session_scope
from retroboard.rest_store import RestStore
from retroboard.sections import (
    ACTION_ITEMS,
    CATEGORIES,
    DEFAULT_PRIORITY,
    SECTION_PROMPTS,
    ActionItemsView,
    SectionView,
)
from retroboard.store import NoRowsError, Row, SqlStore, Store, StoreError
from retroboard.utils import format_date

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Store factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def open_store(settings: Settings | None = None) -> AsyncIterator[Store]:
    """Yield the configured store; the SQL backend needs ``init_db()`` first."""
    settings = settings or get_settings()
    if settings.uses_rest:
        if not settings.rest_url:
            raise RuntimeError("RETROBOARD_REST_URL must be set when RETROBOARD_BACKEND=rest")
        async with RestStore(
            settings.rest_url, settings.rest_key, timeout=settings.request_timeout_seconds,
        ) as store:
            yield store
        return
    with session_scope() as session:
        yield SqlStore(session)


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def retro_summary(retro: Row) -> dict[str, Any]:
    return {
        "id": retro["id"], "name": retro["name"], "created_at": retro.get("created_at"),
        "date": format_date(retro.get("created_at")),
    }


def item_out(row: Row) -> dict[str, Any]:
    return {
        "id": row["id"], "content": row["content"], "created_at": row.get("created_at"),
        "upvotes": row.get("upvotes", 0), "has_upvoted": row.get("has_upvoted", False),
    }


def action_item_out(row: Row) -> dict[str, Any]:
    return {
        "id": row["id"], "description": row["description"], "owner": row["assigned_owner"],
        "priority": row.get("priority") or DEFAULT_PRIORITY, "created_at": row.get("created_at"),
    }


def section_out(view: SectionView | ActionItemsView) -> dict[str, Any]:
    is_actions = isinstance(view, ActionItemsView)
    return {
        "id": view.section_id,
        "name": view.category,
        "title": view.title,
        "prompts": list(SECTION_PROMPTS.get(view.category, ())),
        "items": [] if is_actions else [item_out(r) for r in view.rows],
        "action_items": [action_item_out(r) for r in view.rows] if is_actions else [],
    }


def page_meta(retro: Row, *, results: bool = False, base_url: str | None = None) -> dict[str, str]:
    base = (base_url if base_url is not None else get_settings().base_url).rstrip("/")
    name = retro["name"]
    if results:
        return {
            "title": f"{name} - Results Summary",
            "description": (
                f'View the complete results and insights from the "{name}" retrospective session. '
                "See team feedback, action items, and key takeaways."
            ),
            "url": f"{base}/retro/{retro['id']}/results",
        }
    return {
        "title": f"{name} - Agile Retrospective Tool",
        "description": (
            f'Join the "{name}" retrospective session. Collaborate with your team to reflect, '
            "learn, and improve together using our interactive retrospective tool."
        ),
        "url": f"{base}/retro/{retro['id']}",
    }


# ---------------------------------------------------------------------------
# Session directory
# ---------------------------------------------------------------------------


async def list_retros(store: Store) -> list[Row]:
    try:
        return await store.select("retro", order_by="created_at", descending=True)
    except StoreError as exc:
        log.warning("Listing retrospectives failed: %s", exc)
        raise ActionFailed("Failed to load retrospectives") from exc


async def create_retro(store: Store, name: str) -> Row | None:
    """Create a retrospective. Returns None, without a store call, for a blank name."""
    name = (name or "").strip()
    if not name:
        return None
    try:
        return (await store.insert("retro", [{"name": name}]))[0]
    except StoreError as exc:
        log.warning("Creating retrospective %r failed: %s", name, exc)
        raise ActionFailed("Failed to create retro") from exc


async def get_retro(store: Store, retro_id: int) -> Row:
    try:
        return await store.select_one("retro", {"id": retro_id})
    except NoRowsError as exc:
        raise RetroNotFound(retro_id) from exc
    except StoreError as exc:
        log.warning("Loading retrospective %s failed: %s", retro_id, exc)
        raise ActionFailed("Failed to load retrospective") from exc


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------


def section_view(store: Store, retro_id: int, category: str) -> SectionView | ActionItemsView:
    if category == ACTION_ITEMS:
        return ActionItemsView(store, retro_id)
    return SectionView(store, retro_id, category, upvotes=True)


async def open_board(store: Store, retro_id: int) -> dict[str, Any]:
    """Load a retrospective and provision + load all of its sections."""
    retro = await get_retro(store, retro_id)
    views = [section_view(store, retro_id, category) for category in CATEGORIES]
    await asyncio.gather(*(view.load() for view in views))
    return {
        "retro": retro_summary(retro),
        "sections": [section_out(view) for view in views],
        "meta": page_meta(retro),
    }
