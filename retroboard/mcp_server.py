from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from retroboard import services
from retroboard.collection import ActionFailed, RetroNotFound
from retroboard.config import get_settings
from retroboard.db import init_db
from retroboard.results import build_export, collect_results, export_filename, summarize
from retroboard.sections import (
    CATEGORIES,
    ITEM_CATEGORIES,
    PRIORITIES,
    SECTION_TITLES,
    ActionItemsView,
    SectionView,
)
from retroboard.utils import format_date

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def retroboard_lifespan(server: FastMCP) -> AsyncIterator[None]:
    if not get_settings().uses_rest:
        init_db()
    yield


mcp = FastMCP(
    "Retroboard",
    instructions=(
        "Retroboard runs team retrospectives. Use these tools to list and create "
        "retrospectives, add items to a category, upvote them, track action items "
        "and read the aggregated results. Start with list_retrospectives(), then "
        "get_board(retro_id) for the full board."
    ),
    lifespan=retroboard_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(exc: Exception) -> dict:
    if isinstance(exc, RetroNotFound):
        return {"error": f"Retrospective {exc.retro_id} not found"}
    if isinstance(exc, ActionFailed):
        return {"error": exc.description}
    return {"error": str(exc)}


def _check_category(category: str) -> dict | None:
    if category not in ITEM_CATEGORIES:
        return {"error": f"Unknown category '{category}'. Use one of: {', '.join(ITEM_CATEGORIES)}"}
    return None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("retroboard://overview")
def retroboard_overview() -> str:
    """Overview of Retroboard: data model, categories and workflow."""
    return json.dumps({
        "system": "Retroboard - team retrospectives",
        "data_model": {
            "retro": "A named retrospective session with a creation time.",
            "section": "One category of a retro. Created on first use, at most one per (retro, category).",
            "item": "Free-text entry in a regular section, with an upvote count.",
            "action_item": "Follow-up task with description, owner and priority.",
        },
        "categories": {name: SECTION_TITLES[name] for name in CATEGORIES},
        "priorities": list(PRIORITIES),
        "workflow": [
            "1. list_retrospectives() or create_retrospective(name).",
            "2. get_board(retro_id) to provision and read all sections.",
            "3. add_item / toggle_upvote / add_action_item to collect feedback.",
            "4. get_results(retro_id) or export_results(retro_id) for the summary.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Retrospectives
# ---------------------------------------------------------------------------


@mcp.tool()
async def list_retrospectives() -> list[dict] | dict:
    """List all retrospectives, newest first."""
    try:
        async with services.open_store() as store:
            return [services.retro_summary(r) for r in await services.list_retros(store)]
    except ActionFailed as exc:
        return _error(exc)


@mcp.tool()
async def create_retrospective(name: str) -> dict:
    """Create a new retrospective session. The name must not be blank."""
    try:
        async with services.open_store() as store:
            retro = await services.create_retro(store, name)
    except ActionFailed as exc:
        return _error(exc)
    if retro is None:
        return {"error": "Please enter a retro name"}
    return services.retro_summary(retro)


@mcp.tool()
async def get_board(retro_id: int) -> dict:
    """Open a retrospective: all five sections with items, upvotes and action items."""
    try:
        async with services.open_store() as store:
            return await services.open_board(store, retro_id)
    except (ActionFailed, RetroNotFound) as exc:
        return _error(exc)


# ---------------------------------------------------------------------------
# Tools: Items
# ---------------------------------------------------------------------------


@mcp.tool()
async def add_item(retro_id: int, category: str, content: str) -> dict:
    """Add a free-text item.

    Args:
        retro_id: Retrospective id.
        category: One of went_well, improve, kudos, product_design.
        content: Item text; blank text is rejected.
    """
    if err := _check_category(category):
        return err
    try:
        async with services.open_store() as store:
            await services.get_retro(store, retro_id)
            view = SectionView(store, retro_id, category, upvotes=True)
            await view.resolve()
            row = await view.add(content)
    except (ActionFailed, RetroNotFound) as exc:
        return _error(exc)
    if row is None:
        return {"error": "Item content must not be empty"}
    return services.item_out(row)


@mcp.tool()
async def remove_item(retro_id: int, category: str, item_id: int) -> dict:
    """Remove an item together with its upvotes."""
    if err := _check_category(category):
        return err
    try:
        async with services.open_store() as store:
            await services.get_retro(store, retro_id)
            view = SectionView(store, retro_id, category, upvotes=True)
            await view.resolve()
            deleted = await view.remove(item_id)
    except (ActionFailed, RetroNotFound) as exc:
        return _error(exc)
    return {"ok": True, "deleted": deleted}


@mcp.tool()
async def toggle_upvote(retro_id: int, category: str, item_id: int, has_upvoted: bool = False) -> dict:
    """Toggle an upvote. Pass has_upvoted=True to take back an upvote you gave earlier."""
    if err := _check_category(category):
        return err
    try:
        async with services.open_store() as store:
            await services.get_retro(store, retro_id)
            view = SectionView(store, retro_id, category, upvotes=True)
            await view.load()
            row = await view.toggle_upvote(item_id, has_upvoted=has_upvoted)
    except (ActionFailed, RetroNotFound) as exc:
        return _error(exc)
    return services.item_out(row)


# ---------------------------------------------------------------------------
# Tools: Action Items
# ---------------------------------------------------------------------------


@mcp.tool()
async def add_action_item(
    retro_id: int, description: str, owner: str,
    priority: str = "Medium", due_date: str | None = None,
) -> dict:
    """Add an action item. Priority is High, Medium or Low; the due date is not stored."""
    try:
        async with services.open_store() as store:
            await services.get_retro(store, retro_id)
            view = ActionItemsView(store, retro_id)
            await view.resolve()
            row = await view.add(description, owner, priority, due_date=due_date)
    except (ActionFailed, RetroNotFound, ValueError) as exc:
        return _error(exc)
    if row is None:
        return {"error": "Description and owner are required"}
    return services.action_item_out(row)


@mcp.tool()
async def remove_action_item(retro_id: int, action_id: int) -> dict:
    """Remove an action item."""
    try:
        async with services.open_store() as store:
            await services.get_retro(store, retro_id)
            view = ActionItemsView(store, retro_id)
            await view.resolve()
            deleted = await view.remove(action_id)
    except (ActionFailed, RetroNotFound) as exc:
        return _error(exc)
    return {"ok": True, "deleted": deleted}


# ---------------------------------------------------------------------------
# Tools: Results
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_results(retro_id: int) -> dict:
    """Aggregated results: every provisioned section with items, upvotes and counts."""
    try:
        async with services.open_store() as store:
            results = await collect_results(store, retro_id)
    except (ActionFailed, RetroNotFound) as exc:
        return _error(exc)
    return {**results, "date": format_date(results["created_at"]), "summary": summarize(results)}


@mcp.tool()
async def export_results(retro_id: int) -> dict:
    """The JSON export document and its suggested filename."""
    try:
        async with services.open_store() as store:
            results = await collect_results(store, retro_id)
    except (ActionFailed, RetroNotFound) as exc:
        return _error(exc)
    return {"filename": export_filename(results["name"]), "document": build_export(results)}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Retroboard MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
