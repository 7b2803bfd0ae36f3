"""Results aggregation and export (JSON document, XLSX workbook).

The aggregator fans out one read per section, and per regular item one upvote
count. Reads are independent, so a results view can mix states from
different moments if other clients edit concurrently.
"""
from __future__ import annotations

import asyncio
import io
import logging
import re
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.worksheet.worksheet import Worksheet

from retroboard.collection import ActionFailed, RetroNotFound
from retroboard.sections import ACTION_ITEMS, DEFAULT_PRIORITY, section_title
from retroboard.store import NoRowsError, Row, Store, StoreError
from retroboard.utils import format_date, slugify

log = logging.getLogger(__name__)

RESULTS_FAILED = "Failed to load retrospective results"

_SHEET_UNSAFE_RE = re.compile(r"[\[\]:*?/\\]")

# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


async def _upvote_count(store: Store, item_id: int) -> int:
    """Upvotes of one item; an unreadable count shows as 0 rather than failing the results."""
    try:
        return await store.count("upvotes", {"item_id": item_id})
    except StoreError as exc:
        log.warning("Counting upvotes of item %s failed: %s", item_id, exc)
        return 0


async def _load_section(store: Store, section: Row) -> dict[str, Any]:
    base = {"id": section["id"], "name": section["name"], "title": section_title(section["name"])}
    if section["name"] == ACTION_ITEMS:
        rows = await store.select("action_items", {"section_id": section["id"]}, order_by="created_at")
        action_items = [{**row, "priority": row.get("priority") or DEFAULT_PRIORITY} for row in rows]
        return {**base, "items": [], "action_items": action_items}

    rows = await store.select("items", {"section_id": section["id"]}, order_by="created_at")
    counts = await asyncio.gather(*(_upvote_count(store, row["id"]) for row in rows))
    items = [{**row, "upvotes": count} for row, count in zip(rows, counts)]
    return {**base, "items": items, "action_items": None}


async def collect_results(store: Store, retro_id: int) -> dict[str, Any]:
    """Assemble a retrospective with all its sections, items and action items."""
    try:
        retro = await store.select_one("retro", {"id": retro_id})
    except NoRowsError as exc:
        raise RetroNotFound(retro_id) from exc
    except StoreError as exc:
        log.warning("Loading retro %s failed: %s", retro_id, exc)
        raise ActionFailed(RESULTS_FAILED) from exc

    try:
        sections = await store.select("sections", {"retro_id": retro_id}, order_by="id")
        loaded = await asyncio.gather(*(_load_section(store, s) for s in sections))
    except StoreError as exc:
        log.warning("Loading results for retro %s failed: %s", retro_id, exc)
        raise ActionFailed(RESULTS_FAILED) from exc

    return {
        "id": retro["id"],
        "name": retro["name"],
        "created_at": retro.get("created_at"),
        "sections": list(loaded),
    }


def section_count(section: dict[str, Any]) -> int:
    if section["name"] == ACTION_ITEMS:
        return len(section.get("action_items") or [])
    return len(section.get("items") or [])


def summarize(results: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        {"name": s["name"], "title": s["title"], "count": section_count(s)}
        for s in results["sections"]
    ]


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def build_export(results: dict[str, Any]) -> dict[str, Any]:
    sections = []
    for section in results["sections"]:
        if section["name"] == ACTION_ITEMS:
            items = [
                {
                    "description": item["description"],
                    "owner": item["assigned_owner"],
                    "priority": item["priority"],
                    "date": format_date(item.get("created_at")),
                }
                for item in section.get("action_items") or []
            ]
        else:
            items = [
                {"content": item["content"], "date": format_date(item.get("created_at"))}
                for item in section["items"]
            ]
        sections.append({"name": section["title"], "items": items})
    return {
        "retrospective": results["name"],
        "date": format_date(results.get("created_at")),
        "sections": sections,
    }


def export_filename(retro_name: str, extension: str = "json") -> str:
    return f"retro-results-{slugify(retro_name)}.{extension}"


def _style_sheet(worksheet: Worksheet) -> None:
    worksheet.freeze_panes = "A2"
    header_fill = PatternFill(fill_type="solid", fgColor="1F4E78")
    header_font = Font(color="FFFFFF", bold=True)
    for cell in worksheet[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    for col_cells in worksheet.columns:
        values = [str(cell.value) if cell.value is not None else "" for cell in col_cells]
        width = min(90, max(12, max(len(value) for value in values) + 2))
        worksheet.column_dimensions[col_cells[0].column_letter].width = width


def build_workbook(document: dict[str, Any]) -> Workbook:
    """Workbook with a summary sheet and one sheet per exported section."""
    workbook = Workbook()
    summary = workbook.active
    summary.title = "Summary"
    summary.append(["Section", "Items"])
    for section in document["sections"]:
        summary.append([section["name"], len(section["items"])])
    summary.append([])
    summary.append(["Retrospective", document["retrospective"]])
    summary.append(["Date", document["date"]])
    _style_sheet(summary)

    for section in document["sections"]:
        sheet = workbook.create_sheet(_SHEET_UNSAFE_RE.sub("-", section["name"])[:31] or "Section")
        columns = list(section["items"][0].keys()) if section["items"] else ["content", "date"]
        sheet.append([c.title() for c in columns])
        for item in section["items"]:
            sheet.append([item.get(c, "") for c in columns])
        _style_sheet(sheet)
    return workbook


def export_xlsx(document: dict[str, Any]) -> bytes:
    buffer = io.BytesIO()
    build_workbook(document).save(buffer)
    return buffer.getvalue()
