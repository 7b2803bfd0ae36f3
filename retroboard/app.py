from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from retroboard import services
from retroboard.collection import ActionFailed, RetroNotFound
from retroboard.config import get_settings
from retroboard.db import init_db
from retroboard.results import build_export, collect_results, export_filename, export_xlsx, summarize
from retroboard.schemas import (
    ActionItemCreate,
    ActionItemOut,
    BoardOut,
    ItemCategory,
    ItemCreate,
    ItemOut,
    ResultsOut,
    RetroCreate,
    RetroOut,
    SectionOut,
    UpvoteToggle,
)
from retroboard.sections import ActionItemsView, SectionView
from retroboard.store import Store
from retroboard.utils import format_date

log = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not get_settings().uses_rest:
        init_db()
    yield


app = FastAPI(
    title="Retroboard",
    version="0.1.0",
    description=(
        "Team retrospectives: create sessions, collect items per category, upvote them, "
        "track action items and export the results. All endpoints return JSON."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Retrospectives", "description": "List, create and open retrospective sessions."},
        {"name": "Items", "description": "Free-text items and upvotes per category."},
        {"name": "Action Items", "description": "Follow-up tasks with owner and priority."},
        {"name": "Results", "description": "Aggregated results and exports."},
    ],
)

STATIC_DIR = Path(__file__).parent / "static"
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


async def get_store() -> AsyncGenerator[Store, None]:
    async with services.open_store() as store:
        yield store


@app.exception_handler(RetroNotFound)
async def retro_not_found_handler(request: Request, exc: RetroNotFound):
    return JSONResponse(status_code=404, content={"detail": "Retrospective not found"})


@app.exception_handler(ActionFailed)
async def action_failed_handler(request: Request, exc: ActionFailed):
    return JSONResponse(status_code=500, content={"detail": exc.as_detail()})


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


async def _section(store: Store, retro_id: int, category: str, *, load: bool = True) -> SectionView:
    await services.get_retro(store, retro_id)
    view = SectionView(store, retro_id, category, upvotes=True)
    if load:
        await view.load()
    else:
        await view.resolve()
    return view


async def _action_items(store: Store, retro_id: int, *, load: bool = True) -> ActionItemsView:
    await services.get_retro(store, retro_id)
    view = ActionItemsView(store, retro_id)
    if load:
        await view.load()
    else:
        await view.resolve()
    return view


# ---------------------------------------------------------------------------
# Routes: Pages
# ---------------------------------------------------------------------------


def _index() -> HTMLResponse:
    html_path = STATIC_DIR / "index.html"
    if not html_path.exists():
        return HTMLResponse("<h1>Retroboard</h1><p>index.html not found</p>", status_code=500)
    return HTMLResponse(html_path.read_text(encoding="utf-8"))


@app.get("/", response_class=HTMLResponse, include_in_schema=False)
async def home_page():
    return _index()


@app.get("/create", response_class=HTMLResponse, include_in_schema=False)
async def create_page():
    return _index()


@app.get("/retro/{retro_id}", response_class=HTMLResponse, include_in_schema=False)
async def retro_page(retro_id: int):
    return _index()


@app.get("/retro/{retro_id}/results", response_class=HTMLResponse, include_in_schema=False)
async def results_page(retro_id: int):
    return _index()


# ---------------------------------------------------------------------------
# Routes: Retrospectives
# ---------------------------------------------------------------------------


@app.get("/api/retros", response_model=list[RetroOut],
         tags=["Retrospectives"], summary="List retrospectives, newest first")
async def list_retros(store: Store = Depends(get_store)):
    return [services.retro_summary(r) for r in await services.list_retros(store)]


@app.post("/api/retros", response_model=RetroOut, status_code=201,
          tags=["Retrospectives"], summary="Create a retrospective")
async def create_retro(body: RetroCreate, store: Store = Depends(get_store)):
    retro = await services.create_retro(store, body.name)
    if retro is None:
        raise HTTPException(422, "Please enter a retro name")
    log.info("Created retrospective %s (%s)", retro["id"], retro["name"])
    return services.retro_summary(retro)


@app.get("/api/retros/{retro_id}", response_model=RetroOut,
         tags=["Retrospectives"], summary="Get a single retrospective")
async def get_retro(retro_id: int, store: Store = Depends(get_store)):
    return services.retro_summary(await services.get_retro(store, retro_id))


@app.get("/api/retros/{retro_id}/board", response_model=BoardOut,
         tags=["Retrospectives"], summary="Open a retrospective: provision and load all five sections")
async def get_board(retro_id: int, store: Store = Depends(get_store)):
    return await services.open_board(store, retro_id)


# ---------------------------------------------------------------------------
# Routes: Items
# ---------------------------------------------------------------------------


@app.get("/api/retros/{retro_id}/sections/{category}", response_model=SectionOut,
         tags=["Items"], summary="Load one item section with upvote counts")
async def get_section(retro_id: int, category: ItemCategory, store: Store = Depends(get_store)):
    return services.section_out(await _section(store, retro_id, category))


@app.post("/api/retros/{retro_id}/sections/{category}/items", response_model=ItemOut, status_code=201,
          tags=["Items"], summary="Add an item to a section")
async def add_item(retro_id: int, category: ItemCategory, body: ItemCreate,
                   store: Store = Depends(get_store)):
    view = await _section(store, retro_id, category, load=False)
    row = await view.add(body.content)
    if row is None:
        raise HTTPException(422, "Item content must not be empty")
    return services.item_out(row)


@app.delete("/api/retros/{retro_id}/sections/{category}/items/{item_id}",
            tags=["Items"], summary="Remove an item and its upvotes")
async def remove_item(retro_id: int, category: ItemCategory, item_id: int,
                      store: Store = Depends(get_store)):
    view = await _section(store, retro_id, category, load=False)
    deleted = await view.remove(item_id)
    return {"ok": True, "deleted": deleted}


@app.post("/api/retros/{retro_id}/sections/{category}/items/{item_id}/upvote", response_model=ItemOut,
          tags=["Items"], summary="Toggle an upvote on an item")
async def toggle_upvote(retro_id: int, category: ItemCategory, item_id: int, body: UpvoteToggle,
                        store: Store = Depends(get_store)):
    view = await _section(store, retro_id, category)
    if view.collection.find(item_id) is None:
        raise HTTPException(404, "Item not found")
    return services.item_out(await view.toggle_upvote(item_id, has_upvoted=body.has_upvoted))


# ---------------------------------------------------------------------------
# Routes: Action Items
# ---------------------------------------------------------------------------


@app.get("/api/retros/{retro_id}/action-items", response_model=SectionOut,
         tags=["Action Items"], summary="Load the action items section")
async def list_action_items(retro_id: int, store: Store = Depends(get_store)):
    return services.section_out(await _action_items(store, retro_id))


@app.post("/api/retros/{retro_id}/action-items", response_model=ActionItemOut, status_code=201,
          tags=["Action Items"], summary="Add an action item (due date is accepted but not stored)")
async def add_action_item(retro_id: int, body: ActionItemCreate, store: Store = Depends(get_store)):
    view = await _action_items(store, retro_id, load=False)
    row = await view.add(body.description, body.owner, body.priority, due_date=body.due_date)
    if row is None:
        raise HTTPException(422, "Description and owner are required")
    return services.action_item_out(row)


@app.delete("/api/retros/{retro_id}/action-items/{action_id}",
            tags=["Action Items"], summary="Remove an action item")
async def remove_action_item(retro_id: int, action_id: int, store: Store = Depends(get_store)):
    view = await _action_items(store, retro_id, load=False)
    deleted = await view.remove(action_id)
    return {"ok": True, "deleted": deleted}


# ---------------------------------------------------------------------------
# Routes: Results
# ---------------------------------------------------------------------------


@app.get("/api/retros/{retro_id}/results", response_model=ResultsOut,
         tags=["Results"], summary="Aggregated results with per-section counts")
async def get_results(retro_id: int, store: Store = Depends(get_store)):
    results = await collect_results(store, retro_id)
    return {
        **results,
        "date": format_date(results["created_at"]),
        "summary": summarize(results),
        "meta": services.page_meta(results, results=True),
    }


@app.get("/api/retros/{retro_id}/export", tags=["Results"], summary="Download the results as JSON")
async def export_json(retro_id: int, store: Store = Depends(get_store)):
    results = await collect_results(store, retro_id)
    return JSONResponse(build_export(results), headers=_attachment(export_filename(results["name"])))


@app.get("/api/retros/{retro_id}/export.xlsx", tags=["Results"], summary="Download the results as XLSX")
async def export_workbook(retro_id: int, store: Store = Depends(get_store)):
    results = await collect_results(store, retro_id)
    return Response(
        content=export_xlsx(build_export(results)),
        media_type=XLSX_MEDIA_TYPE,
        headers=_attachment(export_filename(results["name"], "xlsx")),
    )


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("retroboard.app:app", host="127.0.0.1", port=8002, reload=True)


if __name__ == "__main__":
    main()
