"""Tests for the MCP tools, called directly as plain coroutines."""
from __future__ import annotations

import json

import pytest

from retroboard import mcp_server
from retroboard.config import get_settings
from retroboard.db import init_db


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("RETROBOARD_DB", str(tmp_path / "mcp.db"))
    monkeypatch.setenv("RETROBOARD_BACKEND", "sql")
    get_settings.cache_clear()
    init_db()
    yield
    get_settings.cache_clear()


def test_overview_lists_categories():
    overview = json.loads(mcp_server.retroboard_overview())
    assert overview["categories"]["improve"] == "What Could Be Improved"
    assert overview["priorities"] == ["High", "Medium", "Low"]


@pytest.mark.asyncio
async def test_full_session():
    retro = await mcp_server.create_retrospective("Sprint 23 Retrospective")
    retro_id = retro["id"]

    board = await mcp_server.get_board(retro_id)
    assert len(board["sections"]) == 5

    item = await mcp_server.add_item(retro_id, "improve", "Deploy pipeline was flaky")
    assert item["upvotes"] == 0
    voted = await mcp_server.toggle_upvote(retro_id, "improve", item["id"])
    assert voted["upvotes"] == 1

    action = await mcp_server.add_action_item(retro_id, "Fix CI flake", "Alice", "High", due_date="2026-11-01")
    assert action["owner"] == "Alice"

    results = await mcp_server.get_results(retro_id)
    counts = {s["name"]: s["count"] for s in results["summary"]}
    assert counts["improve"] == 1
    assert counts["action_items"] == 1

    exported = await mcp_server.export_results(retro_id)
    assert exported["filename"] == "retro-results-sprint-23-retrospective.json"
    assert len(exported["document"]["sections"]) == 5

    assert (await mcp_server.remove_item(retro_id, "improve", item["id"]))["deleted"] == 1
    assert (await mcp_server.remove_action_item(retro_id, action["id"]))["deleted"] == 1


@pytest.mark.asyncio
async def test_errors_are_returned_not_raised():
    assert "error" in await mcp_server.create_retrospective("   ")
    assert "error" in await mcp_server.get_board(999)
    assert "error" in await mcp_server.add_item(1, "gossip", "x")

    retro = await mcp_server.create_retrospective("R")
    assert "error" in await mcp_server.add_action_item(retro["id"], "x", "Bo", "Urgent")
    assert "error" in await mcp_server.toggle_upvote(retro["id"], "kudos", 12345)
