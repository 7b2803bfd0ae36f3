"""Tests for the two store backends: SQLAlchemy and PostgREST-over-httpx."""
from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from retroboard.models import Base
from retroboard.rest_store import RestStore
from retroboard.store import NO_ROWS_CODE, NoRowsError, SqlStore, StoreError

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    try:
        yield SqlStore(session)
    finally:
        session.close()


def _rest_store(handler) -> RestStore:
    return RestStore("https://db.example/rest/v1", "anon-key", transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# SqlStore
# ---------------------------------------------------------------------------


class TestSqlStore:
    @pytest.mark.asyncio
    async def test_insert_returns_rows_with_ids_and_iso_timestamps(self, store):
        rows = await store.insert("retro", [{"name": "Sprint 1"}])
        assert len(rows) == 1
        assert isinstance(rows[0]["id"], int)
        assert rows[0]["name"] == "Sprint 1"
        assert isinstance(rows[0]["created_at"], str)
        assert "T" in rows[0]["created_at"]

    @pytest.mark.asyncio
    async def test_select_filters_and_orders(self, store):
        retro = (await store.insert("retro", [{"name": "R"}]))[0]
        section = (await store.insert("sections", [{"retro_id": retro["id"], "name": "kudos"}]))[0]
        other = (await store.insert("sections", [{"retro_id": retro["id"], "name": "improve"}]))[0]
        for text in ("first", "second", "third"):
            await store.insert("items", [{"section_id": section["id"], "content": text}])
        await store.insert("items", [{"section_id": other["id"], "content": "elsewhere"}])

        rows = await store.select("items", {"section_id": section["id"]}, order_by="created_at")
        assert [r["content"] for r in rows] == ["first", "second", "third"]

        newest = await store.select("items", {"section_id": section["id"]}, order_by="created_at",
                                    descending=True, limit=1)
        assert [r["content"] for r in newest] == ["third"]

    @pytest.mark.asyncio
    async def test_select_one_raises_no_rows(self, store):
        with pytest.raises(NoRowsError) as exc_info:
            await store.select_one("retro", {"id": 999})
        assert exc_info.value.code == NO_ROWS_CODE

    @pytest.mark.asyncio
    async def test_count(self, store):
        await store.insert("upvotes", [{"item_id": 1}, {"item_id": 1}, {"item_id": 2}])
        assert await store.count("upvotes", {"item_id": 1}) == 2
        assert await store.count("upvotes", {"item_id": 3}) == 0

    @pytest.mark.asyncio
    async def test_delete_returns_count(self, store):
        await store.insert("upvotes", [{"item_id": 5}, {"item_id": 5}])
        assert await store.delete("upvotes", {"item_id": 5}) == 2
        assert await store.count("upvotes", {"item_id": 5}) == 0

    @pytest.mark.asyncio
    async def test_delete_without_filter_is_refused(self, store):
        with pytest.raises(StoreError):
            await store.delete("upvotes", {})

    @pytest.mark.asyncio
    async def test_unknown_table_and_column(self, store):
        with pytest.raises(StoreError):
            await store.select("nope")
        with pytest.raises(StoreError):
            await store.select("retro", {"colour": "red"})

    @pytest.mark.asyncio
    async def test_duplicate_section_is_a_unique_violation(self, store):
        await store.insert("sections", [{"retro_id": 1, "name": "kudos"}])
        with pytest.raises(StoreError) as exc_info:
            await store.insert("sections", [{"retro_id": 1, "name": "kudos"}])
        assert exc_info.value.code == "23505"
        # Session is usable again after the rollback
        assert len(await store.select("sections")) == 1

    @pytest.mark.asyncio
    async def test_upsert_returns_existing_row(self, store):
        first = await store.upsert("sections", {"retro_id": 1, "name": "kudos"}, ("retro_id", "name"))
        second = await store.upsert("sections", {"retro_id": 1, "name": "kudos"}, ("retro_id", "name"))
        assert first["id"] == second["id"]
        assert await store.count("sections", {"retro_id": 1}) == 1

    @pytest.mark.asyncio
    async def test_ensure_is_idempotent(self, store):
        keys = ("retro_id", "name")
        rows = [await store.ensure("sections", {"retro_id": 7, "name": "improve"}, keys) for _ in range(3)]
        assert len({r["id"] for r in rows}) == 1
        assert await store.count("sections", {"retro_id": 7}) == 1


# ---------------------------------------------------------------------------
# RestStore
# ---------------------------------------------------------------------------


class TestRestStore:
    @pytest.mark.asyncio
    async def test_select_builds_postgrest_query(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"id": 1, "content": "a"}])

        async with _rest_store(handler) as store:
            rows = await store.select("items", {"section_id": 4}, order_by="created_at", limit=10)

        assert rows == [{"id": 1, "content": "a"}]
        request = seen[0]
        assert request.url.path == "/rest/v1/items"
        assert request.url.params["select"] == "*"
        assert request.url.params["section_id"] == "eq.4"
        assert request.url.params["order"] == "created_at.asc,id.asc"
        assert request.url.params["limit"] == "10"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["authorization"] == "Bearer anon-key"

    @pytest.mark.asyncio
    async def test_select_one_maps_no_rows(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["accept"] == "application/vnd.pgrst.object+json"
            return httpx.Response(406, json={"code": "PGRST116", "message": "0 rows"})

        async with _rest_store(handler) as store:
            with pytest.raises(NoRowsError):
                await store.select_one("retro", {"id": 3})

    @pytest.mark.asyncio
    async def test_error_response_carries_code(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(409, json={"code": "23505", "message": "duplicate key"})

        async with _rest_store(handler) as store:
            with pytest.raises(StoreError) as exc_info:
                await store.insert("sections", [{"retro_id": 1, "name": "kudos"}])
        assert exc_info.value.code == "23505"
        assert "duplicate key" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_failure_becomes_store_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _rest_store(handler) as store:
            with pytest.raises(StoreError) as exc_info:
                await store.select("retro")
        assert exc_info.value.code == "network"

    @pytest.mark.asyncio
    async def test_insert_asks_for_representation(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.headers["prefer"] == "return=representation"
            body = json.loads(request.content)
            return httpx.Response(201, json=[{"id": 9, **body[0]}])

        async with _rest_store(handler) as store:
            rows = await store.insert("retro", [{"name": "Sprint 9"}])
        assert rows == [{"id": 9, "name": "Sprint 9"}]

    @pytest.mark.asyncio
    async def test_delete_and_count(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "DELETE":
                assert request.url.params["item_id"] == "eq.2"
                return httpx.Response(200, json=[{"id": 1}, {"id": 2}])
            assert request.url.params["select"] == "id"
            return httpx.Response(200, json=[{"id": 4}, {"id": 5}, {"id": 6}])

        async with _rest_store(handler) as store:
            assert await store.delete("upvotes", {"item_id": 2}) == 2
            assert await store.count("upvotes", {"item_id": 2}) == 3

    @pytest.mark.asyncio
    async def test_upsert_falls_back_to_existing_row(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.method)
            if request.method == "POST":
                assert request.url.params["on_conflict"] == "retro_id,name"
                assert "resolution=ignore-duplicates" in request.headers["prefer"]
                return httpx.Response(201, json=[])
            return httpx.Response(200, json={"id": 12, "retro_id": 1, "name": "kudos"})

        async with _rest_store(handler) as store:
            row = await store.upsert("sections", {"retro_id": 1, "name": "kudos"}, ("retro_id", "name"))
        assert row["id"] == 12
        assert calls == ["POST", "GET"]
