"""Store backend speaking the PostgREST dialect (Supabase and friends)."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from retroboard.store import NO_ROWS_CODE, NoRowsError, Row, Store, StoreError

log = logging.getLogger(__name__)

_USER_AGENT = "Retroboard/1.0"
_SINGLE_OBJECT = "application/vnd.pgrst.object+json"
_RETURN_ROWS = "return=representation"


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _filter_params(filters: dict[str, Any] | None) -> list[tuple[str, str]]:
    params = []
    for key, value in (filters or {}).items():
        params.append((key, "is.null" if value is None else f"eq.{_literal(value)}"))
    return params


def _error_from(resp: httpx.Response) -> StoreError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    code = str(body.get("code") or resp.status_code)
    message = body.get("message") or resp.text or resp.reason_phrase
    if code == NO_ROWS_CODE:
        return NoRowsError(message)
    return StoreError(message, code=code)


class RestStore(Store):
    """Talks to ``<base_url>/<table>`` with PostgREST query syntax.

    Usage::

        async with RestStore("https://xyz.supabase.co/rest/v1", api_key) as store:
            rows = await store.select("retro", order_by="created_at", descending=True)
    """

    def __init__(
        self, base_url: str, api_key: str = "", *,
        timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"User-Agent": _USER_AGENT}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> RestStore:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self, method: str, table: str, *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None, headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, table, params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {table} failed: {exc}", code="network") from exc
        if resp.is_error:
            raise _error_from(resp)
        return resp

    async def select(self, table, filters=None, *, order_by=None, descending=False, limit=None):
        params = [("select", "*"), *_filter_params(filters)]
        direction = "desc" if descending else "asc"
        if order_by is not None:
            params.append(("order", f"{order_by}.{direction},id.{direction}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        resp = await self._request("GET", table, params=params)
        return resp.json()

    async def select_one(self, table, filters):
        params = [("select", "*"), *_filter_params(filters)]
        resp = await self._request("GET", table, params=params, headers={"Accept": _SINGLE_OBJECT})
        return resp.json()

    async def insert(self, table, rows):
        resp = await self._request("POST", table, json=rows, headers={"Prefer": _RETURN_ROWS})
        return resp.json()

    async def delete(self, table, filters):
        if not filters:
            raise StoreError(f"Refusing to delete from {table} without a filter")
        resp = await self._request(
            "DELETE", table, params=_filter_params(filters), headers={"Prefer": _RETURN_ROWS},
        )
        return len(resp.json() or [])

    async def count(self, table, filters):
        params = [("select", "id"), *_filter_params(filters)]
        resp = await self._request("GET", table, params=params)
        return len(resp.json())

    async def upsert(self, table, values, keys):
        params = [("on_conflict", ",".join(keys))]
        resp = await self._request(
            "POST", table, params=params, json=[values],
            headers={"Prefer": f"resolution=ignore-duplicates,{_RETURN_ROWS}"},
        )
        rows = resp.json()
        if rows:
            return rows[0]
        # Duplicate ignored: someone else created the row first.
        log.info("Upsert into %s hit an existing row, fetching it", table)
        return await self.select_one(table, {k: values[k] for k in keys})
