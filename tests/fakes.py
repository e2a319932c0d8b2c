"""In-memory stand-in for the Supabase query builder used in tests."""

from __future__ import annotations

import asyncio
import copy
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from postgrest.exceptions import APIError

# Unique keys per table; a tuple entry is a composite key
UNIQUE_COLUMNS: dict[str, tuple[str | tuple[str, ...], ...]] = {
    "orders": ("order_number", "payment_id"),
    "vouchers": ("code",),
    "users": ("email",),
    "payments": (("payment_intent_id", "status"),),
    "voucher_usage": ("order_id",),
}


def concurrently(make_coro: Callable[[], Awaitable[Any]]) -> Callable[[], None]:
    """Interleave hook that runs a coroutine to completion on its own event loop."""

    def hook() -> None:
        with ThreadPoolExecutor(max_workers=1) as pool:
            pool.submit(lambda: asyncio.run(make_coro())).result()

    return hook


class FakeResponse:
    def __init__(self, data: Any) -> None:
        self.data = data
        self.count = len(data) if isinstance(data, list) else None


class FakeQuery:
    """Chainable query supporting the filters the services use."""

    def __init__(self, db: FakeSupabaseClient, table: str) -> None:
        self.db = db
        self.table = table
        self.action = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, str, Any]] = []
        self.ordering: tuple[str, bool] | None = None
        self.window: tuple[int, int] | None = None
        self.row_limit: int | None = None
        self.single_mode: str | None = None

    def select(self, *_: Any, **__: Any) -> FakeQuery:
        self.action = "select"
        return self

    def insert(self, payload: Any) -> FakeQuery:
        self.action = "insert"
        self.payload = payload
        return self

    def update(self, payload: dict[str, Any]) -> FakeQuery:
        self.action = "update"
        self.payload = payload
        return self

    def delete(self) -> FakeQuery:
        self.action = "delete"
        return self

    def eq(self, column: str, value: Any) -> FakeQuery:
        self.filters.append(("eq", column, value))
        return self

    def order(self, column: str, desc: bool = False) -> FakeQuery:
        self.ordering = (column, desc)
        return self

    def range(self, start: int, end: int) -> FakeQuery:
        self.window = (start, end)
        return self

    def limit(self, count: int) -> FakeQuery:
        self.row_limit = count
        return self

    def maybe_single(self) -> FakeQuery:
        self.single_mode = "maybe"
        return self

    def single(self) -> FakeQuery:
        self.single_mode = "single"
        return self

    def _matches(self, row: dict[str, Any]) -> bool:
        return all(row.get(column) == value for _, column, value in self.filters)

    def execute(self) -> FakeResponse | None:
        self.db.calls.append((self.table, self.action))
        failure = self.db.failures.get((self.table, self.action))
        if failure is not None:
            raise failure
        hook = self.db.interleave.pop((self.table, self.action), None)
        if hook is not None:
            hook()

        rows = self.db.tables.setdefault(self.table, [])

        if self.action == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self.db.insert_row(self.table, item) for item in items]
            return FakeResponse(copy.deepcopy(created))

        matched = [row for row in rows if self._matches(row)]

        if self.action == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResponse(copy.deepcopy(matched))

        if self.action == "delete":
            self.db.tables[self.table] = [row for row in rows if row not in matched]
            return FakeResponse(copy.deepcopy(matched))

        if self.ordering:
            column, desc = self.ordering
            matched.sort(key=lambda row: str(row.get(column) or ""), reverse=desc)
        if self.window:
            start, end = self.window
            matched = matched[start:end + 1]
        if self.row_limit is not None:
            matched = matched[: self.row_limit]

        if self.single_mode == "maybe":
            return FakeResponse(copy.deepcopy(matched[0])) if matched else None
        if self.single_mode == "single":
            if len(matched) != 1:
                raise APIError({"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"})
            return FakeResponse(copy.deepcopy(matched[0]))
        return FakeResponse(copy.deepcopy(matched))


class FakeSupabaseClient:
    """Tables are plain lists of dicts.

    ``failures`` injects errors per (table, action). ``interleave`` runs a
    callback once, just before the next matching query reads its rows, to
    simulate a concurrent writer.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.failures: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.interleave: dict[tuple[str, str], Callable[[], None]] = {}
        self._sequence = 0

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict[str, Any]]:
        return self.tables.get(name, [])

    def insert_row(self, table: str, item: dict[str, Any]) -> dict[str, Any]:
        rows = self.tables.setdefault(table, [])
        for key in UNIQUE_COLUMNS.get(table, ()):
            columns = key if isinstance(key, tuple) else (key,)
            value = tuple(item.get(c) for c in columns)
            if None not in value and any(tuple(row.get(c) for c in columns) == value for row in rows):
                name = "_".join(columns)
                shown = ", ".join(str(v) for v in value)
                raise APIError({
                    "code": "23505",
                    "message": f'duplicate key value violates unique constraint "{table}_{name}_key"',
                    "details": f"Key ({', '.join(columns)})=({shown}) already exists.",
                })

        # Monotonic timestamps keep created_at ordering deterministic
        self._sequence += 1
        now = datetime(2026, 1, 1, tzinfo=timezone.utc).timestamp() + self._sequence
        timestamp = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()
        row = {"id": str(uuid.uuid4()), "created_at": timestamp, "updated_at": timestamp}
        row.update(copy.deepcopy(item))
        rows.append(row)
        return row
