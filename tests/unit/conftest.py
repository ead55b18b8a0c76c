from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from common.errors import HttpError
from common.rest import Operation, _format_value


def _row_matches(row: Dict[str, Any], op: Operation) -> bool:
    for f in op.filters:
        value = row.get(f.column)
        if f.op == "is":
            if f.value is None and value is not None:
                return False
        elif f.op == "eq":
            if value is None or _format_value(value) != _format_value(f.value):
                return False
        else:
            raise AssertionError(f"unsupported filter op {f.op}")
    return True


class InMemoryFetcher:
    """
    Stand-in for DualPathFetcher backed by plain dict tables.

    - Records every operation in `ops`.
    - `fail(method, table, exc)` queues an exception for the next matching call.
    - `gate_next_get(event, rows)` makes the next GET wait for `event` and
      answer with `rows`, for ordering tests.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.ops: List[Operation] = []
        self._failures: Dict[Tuple[str, str], List[Exception]] = {}
        self._gates: List[Tuple[asyncio.Event, List[Dict[str, Any]]]] = []
        self._next_id = 0

    def fail(self, method: str, table: str, exc: Exception, times: int = 1) -> None:
        self._failures.setdefault((method, table), []).extend([exc] * times)

    def gate_next_get(self, event: asyncio.Event, rows: List[Dict[str, Any]]) -> None:
        self._gates.append((event, rows))

    def writes(self, method: Optional[str] = None) -> List[Operation]:
        return [op for op in self.ops if op.is_write and (method is None or op.method == method)]

    async def execute(self, op: Operation, deadline: Optional[float] = None) -> Any:
        self.ops.append(op)
        queued = self._failures.get((op.method, op.table))
        if queued:
            raise queued.pop(0)

        if op.method == "GET" and self._gates:
            event, rows = self._gates.pop(0)
            await event.wait()
            return [dict(r) for r in rows]

        rows = self.tables.setdefault(op.table, [])
        if op.method == "GET":
            out = [r for r in rows if _row_matches(r, op)]
            if op.limit is not None:
                out = out[: op.limit]
            if op.single:
                if len(out) != 1:
                    raise HttpError(406, '{"code":"PGRST116"}')
                return dict(out[0])
            return [dict(r) for r in out]

        if op.method == "POST":
            row = dict(op.body)
            if row.get("id") is None:
                self._next_id += 1
                row["id"] = f"gen-{self._next_id}"
            rows.append(row)
            return [dict(row)] if op.returning else None

        matched = [r for r in rows if _row_matches(r, op)]
        if op.method == "PATCH":
            for r in matched:
                r.update(op.body)
            return [dict(r) for r in matched] if op.returning else None

        self.tables[op.table] = [r for r in rows if r not in matched]
        return None


@pytest.fixture
def fetcher() -> InMemoryFetcher:
    return InMemoryFetcher()
