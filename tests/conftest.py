from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from pet_admin.errors import NotFound, RepositoryError
from pet_admin.query import Expansion, Ordering, Predicate, QueryFilter
from pet_admin.repository import ENTITIES, RELATIONS, AdminRepository, SQLAdminRepository

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _matches(row: Mapping[str, Any], predicate: Predicate) -> bool:
    value = row.get(predicate.field)
    if predicate.op == "eq":
        return value == predicate.value
    if value is None:
        return False
    if predicate.op == "ilike":
        return str(predicate.value).lower() in str(value).lower()
    if predicate.op == "gte":
        return value >= predicate.value
    return value <= predicate.value


class FakeRepository(AdminRepository):
    """In-memory repository that records every call it receives."""

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {entity: [] for entity in ENTITIES}
        self.calls: List[tuple] = []
        self.failures: Dict[tuple, Exception] = {}

    def seed(self, entity: str, *rows: Dict[str, Any]) -> None:
        for row in rows:
            self.tables[entity].append(dict(row))

    def fail(self, method: str, entity: str, error: Optional[Exception] = None) -> None:
        self.failures[(method, entity)] = error or RepositoryError("backend unavailable", entity=entity)

    def _record(self, method: str, entity: str, **details: Any) -> None:
        self.calls.append((method, entity, details))
        failure = self.failures.get((method, entity))
        if failure is not None:
            raise failure

    def _filtered(self, entity: str, query_filter: Optional[QueryFilter]) -> List[Dict[str, Any]]:
        rows = self.tables[entity]
        if query_filter is None:
            return list(rows)
        result = []
        for row in rows:
            if not all(_matches(row, predicate) for predicate in query_filter.where):
                continue
            if query_filter.any_of and not any(_matches(row, predicate) for predicate in query_filter.any_of):
                continue
            result.append(row)
        return result

    def _expand(self, entity: str, rows: List[Dict[str, Any]], expand: Optional[Expansion]) -> None:
        for related, columns in (expand or {}).items():
            local_key, remote_key, many = RELATIONS[(entity, related)]
            for row in rows:
                matches = [
                    {name: other.get(name) for name in columns}
                    for other in self.tables[related]
                    if other.get(remote_key) == row.get(local_key)
                ]
                row[related] = matches if many else (matches[0] if matches else None)

    def list(
        self,
        entity: str,
        query_filter: Optional[QueryFilter] = None,
        order_by: Sequence[Ordering] = (),
        limit: Optional[int] = None,
        offset: int = 0,
        expand: Optional[Expansion] = None,
    ) -> List[Dict[str, Any]]:
        self._record("list", entity, query_filter=query_filter, order_by=order_by, limit=limit, offset=offset)
        rows = [copy.deepcopy(row) for row in self._filtered(entity, query_filter)]
        for ordering in reversed(order_by):
            rows.sort(key=lambda row: row[ordering.field], reverse=ordering.descending)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        self._expand(entity, rows, expand)
        return rows

    def get(self, entity: str, record_id: Any, expand: Optional[Expansion] = None) -> Dict[str, Any]:
        self._record("get", entity, record_id=record_id)
        for row in self.tables[entity]:
            if row["id"] == record_id:
                found = copy.deepcopy(row)
                self._expand(entity, [found], expand)
                return found
        raise NotFound(entity, record_id)

    def count(self, entity: str, query_filter: Optional[QueryFilter] = None) -> int:
        self._record("count", entity, query_filter=query_filter)
        return len(self._filtered(entity, query_filter))

    def insert(self, entity: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        self._record("insert", entity, values=dict(values))
        row = dict(values)
        row["id"] = max((existing["id"] for existing in self.tables[entity]), default=0) + 1
        row.setdefault("created_at", NOW)
        self.tables[entity].append(row)
        return copy.deepcopy(row)

    def update(
        self,
        entity: str,
        record_id: Any,
        changes: Mapping[str, Any],
        expand: Optional[Expansion] = None,
    ) -> Dict[str, Any]:
        self._record("update", entity, record_id=record_id, changes=dict(changes))
        for row in self.tables[entity]:
            if row["id"] == record_id:
                row.update(changes)
                updated = copy.deepcopy(row)
                self._expand(entity, [updated], expand)
                return updated
        raise NotFound(entity, record_id)


@pytest.fixture
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def sql_repository():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    repository = SQLAdminRepository(engine)
    repository.create_schema()
    yield repository
    engine.dispose()
