from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    and_,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import ColumnElement

from .config import AdminConfig
from .errors import NotFound, RepositoryError
from .query import Expansion, Ordering, Predicate, QueryFilter

logger = logging.getLogger(__name__)

ENTITIES = ("users", "pets", "subscriptions", "qr_scans", "support_tickets")


class AdminRepository:
    """
    Row access for the five admin entities.

    Rows are plain mappings keyed by column name. ``expand`` attaches one level
    of related rows under the related entity's name: a single mapping (or
    ``None``) for a parent such as ``subscriptions -> users`` and a list for
    children such as ``users -> subscriptions``.

    Implementations raise ``RepositoryError`` when the backend fails and
    ``NotFound`` when ``get``/``update`` match no row.
    """

    def list(
        self,
        entity: str,
        query_filter: Optional[QueryFilter] = None,
        order_by: Sequence[Ordering] = (),
        limit: Optional[int] = None,
        offset: int = 0,
        expand: Optional[Expansion] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def get(self, entity: str, record_id: Any, expand: Optional[Expansion] = None) -> Dict[str, Any]:
        raise NotImplementedError

    def count(self, entity: str, query_filter: Optional[QueryFilter] = None) -> int:
        raise NotImplementedError

    def insert(self, entity: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def update(
        self,
        entity: str,
        record_id: Any,
        changes: Mapping[str, Any],
        expand: Optional[Expansion] = None,
    ) -> Dict[str, Any]:
        raise NotImplementedError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


metadata = MetaData()

users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255)),
    Column("email", String(255), index=True),
    Column("phone", String(32)),
    Column("whatsapp", String(32)),
    Column("instagram", String(255)),
    Column("address", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("email_verified", Boolean, nullable=False, default=False),
    Column("email_verified_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)

pets_table = Table(
    "pets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("name", String(255)),
    Column("username", String(255), unique=True),
    Column("type", String(32)),
    Column("breed", String(255)),
    Column("age", String(64)),
    Column("color", String(64)),
    Column("description", Text),
    Column("photo_url", Text),
    Column("show_phone", Boolean, nullable=False, default=True),
    Column("show_whatsapp", Boolean, nullable=False, default=True),
    Column("show_instagram", Boolean, nullable=False, default=False),
    Column("show_address", Boolean, nullable=False, default=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_lost", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)

subscriptions_table = Table(
    "subscriptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("plan_type", String(16), nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False, default="INR"),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("payment_method", String(64)),
    Column("payment_reference", String(255)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
)

qr_scans_table = Table(
    "qr_scans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("pet_id", Integer, ForeignKey("pets.id"), nullable=False, index=True),
    Column("scanned_at", DateTime(timezone=True), nullable=False, default=_utcnow, index=True),
    Column("scanner_city", String(255)),
    Column("whatsapp_shared", Boolean, nullable=False, default=False),
)

support_tickets_table = Table(
    "support_tickets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("pet_id", Integer, ForeignKey("pets.id")),
    Column("admin_id", Integer),
    Column("subject", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("category", String(32), nullable=False),
    Column("priority", String(16), nullable=False, default="medium"),
    Column("status", String(16), nullable=False, default="open"),
    Column("contact_email", String(255)),
    Column("contact_phone", String(32)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_utcnow),
    Column("resolved_at", DateTime(timezone=True)),
)

TABLES: Dict[str, Table] = {
    "users": users_table,
    "pets": pets_table,
    "subscriptions": subscriptions_table,
    "qr_scans": qr_scans_table,
    "support_tickets": support_tickets_table,
}

# (entity, related) -> (local column, related column, is a list of children)
RELATIONS = {
    ("users", "subscriptions"): ("id", "user_id", True),
    ("users", "pets"): ("id", "user_id", True),
    ("pets", "users"): ("user_id", "id", False),
    ("subscriptions", "users"): ("user_id", "id", False),
    ("qr_scans", "pets"): ("pet_id", "id", False),
    ("support_tickets", "users"): ("user_id", "id", False),
    ("support_tickets", "pets"): ("pet_id", "id", False),
}


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLAdminRepository(AdminRepository):
    """
    SQLAlchemy Core implementation over the tables declared above.

    Every public call opens its own connection, so the reads that make up a
    composite admin operation are independent snapshots.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self) -> None:
        metadata.create_all(self.engine, checkfirst=True)

    def list(
        self,
        entity: str,
        query_filter: Optional[QueryFilter] = None,
        order_by: Sequence[Ordering] = (),
        limit: Optional[int] = None,
        offset: int = 0,
        expand: Optional[Expansion] = None,
    ) -> List[Dict[str, Any]]:
        table = self._table(entity)
        stmt = select(table)
        for clause in self._criteria(table, query_filter):
            stmt = stmt.where(clause)
        for ordering in order_by:
            column = self._column(table, ordering.field)
            stmt = stmt.order_by(column.desc() if ordering.descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)

        context = f"list {entity} where {query_filter.describe() if query_filter else '*'}"
        with self._connection(entity, context) as connection:
            rows = [dict(row._mapping) for row in connection.execute(stmt)]
            if expand:
                self._expand(connection, entity, rows, expand)
        return rows

    def get(self, entity: str, record_id: Any, expand: Optional[Expansion] = None) -> Dict[str, Any]:
        self._table(entity)
        with self._connection(entity, f"get {entity} {record_id!r}") as connection:
            row = self._fetch_one(connection, entity, record_id)
            if expand:
                self._expand(connection, entity, [row], expand)
        return row

    def count(self, entity: str, query_filter: Optional[QueryFilter] = None) -> int:
        table = self._table(entity)
        stmt = select(func.count()).select_from(table)
        for clause in self._criteria(table, query_filter):
            stmt = stmt.where(clause)
        context = f"count {entity} where {query_filter.describe() if query_filter else '*'}"
        with self._connection(entity, context) as connection:
            return int(connection.execute(stmt).scalar_one())

    def insert(self, entity: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(entity)
        self._check_columns(table, values)
        with self._connection(entity, f"insert {entity}", write=True) as connection:
            result = connection.execute(table.insert().values(**values))
            new_id = result.inserted_primary_key[0]
            return self._fetch_one(connection, entity, new_id)

    def update(
        self,
        entity: str,
        record_id: Any,
        changes: Mapping[str, Any],
        expand: Optional[Expansion] = None,
    ) -> Dict[str, Any]:
        table = self._table(entity)
        self._check_columns(table, changes)
        with self._connection(entity, f"update {entity} {record_id!r}", write=True) as connection:
            result = connection.execute(table.update().where(table.c.id == record_id).values(**changes))
            if result.rowcount == 0:
                raise NotFound(entity, record_id)
            row = self._fetch_one(connection, entity, record_id)
            if expand:
                self._expand(connection, entity, [row], expand)
        return row

    @contextmanager
    def _connection(self, entity: str, context: str, write: bool = False) -> Iterator[Connection]:
        try:
            with (self.engine.begin() if write else self.engine.connect()) as connection:
                yield connection
        except SQLAlchemyError as exc:
            logger.warning("Query failed [%s]: %s", context, exc)
            raise RepositoryError(f"{context} failed: {exc}", entity=entity) from exc

    def _fetch_one(self, connection: Connection, entity: str, record_id: Any) -> Dict[str, Any]:
        table = TABLES[entity]
        row = connection.execute(select(table).where(table.c.id == record_id)).first()
        if row is None:
            raise NotFound(entity, record_id)
        return dict(row._mapping)

    def _expand(
        self,
        connection: Connection,
        entity: str,
        rows: List[Dict[str, Any]],
        expand: Expansion,
    ) -> None:
        for related, columns in expand.items():
            try:
                local_key, remote_key, many = RELATIONS[(entity, related)]
            except KeyError:
                raise ValueError(f"{entity} cannot be expanded with {related}") from None
            target = TABLES[related]
            keys = {row[local_key] for row in rows if row.get(local_key) is not None}
            grouped: Dict[Any, List[Dict[str, Any]]] = defaultdict(list)
            if keys:
                selected = [target.c[remote_key]] + [
                    self._column(target, name) for name in columns if name != remote_key
                ]
                stmt = select(*selected).where(target.c[remote_key].in_(sorted(keys))).order_by(target.c.id)
                for match in connection.execute(stmt):
                    data = dict(match._mapping)
                    key = data[remote_key] if remote_key in columns else data.pop(remote_key)
                    grouped[key].append(data)
            for row in rows:
                matches = grouped.get(row.get(local_key), [])
                row[related] = list(matches) if many else (matches[0] if matches else None)

    def _criteria(self, table: Table, query_filter: Optional[QueryFilter]) -> List[ColumnElement]:
        if query_filter is None:
            return []
        clauses = [self._clause(table, predicate) for predicate in query_filter.where]
        if query_filter.any_of:
            clauses.append(or_(*(self._clause(table, predicate) for predicate in query_filter.any_of)))
        return [and_(*clauses)] if clauses else []

    def _clause(self, table: Table, predicate: Predicate) -> ColumnElement:
        column = self._column(table, predicate.field)
        if predicate.op == "eq":
            return column.is_(None) if predicate.value is None else column == predicate.value
        if predicate.op == "ilike":
            return column.ilike(f"%{_escape_like(str(predicate.value))}%", escape="\\")
        if predicate.op == "gte":
            return column >= predicate.value
        return column <= predicate.value

    @staticmethod
    def _table(entity: str) -> Table:
        try:
            return TABLES[entity]
        except KeyError:
            raise ValueError(f"Unknown entity: {entity}") from None

    @staticmethod
    def _column(table: Table, name: str) -> Any:
        if name not in table.c:
            raise ValueError(f"Unknown column {table.name}.{name}")
        return table.c[name]

    def _check_columns(self, table: Table, values: Mapping[str, Any]) -> None:
        for name in values:
            self._column(table, name)


def build_repository_from_env(config: Optional[AdminConfig] = None) -> Optional[SQLAdminRepository]:
    cfg = config or AdminConfig.from_env()
    if not cfg.database_url:
        return None
    options: Dict[str, Any] = {"echo": cfg.echo_sql, "pool_pre_ping": True}
    if not cfg.database_url.startswith("sqlite"):
        options["pool_timeout"] = cfg.pool_timeout_seconds
    engine = create_engine(cfg.database_url, **options)
    return SQLAdminRepository(engine)
