"""
Database Module - Postgres Document Store
=========================================
asyncpg-backed implementation of the DocumentStore contract.

This module provides:
- AsyncPG connection pool for PostgreSQL
- One JSONB table per collection, created on startup
- Unique expression indexes backing the idempotency guarantees
- Transactions with optional advisory locks for count-then-insert sequences

pip install asyncpg
"""

import contextvars
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
import structlog

from config import db_config
from errors import DuplicateKeyError, StoreUnavailable
from schemas.entities import ALL_COLLECTIONS, UNIQUE_KEYS
from storage.document_store import (
    DESCENDING,
    Collection,
    DocumentStore,
    Filter,
    jsonable,
    new_id,
    validate_filter,
    validate_sort,
)

# Configure logger
logger = structlog.get_logger().bind(component="database")

# Driver errors that mean "the database is not answering"
_UNAVAILABLE = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.InsufficientResourcesError,
    OSError,
)


# =============================================================================
# MIGRATIONS
# =============================================================================

def _migrations() -> List[str]:
    statements = []
    for name in ALL_COLLECTIONS:
        statements.append(f"""
            CREATE TABLE IF NOT EXISTS {name} (
                id TEXT PRIMARY KEY,
                doc JSONB NOT NULL DEFAULT '{{}}',
                inserted_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        statements.append(
            f"CREATE INDEX IF NOT EXISTS idx_{name}_doc ON {name} USING GIN (doc jsonb_path_ops)"
        )
    for name, keys in UNIQUE_KEYS.items():
        columns = ", ".join(f"(doc->>'{k}')" for k in keys)
        statements.append(
            f"CREATE UNIQUE INDEX IF NOT EXISTS uq_{name}_{'_'.join(keys)} ON {name} ({columns})"
        )
    return statements


# =============================================================================
# QUERY BUILDING
# =============================================================================

def _text(value: Any) -> str:
    """A scalar as Postgres renders it through ->>"""
    value = jsonable(value)
    return value if isinstance(value, str) else json.dumps(value)


def _column(key: str) -> str:
    # Byte-order collation so range scans agree with Python string ordering
    return 'id COLLATE "C"' if key == "id" else f"(doc->>'{key}') COLLATE \"C\""


def _sort_column(field: str) -> str:
    return _column(field) if field == "id" else f"doc->'{field}'"


def _where(filter: Filter, params: List[Any]) -> str:
    """Translate a store filter into a SQL WHERE clause, appending params"""
    clauses = []
    equality: Dict[str, Any] = {}

    for key, cond in filter.items():
        if isinstance(cond, dict) and "$in" in cond:
            params.append([_text(v) for v in cond["$in"]])
            clauses.append(f"{_column(key)} = ANY(${len(params)}::text[])")
        elif isinstance(cond, dict) and "$gt" in cond:
            params.append(_text(cond["$gt"]))
            clauses.append(f"{_column(key)} > ${len(params)}")
        elif isinstance(cond, dict) and "$contains" in cond:
            pattern = cond["$contains"].replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            params.append(f"%{pattern}%")
            clauses.append(f"doc->>'{key}' ILIKE ${len(params)}")
        elif key == "id":
            params.append(str(cond))
            clauses.append(f"id = ${len(params)}")
        else:
            equality[key] = cond

    if equality:
        params.append(jsonable(equality))
        clauses.append(f"doc @> ${len(params)}::jsonb")

    return f"WHERE {' AND '.join(clauses)}" if clauses else ""


def _row_to_doc(row: asyncpg.Record) -> Dict[str, Any]:
    return {"id": row["id"], **row["doc"]}


# =============================================================================
# COLLECTION
# =============================================================================

class PostgresCollection(Collection):

    def __init__(self, store: "PostgresDocumentStore", name: str):
        self._store = store
        self.name = name

    async def find_one(self, filter: Filter) -> Optional[Dict[str, Any]]:
        params: List[Any] = []
        where = _where(validate_filter(filter), params)
        row = await self._store.fetch_one(
            f"SELECT id, doc FROM {self.name} {where} LIMIT 1", *params
        )
        return _row_to_doc(row) if row else None

    async def find(self, filter=None, sort=None, limit=None) -> List[Dict[str, Any]]:
        params: List[Any] = []
        where = _where(validate_filter(filter), params)
        order = validate_sort(sort)
        order_sql = ""
        if order:
            order_sql = "ORDER BY " + ", ".join(
                f"{_sort_column(field)} {'DESC' if direction == DESCENDING else 'ASC'}"
                for field, direction in order
            )
        limit_sql = ""
        if limit is not None:
            params.append(int(limit))
            limit_sql = f"LIMIT ${len(params)}"
        rows = await self._store.fetch_all(
            f"SELECT id, doc FROM {self.name} {where} {order_sql} {limit_sql}", *params
        )
        return [_row_to_doc(r) for r in rows]

    async def insert_one(self, doc: Dict[str, Any]) -> str:
        body = jsonable(dict(doc))
        body.pop("id", None)
        doc_id = new_id()
        await self._store.execute(
            f"INSERT INTO {self.name} (id, doc) VALUES ($1, $2)",
            doc_id,
            body,
            collection=self.name,
        )
        return doc_id

    async def update_one(self, filter: Filter, patch: Dict[str, Any]) -> bool:
        body = jsonable(dict(patch))
        body.pop("id", None)
        params: List[Any] = [body]
        where = _where(validate_filter(filter), params)
        result = await self._store.execute(
            f"""
            UPDATE {self.name} SET doc = doc || $1::jsonb
            WHERE id = (SELECT id FROM {self.name} {where} LIMIT 1)
            """,
            *params,
            collection=self.name,
        )
        return result == "UPDATE 1"

    async def count_documents(self, filter=None) -> int:
        params: List[Any] = []
        where = _where(validate_filter(filter), params)
        row = await self._store.fetch_one(
            f"SELECT COUNT(*) AS count FROM {self.name} {where}", *params
        )
        return row["count"] if row else 0

    async def delete_one(self, filter: Filter) -> bool:
        params: List[Any] = []
        where = _where(validate_filter(filter), params)
        result = await self._store.execute(
            f"DELETE FROM {self.name} WHERE id = (SELECT id FROM {self.name} {where} LIMIT 1)",
            *params,
        )
        return result == "DELETE 1"


# =============================================================================
# CONNECTION POOL
# =============================================================================

async def _init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


class PostgresDocumentStore(DocumentStore):
    """Async connection pool manager exposing document collections"""

    backend = "postgres"

    def __init__(
        self,
        dsn: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
    ):
        self._dsn = dsn or db_config.DATABASE_URL
        self._min_size = min_size or db_config.MIN_POOL_SIZE
        self._max_size = max_size or db_config.MAX_POOL_SIZE
        self._pool: Optional[asyncpg.Pool] = None
        self._collections: Dict[str, PostgresCollection] = {}
        # Connection bound to the current transaction, if any
        self._tx_conn: contextvars.ContextVar = contextvars.ContextVar(
            f"pgstore_tx_{id(self)}", default=None
        )

    async def initialize(self):
        """Initialize the connection pool and run migrations"""
        if self._pool:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
                init=_init_connection,
            )
            logger.info("Database connection pool initialized")
            await self._run_migrations()
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StoreUnavailable(f"database unavailable: {e}") from e

    async def close(self):
        """Close the connection pool"""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection pool closed")

    async def ping(self) -> bool:
        try:
            await self.fetch_one("SELECT 1 AS ok")
            return True
        except StoreUnavailable:
            return False

    def collection(self, name: str) -> Collection:
        if name not in self._collections:
            self._collections[name] = PostgresCollection(self, name)
        return self._collections[name]

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire the transaction connection, or one from the pool"""
        conn = self._tx_conn.get()
        if conn is not None:
            yield conn
            return
        if not self._pool:
            await self.initialize()
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except _UNAVAILABLE as e:
            raise StoreUnavailable(str(e)) from e

    @asynccontextmanager
    async def transaction(self, lock_key: Optional[str] = None) -> AsyncIterator[None]:
        if self._tx_conn.get() is not None:
            yield
            return
        async with self.acquire() as conn:
            async with conn.transaction():
                if lock_key:
                    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", lock_key)
                token = self._tx_conn.set(conn)
                try:
                    yield
                finally:
                    self._tx_conn.reset(token)

    async def execute(self, query: str, *args, collection: Optional[str] = None) -> str:
        """Execute a query"""
        try:
            async with self.acquire() as conn:
                return await conn.execute(query, *args)
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(collection or "unknown", str(e)) from e
        except _UNAVAILABLE as e:
            raise StoreUnavailable(str(e)) from e

    async def fetch_one(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row"""
        try:
            async with self.acquire() as conn:
                return await conn.fetchrow(query, *args)
        except _UNAVAILABLE as e:
            raise StoreUnavailable(str(e)) from e

    async def fetch_all(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all rows"""
        try:
            async with self.acquire() as conn:
                return await conn.fetch(query, *args)
        except _UNAVAILABLE as e:
            raise StoreUnavailable(str(e)) from e

    async def _run_migrations(self):
        """Create collection tables and indexes"""
        async with self.acquire() as conn:
            for migration in _migrations():
                try:
                    await conn.execute(migration)
                except asyncpg.DuplicateObjectError as e:
                    logger.warning(f"Migration warning: {e}")

        logger.info("Database migrations complete")


def build_store(backend: Optional[str] = None) -> DocumentStore:
    """Construct the configured store (not yet initialized)"""
    from storage.document_store import InMemoryDocumentStore

    backend = backend or db_config.STORE_BACKEND
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend == "postgres":
        return PostgresDocumentStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")
