# storage/document_store.py
# ============================================================================
# CLUBSPHERE: DOCUMENT STORE INTERFACE
# ============================================================================
# Collection-level CRUD contract shared by the Postgres and in-memory stores,
# plus the in-memory implementation used for local development and tests.
# ============================================================================

import asyncio
import contextvars
import copy
import re
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import structlog
from pydantic_core import to_jsonable_python

from errors import DuplicateKeyError, InvalidArgument
from schemas.entities import ALL_COLLECTIONS, UNIQUE_KEYS

logger = structlog.get_logger().bind(component="document_store")

Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

ASCENDING = 1
DESCENDING = -1

_FIELD_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_OPERATORS = {"$in", "$contains", "$gt"}


# =============================================================================
# HELPERS
# =============================================================================

def new_id() -> str:
    return str(uuid.uuid4())


def jsonable(value: Any) -> Any:
    """Normalize enums, datetimes and models into plain JSON values"""
    return to_jsonable_python(value)


def validate_filter(filter: Optional[Filter]) -> Filter:
    """Reject field names and operators the stores do not understand"""
    filter = filter or {}
    for key, cond in filter.items():
        if not _FIELD_RE.match(key):
            raise InvalidArgument(f"invalid filter field: {key!r}")
        if isinstance(cond, dict):
            unknown = set(cond) - _OPERATORS
            if unknown or len(cond) != 1:
                raise InvalidArgument(f"unsupported filter operator on {key!r}")
    return filter


def validate_sort(sort: Optional[Sort]) -> List[Tuple[str, int]]:
    result = []
    for field, direction in sort or ():
        if not _FIELD_RE.match(field) or direction not in (ASCENDING, DESCENDING):
            raise InvalidArgument(f"invalid sort: {field!r}")
        result.append((field, direction))
    return result


def matches(doc: Dict[str, Any], filter: Filter) -> bool:
    for key, cond in filter.items():
        value = doc.get(key)
        if isinstance(cond, dict):
            if "$in" in cond and value not in jsonable(cond["$in"]):
                return False
            if "$contains" in cond:
                if not isinstance(value, str) or cond["$contains"].lower() not in value.lower():
                    return False
            if "$gt" in cond and (value is None or not value > jsonable(cond["$gt"])):
                return False
        elif value != jsonable(cond):
            return False
    return True


# =============================================================================
# INTERFACES
# =============================================================================

class Collection(ABC):
    """One named collection of JSON documents"""

    name: str

    @abstractmethod
    async def find_one(self, filter: Filter) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def find(
        self,
        filter: Optional[Filter] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def insert_one(self, doc: Dict[str, Any]) -> str:
        """Insert and return the store-assigned id"""
        pass

    @abstractmethod
    async def update_one(self, filter: Filter, patch: Dict[str, Any]) -> bool:
        """Shallow-merge patch into the first match. Returns True if matched."""
        pass

    @abstractmethod
    async def count_documents(self, filter: Optional[Filter] = None) -> int:
        pass

    @abstractmethod
    async def delete_one(self, filter: Filter) -> bool:
        pass


class DocumentStore(ABC):
    """Injected persistence handle exposing typed collections"""

    backend: str = "abstract"

    @abstractmethod
    def collection(self, name: str) -> Collection:
        pass

    @abstractmethod
    def transaction(self, lock_key: Optional[str] = None):
        """
        Async context manager grouping writes atomically.

        lock_key serializes concurrent transactions that share it
        (count-then-insert sequences such as event capacity).
        """
        pass

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def ping(self) -> bool:
        return True


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryCollection(Collection):

    def __init__(self, store: "InMemoryDocumentStore", name: str):
        self._store = store
        self.name = name

    @property
    def _docs(self) -> Dict[str, Dict[str, Any]]:
        return self._store._data[self.name]

    def _check_unique(self, candidate: Dict[str, Any], skip_id: Optional[str] = None):
        keys = UNIQUE_KEYS.get(self.name)
        if not keys:
            return
        key_values = tuple(candidate.get(k) for k in keys)
        if any(v is None for v in key_values):
            return
        for doc_id, doc in self._docs.items():
            if doc_id != skip_id and tuple(doc.get(k) for k in keys) == key_values:
                raise DuplicateKeyError(self.name)

    async def find_one(self, filter: Filter) -> Optional[Dict[str, Any]]:
        filter = validate_filter(filter)
        async with self._store._guard():
            for doc in self._docs.values():
                if matches(doc, filter):
                    return copy.deepcopy(doc)
        return None

    async def find(self, filter=None, sort=None, limit=None) -> List[Dict[str, Any]]:
        filter = validate_filter(filter)
        order = validate_sort(sort)
        async with self._store._guard():
            docs = [copy.deepcopy(d) for d in self._docs.values() if matches(d, filter)]
        for field, direction in reversed(order):
            docs.sort(
                key=lambda d: (d.get(field) is None, d.get(field) if d.get(field) is not None else 0),
                reverse=direction == DESCENDING,
            )
        if limit is not None:
            docs = docs[:limit]
        return docs

    async def insert_one(self, doc: Dict[str, Any]) -> str:
        body = jsonable(dict(doc))
        body.pop("id", None)
        doc_id = new_id()
        async with self._store._guard():
            self._check_unique(body)
            self._docs[doc_id] = {"id": doc_id, **body}
        return doc_id

    async def update_one(self, filter: Filter, patch: Dict[str, Any]) -> bool:
        filter = validate_filter(filter)
        body = jsonable(dict(patch))
        body.pop("id", None)
        async with self._store._guard():
            for doc_id, doc in self._docs.items():
                if matches(doc, filter):
                    merged = {**doc, **body}
                    self._check_unique(merged, skip_id=doc_id)
                    self._docs[doc_id] = merged
                    return True
        return False

    async def count_documents(self, filter=None) -> int:
        filter = validate_filter(filter)
        async with self._store._guard():
            return sum(1 for d in self._docs.values() if matches(d, filter))

    async def delete_one(self, filter: Filter) -> bool:
        filter = validate_filter(filter)
        async with self._store._guard():
            for doc_id, doc in list(self._docs.items()):
                if matches(doc, filter):
                    del self._docs[doc_id]
                    return True
        return False


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store with the same unique constraints as Postgres.

    A transaction holds the store-wide lock and restores a snapshot if the
    block raises, so writes inside it are all-or-nothing.
    """

    backend = "memory"

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in ALL_COLLECTIONS}
        self._collections: Dict[str, InMemoryCollection] = {}
        self._lock = asyncio.Lock()
        self._in_tx = contextvars.ContextVar(f"memstore_tx_{id(self)}", default=False)

    def collection(self, name: str) -> Collection:
        if name not in self._data:
            self._data[name] = {}
        if name not in self._collections:
            self._collections[name] = InMemoryCollection(self, name)
        return self._collections[name]

    @asynccontextmanager
    async def _guard(self) -> AsyncIterator[None]:
        if self._in_tx.get():
            yield
            return
        async with self._lock:
            yield

    @asynccontextmanager
    async def transaction(self, lock_key: Optional[str] = None) -> AsyncIterator[None]:
        if self._in_tx.get():
            yield
            return
        async with self._lock:
            snapshot = copy.deepcopy(self._data)
            token = self._in_tx.set(True)
            try:
                yield
            except BaseException:
                self._data = snapshot
                logger.debug("transaction_rolled_back", lock_key=lock_key)
                raise
            finally:
                self._in_tx.reset(token)
