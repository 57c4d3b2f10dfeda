"""
In-memory stand-ins for Motor collections.

Covers the query and update operators the engine uses so service behavior
(idempotency, streaks, unlocks, races) can be tested end to end without a
MongoDB server. Every operation yields to the event loop first, so
concurrent tasks interleave between operations the way they would against
a real server, while each single operation stays atomic.
"""

import asyncio
import copy
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError


# ─────────────────────────────────────────────────────────────────
# Matching
# ─────────────────────────────────────────────────────────────────

def _resolve(doc: Dict[str, Any], path: str) -> List[Any]:
    current = [doc]
    for part in path.split("."):
        found = []
        for value in current:
            if isinstance(value, dict):
                if part in value:
                    found.append(value[part])
            elif isinstance(value, list):
                for item in value:
                    if isinstance(item, dict) and part in item:
                        found.append(item[part])
        current = found
    return current


def _equals(values: List[Any], target: Any) -> bool:
    if not values:
        return target is None
    for value in values:
        if value == target:
            return True
        if isinstance(value, list) and target in value:
            return True
    return False


def _compare(values: List[Any], op, target) -> bool:
    for value in values:
        if value is None:
            continue
        if op(value, target):
            return True
    return False


def _match_condition(doc: Dict[str, Any], path: str, condition: Any) -> bool:
    values = _resolve(doc, path)

    if not (isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition)):
        return _equals(values, condition)

    for op, arg in condition.items():
        if op == "$ne":
            ok = not _equals(values, arg)
        elif op == "$in":
            ok = any(_equals(values, item) for item in arg)
        elif op == "$nin":
            ok = not any(_equals(values, item) for item in arg)
        elif op == "$exists":
            ok = bool(values) == bool(arg)
        elif op == "$gt":
            ok = _compare(values, lambda a, b: a > b, arg)
        elif op == "$gte":
            ok = _compare(values, lambda a, b: a >= b, arg)
        elif op == "$lt":
            ok = _compare(values, lambda a, b: a < b, arg)
        elif op == "$lte":
            ok = _compare(values, lambda a, b: a <= b, arg)
        elif op == "$elemMatch":
            ok = any(
                isinstance(item, dict) and matches(item, arg)
                for value in values if isinstance(value, list)
                for item in value
            )
        else:
            raise NotImplementedError(f"Unsupported operator {op}")
        if not ok:
            return False
    return True


def matches(doc: Dict[str, Any], query: Optional[Dict[str, Any]]) -> bool:
    for key, condition in (query or {}).items():
        if key == "$and":
            if not all(matches(doc, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif not _match_condition(doc, key, condition):
            return False
    return True


# ─────────────────────────────────────────────────────────────────
# Updates
# ─────────────────────────────────────────────────────────────────

def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    for part in parts[:-1]:
        doc = doc.setdefault(part, {})
    doc[parts[-1]] = value


def _get_path(doc: Dict[str, Any], path: str, default: Any = None) -> Any:
    for part in path.split("."):
        if not isinstance(doc, dict) or part not in doc:
            return default
        doc = doc[part]
    return doc


def apply_update(doc: Dict[str, Any], update: Dict[str, Any], inserting: bool = False) -> None:
    for op, fields in update.items():
        if op == "$setOnInsert":
            if inserting:
                for path, value in fields.items():
                    _set_path(doc, path, copy.deepcopy(value))
        elif op == "$set":
            for path, value in fields.items():
                _set_path(doc, path, copy.deepcopy(value))
        elif op == "$inc":
            for path, amount in fields.items():
                _set_path(doc, path, (_get_path(doc, path) or 0) + amount)
        elif op == "$max":
            for path, value in fields.items():
                current = _get_path(doc, path)
                if current is None or value > current:
                    _set_path(doc, path, value)
        elif op == "$push":
            for path, value in fields.items():
                array = list(_get_path(doc, path) or [])
                array.append(copy.deepcopy(value))
                _set_path(doc, path, array)
        elif op == "$unset":
            for path in fields:
                parts = path.split(".")
                parent = _get_path(doc, ".".join(parts[:-1])) if len(parts) > 1 else doc
                if isinstance(parent, dict):
                    parent.pop(parts[-1], None)
        else:
            raise NotImplementedError(f"Unsupported update operator {op}")


def _sort_key(path: str):
    def key(doc):
        value = _get_path(doc, path)
        return (value is not None, value)
    return key


# ─────────────────────────────────────────────────────────────────
# Collection & cursor
# ─────────────────────────────────────────────────────────────────

class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, key, direction=None):
        specs = key if isinstance(key, list) else [(key, direction if direction is not None else 1)]
        for path, order in reversed(specs):
            self._docs.sort(key=_sort_key(path), reverse=order == -1)
        return self

    def skip(self, count: int):
        self._skip = count
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    async def to_list(self, length: Optional[int] = None):
        await asyncio.sleep(0)
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[: self._limit]
        if length is not None:
            docs = docs[:length]
        return [copy.deepcopy(doc) for doc in docs]


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: List[Dict[str, Any]] = []
        self.unique_keys: List[List[str]] = []
        self.indexes: List[Any] = []

    # Unique constraints

    def _check_unique(self, candidate: Dict[str, Any]) -> None:
        for fields in self.unique_keys:
            key = tuple(_get_path(candidate, f) for f in fields)
            for doc in self.docs:
                if doc["_id"] == candidate["_id"]:
                    continue
                if tuple(_get_path(doc, f) for f in fields) == key:
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} {fields}")

    def _first(self, query):
        for doc in self.docs:
            if matches(doc, query):
                return doc
        return None

    # Reads

    async def find_one(self, query=None, projection=None):
        await asyncio.sleep(0)
        doc = self._first(query)
        return copy.deepcopy(doc) if doc else None

    def find(self, query=None, projection=None):
        return FakeCursor([doc for doc in self.docs if matches(doc, query)])

    async def count_documents(self, query):
        await asyncio.sleep(0)
        return sum(1 for doc in self.docs if matches(doc, query))

    def aggregate(self, pipeline):
        docs = [copy.deepcopy(d) for d in self.docs]
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if matches(d, stage["$match"])]
            elif "$group" in stage:
                docs = _group(docs, stage["$group"])
            else:
                raise NotImplementedError(f"Unsupported stage {stage}")
        return FakeCursor(docs)

    # Writes

    async def insert_one(self, doc):
        await asyncio.sleep(0)
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        self._check_unique(stored)
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    def _upsert_doc(self, query, update):
        doc = {}
        for key, value in (query or {}).items():
            if key.startswith("$"):
                continue
            if isinstance(value, dict) and any(k.startswith("$") for k in value):
                continue
            _set_path(doc, key, copy.deepcopy(value))
        apply_update(doc, update, inserting=True)
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(doc)
        return doc

    def _update_in_place(self, doc, update):
        updated = copy.deepcopy(doc)
        apply_update(updated, update)
        self._check_unique(updated)
        changed = updated != doc
        doc.clear()
        doc.update(updated)
        return changed

    async def find_one_and_update(self, query, update, upsert=False, return_document=ReturnDocument.BEFORE, **kwargs):
        await asyncio.sleep(0)
        doc = self._first(query)
        if doc is None:
            if not upsert:
                return None
            created = self._upsert_doc(query, update)
            return copy.deepcopy(created) if return_document == ReturnDocument.AFTER else None

        before = copy.deepcopy(doc)
        self._update_in_place(doc, update)
        return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before

    async def update_one(self, query, update, upsert=False):
        await asyncio.sleep(0)
        doc = self._first(query)
        if doc is None:
            if upsert:
                created = self._upsert_doc(query, update)
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=created["_id"])
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

        changed = self._update_in_place(doc, update)
        return SimpleNamespace(matched_count=1, modified_count=1 if changed else 0, upserted_id=None)

    async def update_many(self, query, update):
        await asyncio.sleep(0)
        modified = 0
        for doc in [d for d in self.docs if matches(d, query)]:
            if self._update_in_place(doc, update):
                modified += 1
        return SimpleNamespace(matched_count=modified, modified_count=modified)

    async def create_indexes(self, models):
        await asyncio.sleep(0)
        names = []
        for model in models:
            spec = model.document
            if spec.get("unique"):
                self.unique_keys.append(list(spec["key"].keys()))
            self.indexes.append(spec)
            names.append(spec["name"])
        return names


def _group(docs, spec):
    key_expr = spec["_id"]
    groups: Dict[Any, Dict[str, Any]] = {}
    for doc in docs:
        key = _get_path(doc, key_expr[1:]) if isinstance(key_expr, str) else key_expr
        group = groups.setdefault(key, {"_id": key})
        for field, accumulator in spec.items():
            if field == "_id":
                continue
            (op, expr), = accumulator.items()
            if op != "$sum":
                raise NotImplementedError(f"Unsupported accumulator {op}")
            value = _get_path(doc, expr[1:]) if isinstance(expr, str) else expr
            group[field] = group.get(field, 0) + (value or 0)
    return list(groups.values())


class FakeDatabase:
    """Dict of FakeCollections created on first access."""

    def __init__(self):
        self._collections: Dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]


# ─────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────

def mock_cursor(items):
    """MagicMock cursor whose chained sort/skip/limit return itself."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=items)
    return cursor


async def add_content(db, collection: str, **fields) -> str:
    """Insert a content document and return its id."""
    doc = {"_id": ObjectId(), "title": fields.pop("title", "Sample"), **fields}
    await db[collection].insert_one(doc)
    return str(doc["_id"])
