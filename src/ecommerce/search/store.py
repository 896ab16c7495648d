"""Projection stores for the search read-model.

Both stores implement the same merge rule for ``upsert(index, id, fields,
version)``.  Every document keeps ``field_versions``, the version that last
wrote each field, and a field is written only when the incoming version is
newer than its own:

- no stored document: the fields are written, each at ``version``;
- per field, stored field version < ``version``: the value is replaced;
- per field, stored field version >= ``version`` (replay or late arrival):
  the stored value is kept;
- ``aggregate_version`` is the highest version merged so far.

A late event therefore still lands the fields no newer event has touched.
``force=True`` (used by rebuilds) also replaces fields written at exactly
``version``, which repairs a document that diverged from the relational
store without letting a rebuild move a field backwards.

``delete`` with a version leaves a tombstone: ``get`` and ``search`` skip
it and every later upsert is absorbed, so a late event cannot resurrect a
deleted aggregate.

``upsert`` returns ``False`` when nothing changed, so replaying an event
is a no-op and an older event can never clobber newer state.

Index names given to the store are logical (``products``); the
Elasticsearch store prefixes them with ``SearchConfig.index_prefix``.
"""

from __future__ import annotations

import copy
import logging
from collections import defaultdict
from typing import Any

from elasticsearch import (
    ApiError,
    AsyncElasticsearch,
    NotFoundError,
    TransportError,
)
from elasticsearch.helpers import async_streaming_bulk

from ecommerce.core.config import SearchConfig
from ecommerce.core.enums import SearchBackend
from ecommerce.core.errors import SearchStoreError
from ecommerce.core.interfaces import IProjectionStore

from .documents import MAPPINGS, TEXT_FIELDS

logger = logging.getLogger(__name__)

VERSION_FIELD = "aggregate_version"
FIELD_VERSIONS = "field_versions"
DELETED_FIELD = "deleted"

MERGE_SCRIPT = """
if (ctx._source.deleted == true) {
  ctx.op = 'noop';
} else {
  long version = ((Number) params.version).longValue();
  long base = ctx._source.aggregate_version == null
      ? 0L : ((Number) ctx._source.aggregate_version).longValue();
  Map seen = ctx._source.field_versions == null
      ? new HashMap() : ctx._source.field_versions;
  boolean changed = false;
  for (entry in params.fields.entrySet()) {
    String key = entry.getKey();
    long current = -1L;
    if (seen.containsKey(key)) {
      current = ((Number) seen.get(key)).longValue();
    } else if (ctx._source.containsKey(key)) {
      current = base;
    }
    if (current > version) {
      continue;
    }
    if (current == version
        && (!params.force || Objects.equals(ctx._source.get(key), entry.getValue()))) {
      continue;
    }
    ctx._source[key] = entry.getValue();
    seen[key] = version;
    changed = true;
  }
  if (version > base) {
    ctx._source.aggregate_version = version;
    changed = true;
  }
  if (changed) {
    ctx._source.field_versions = seen;
  } else {
    ctx.op = 'noop';
  }
}
"""


def new_document(fields: dict[str, Any], version: int) -> dict[str, Any]:
    return {
        **copy.deepcopy(fields),
        VERSION_FIELD: version,
        FIELD_VERSIONS: {key: version for key in fields},
    }


def tombstone(version: int) -> dict[str, Any]:
    return {DELETED_FIELD: True, VERSION_FIELD: version}


def is_tombstone(doc: dict[str, Any] | None) -> bool:
    return bool(doc and doc.get(DELETED_FIELD))


def merge_document(
    stored: dict[str, Any] | None,
    fields: dict[str, Any],
    version: int,
    *,
    force: bool = False,
) -> dict[str, Any] | None:
    """Apply the merge rule; return the new document or ``None`` if unchanged."""
    if stored is None:
        return new_document(fields, version)
    if is_tombstone(stored):
        return None

    doc = dict(stored)
    base = stored.get(VERSION_FIELD) or 0
    seen = dict(stored.get(FIELD_VERSIONS) or {})
    changed = False
    for key, value in fields.items():
        current = seen.get(key, base if key in doc else -1)
        if current > version:
            continue
        if current == version and (not force or doc.get(key) == value):
            continue
        doc[key] = copy.deepcopy(value)
        seen[key] = version
        changed = True
    if version > base:
        doc[VERSION_FIELD] = version
        changed = True
    if not changed:
        return None
    doc[FIELD_VERSIONS] = seen
    return doc


class ElasticsearchProjectionStore:
    """Projection store over an Elasticsearch cluster.

    Args:
        config: Hosts, index prefix, timeouts and refresh policy.
        client: Pre-built ``AsyncElasticsearch``; created from config when
            omitted.
    """

    def __init__(
        self,
        config: SearchConfig,
        client: AsyncElasticsearch | None = None,
    ) -> None:
        self._config = config
        self._client = client or AsyncElasticsearch(
            config.hosts, request_timeout=config.request_timeout_seconds,
        )
        self._refresh: str | bool = "wait_for" if config.refresh_on_write else False

    def index_name(self, index: str) -> str:
        prefix = self._config.index_prefix
        return f"{prefix}-{index}" if prefix else index

    async def ensure_indices(self) -> None:
        """Create every known index with its mapping if it does not exist."""
        try:
            for index, mapping in MAPPINGS.items():
                name = self.index_name(index)
                if await self._client.indices.exists(index=name):
                    continue
                await self._client.indices.create(index=name, mappings=mapping)
                logger.info("Created search index %s", name)
        except (ApiError, TransportError) as exc:
            raise SearchStoreError(f"Cannot create search indices: {exc}") from exc

    @staticmethod
    def _script(fields: dict[str, Any], version: int, force: bool) -> dict[str, Any]:
        return {
            "source": MERGE_SCRIPT,
            "lang": "painless",
            "params": {"fields": fields, "version": version, "force": force},
        }

    async def upsert(
        self,
        index: str,
        doc_id: str,
        fields: dict[str, Any],
        version: int,
        *,
        force: bool = False,
    ) -> bool:
        try:
            response = await self._client.update(
                index=self.index_name(index),
                id=doc_id,
                script=self._script(fields, version, force),
                upsert=new_document(fields, version),
                retry_on_conflict=3,
                refresh=self._refresh,
            )
        except (ApiError, TransportError) as exc:
            raise SearchStoreError(f"Upsert {index}/{doc_id} failed: {exc}") from exc
        return response["result"] != "noop"

    async def bulk_upsert(
        self,
        index: str,
        docs: list[tuple[str, dict[str, Any], int]],
        *,
        force: bool = False,
    ) -> int:
        """Upsert many documents; returns how many of them changed."""
        if not docs:
            return 0
        name = self.index_name(index)
        actions = [
            {
                "_op_type": "update",
                "_index": name,
                "_id": doc_id,
                "script": self._script(fields, version, force),
                "upsert": new_document(fields, version),
                "retry_on_conflict": 3,
            }
            for doc_id, fields, version in docs
        ]
        changed = failed = 0
        try:
            async for ok, item in async_streaming_bulk(
                self._client, actions, raise_on_error=False,
            ):
                if not ok:
                    failed += 1
                elif item["update"]["result"] != "noop":
                    changed += 1
        except (ApiError, TransportError) as exc:
            raise SearchStoreError(f"Bulk upsert into {index} failed: {exc}") from exc
        if failed:
            logger.warning("Bulk upsert into %s: %d of %d failed", index, failed, len(docs))
        return changed

    async def get(self, index: str, doc_id: str) -> dict[str, Any] | None:
        try:
            response = await self._client.get(index=self.index_name(index), id=doc_id)
        except NotFoundError:
            return None
        except (ApiError, TransportError) as exc:
            raise SearchStoreError(f"Get {index}/{doc_id} failed: {exc}") from exc
        source = dict(response["_source"])
        return None if is_tombstone(source) else source

    async def delete(self, index: str, doc_id: str, version: int | None = None) -> None:
        """Tombstone the document at ``version``, or remove it outright."""
        name = self.index_name(index)
        try:
            if version is None:
                await self._client.options(ignore_status=404).delete(
                    index=name, id=doc_id, refresh=self._refresh,
                )
            else:
                await self._client.index(
                    index=name, id=doc_id, document=tombstone(version), refresh=self._refresh,
                )
        except (ApiError, TransportError) as exc:
            raise SearchStoreError(f"Delete {index}/{doc_id} failed: {exc}") from exc

    async def search(
        self,
        index: str,
        text: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        size: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        must: list[dict[str, Any]] = []
        if text:
            must.append({
                "multi_match": {
                    "query": text,
                    "fields": list(TEXT_FIELDS.get(index, ("*",))),
                    "fuzziness": "AUTO",
                }
            })
        term_filters = [{"term": {k: v}} for k, v in (filters or {}).items()]
        query = {
            "bool": {
                "must": must or [{"match_all": {}}],
                "filter": term_filters,
                "must_not": [{"term": {DELETED_FIELD: True}}],
            }
        }
        try:
            response = await self._client.search(
                index=self.index_name(index), query=query, from_=offset, size=size,
            )
        except (ApiError, TransportError) as exc:
            raise SearchStoreError(f"Search on {index} failed: {exc}") from exc
        return [dict(hit["_source"]) for hit in response["hits"]["hits"]]

    async def refresh(self, index: str | None = None) -> None:
        names = self.index_name(index) if index else ",".join(
            self.index_name(i) for i in MAPPINGS
        )
        try:
            await self._client.indices.refresh(index=names)
        except (ApiError, TransportError) as exc:
            raise SearchStoreError(f"Refresh of {names} failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (ApiError, TransportError):
            return False

    async def close(self) -> None:
        await self._client.close()


class InMemoryProjectionStore:
    """Dict-backed projection store for tests and local runs.

    Writes are visible immediately, so ``refresh`` is a no-op.
    """

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.upsert_calls = 0

    async def upsert(
        self,
        index: str,
        doc_id: str,
        fields: dict[str, Any],
        version: int,
        *,
        force: bool = False,
    ) -> bool:
        self.upsert_calls += 1
        merged = merge_document(self._docs[index].get(doc_id), fields, version, force=force)
        if merged is None:
            return False
        self._docs[index][doc_id] = merged
        return True

    async def bulk_upsert(
        self,
        index: str,
        docs: list[tuple[str, dict[str, Any], int]],
        *,
        force: bool = False,
    ) -> int:
        changed = 0
        for doc_id, fields, version in docs:
            if await self.upsert(index, doc_id, fields, version, force=force):
                changed += 1
        return changed

    async def get(self, index: str, doc_id: str) -> dict[str, Any] | None:
        doc = self._docs[index].get(doc_id)
        if doc is None or is_tombstone(doc):
            return None
        return copy.deepcopy(doc)

    async def delete(self, index: str, doc_id: str, version: int | None = None) -> None:
        if version is None:
            self._docs[index].pop(doc_id, None)
        else:
            self._docs[index][doc_id] = tombstone(version)

    async def search(
        self,
        index: str,
        text: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        size: int = 20,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        needle = text.strip().lower() if text else ""
        fields = TEXT_FIELDS.get(index, ())
        hits = []
        for doc in self._docs[index].values():
            if is_tombstone(doc):
                continue
            if any(doc.get(k) != v for k, v in (filters or {}).items()):
                continue
            if needle and not any(needle in str(doc.get(f) or "").lower() for f in fields):
                continue
            hits.append(copy.deepcopy(doc))
        return hits[offset:offset + size]

    async def refresh(self, index: str | None = None) -> None:
        return None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._docs.clear()

    def count(self, index: str) -> int:
        return sum(not is_tombstone(doc) for doc in self._docs[index].values())


def create_projection_store(config: SearchConfig) -> IProjectionStore:
    if config.backend == SearchBackend.MEMORY:
        return InMemoryProjectionStore()
    return ElasticsearchProjectionStore(config)
