"""
SHOP - Read Store

Document store for denormalized query models. Documents are upserted
whole, keyed by aggregate id, and stored as JSON.

Backends:
    - RedisReadStore: one string key per document plus an id set per
      collection ({prefix}:{collection}:{id}, {prefix}:{collection}:ids)
    - InMemoryReadStore: process-local, for tests and local runs
"""
from __future__ import annotations

import copy
import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError

from core.errors import ShopConfigError
from db.interfaces import IReadStore

logger = logging.getLogger("shop.db.read_store")


class InMemoryReadStore(IReadStore):
    """Dictionary-backed read store. Documents are copied in and out."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def upsert(self, collection: str, document_id: str, document: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[document_id] = copy.deepcopy(document)

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def find_all(self, collection: str) -> List[Dict[str, Any]]:
        documents = self._collections.get(collection, {})
        return [copy.deepcopy(documents[key]) for key in sorted(documents)]

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))


class RedisReadStore(IReadStore):
    """
    Redis-backed read store.

    Usage:
        store = RedisReadStore("redis://localhost:6379/0", key_prefix="shop")
        await store.initialize()
        await store.upsert("customers", customer_id, document)
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        key_prefix: str = "shop",
        client: Optional[Redis] = None,
    ):
        if redis_url is None and client is None:
            raise ShopConfigError("RedisReadStore needs a redis_url or a client", config_key="REDIS_HOST")
        self._redis_url = redis_url
        self._key_prefix = key_prefix
        self._redis: Optional[Redis] = client

    def _document_key(self, collection: str, document_id: str) -> str:
        return f"{self._key_prefix}:{collection}:{document_id}"

    def _index_key(self, collection: str) -> str:
        return f"{self._key_prefix}:{collection}:ids"

    async def initialize(self) -> None:
        if self._redis is None:
            self._redis = await aioredis.from_url(self._redis_url, decode_responses=True)
        try:
            await self._redis.ping()
        except RedisConnectionError as e:
            logger.error(f"Redis connection error during read store initialization: {e}")
            raise
        logger.info(f"Read store connected (prefix={self._key_prefix})")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _client(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Read store not initialized. Call initialize() first.")
        return self._redis

    async def upsert(self, collection: str, document_id: str, document: Dict[str, Any]) -> None:
        redis = self._client()
        async with redis.pipeline() as pipe:
            pipe.set(self._document_key(collection, document_id), json.dumps(document, sort_keys=True))
            pipe.sadd(self._index_key(collection), document_id)
            await pipe.execute()

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        raw = await self._client().get(self._document_key(collection, document_id))
        return json.loads(raw) if raw is not None else None

    async def find_all(self, collection: str) -> List[Dict[str, Any]]:
        redis = self._client()
        ids = sorted(await redis.smembers(self._index_key(collection)))
        if not ids:
            return []
        raws = await redis.mget([self._document_key(collection, i) for i in ids])
        return [json.loads(raw) for raw in raws if raw is not None]
