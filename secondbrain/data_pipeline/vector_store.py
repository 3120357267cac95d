"""Chroma-backed vector index for card embeddings.

Every card lives in one collection configured for cosine distance. The
Chroma HTTP client is synchronous, so each call runs in a worker thread.
If the server reports the collection itself as broken it is dropped and
recreated once, shared by every caller failing at the same time. Timeouts
and connection failures are reported as ``IndexUnavailableError`` and never
delete anything.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import chromadb
import httpx
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection

from secondbrain.errors import CollectionStateError, IndexUnavailableError

logger = logging.getLogger(__name__)

COLLECTION_NAME = "content_collection"
COLLECTION_METADATA = {"hnsw:space": "cosine"}

TRANSPORT_ERRORS = (TimeoutError, ConnectionError, httpx.TransportError)

ClientFactory = Callable[[], ClientAPI]


@dataclass
class IndexHit:
    id: str
    metadata: Optional[Dict[str, Any]]
    distance: Optional[float]


def http_client_factory(url: str) -> ClientFactory:
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError(f"Index server URL has no host: {url}")
    ssl = parsed.scheme == "https"
    port = parsed.port or (443 if ssl else 8000)

    def factory() -> ClientAPI:
        return chromadb.HttpClient(host=parsed.hostname, port=port, ssl=ssl)

    return factory


class ChromaVectorStore:
    def __init__(
        self,
        client_factory: ClientFactory,
        collection_name: str = COLLECTION_NAME,
    ) -> None:
        self._client_factory = client_factory
        self._client: Optional[ClientAPI] = None
        self._collection: Optional[Collection] = None
        self._repair_task: Optional[asyncio.Task] = None
        self.collection_name = collection_name

    @classmethod
    def from_url(
        cls, url: str, collection_name: str = COLLECTION_NAME
    ) -> "ChromaVectorStore":
        return cls(http_client_factory(url), collection_name=collection_name)

    def _get_client(self) -> ClientAPI:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def _connect(self) -> ClientAPI:
        try:
            return await asyncio.to_thread(self._get_client)
        except Exception as exc:
            raise IndexUnavailableError(
                f"Failed to connect to the index server: {exc}"
            ) from exc

    async def ensure_collection(self) -> Collection:
        client = await self._connect()
        try:
            collection = await asyncio.to_thread(
                client.get_or_create_collection,
                name=self.collection_name,
                metadata=COLLECTION_METADATA,
            )
        except TRANSPORT_ERRORS as exc:
            self._collection = None
            raise IndexUnavailableError(
                f"Index server unreachable for {self.collection_name!r}: {exc}"
            ) from exc
        except Exception as exc:
            self._collection = None
            raise CollectionStateError(
                f"Failed to get/create collection {self.collection_name!r}: {exc}"
            ) from exc
        self._collection = collection
        return collection

    def _recreate(self, client: ClientAPI) -> Collection:
        try:
            client.delete_collection(name=self.collection_name)
        except TRANSPORT_ERRORS:
            raise
        except Exception as exc:
            # Missing collections cannot be deleted; creation below decides.
            logger.warning(
                "Could not delete collection %s before recreating it: %s",
                self.collection_name,
                exc,
            )
        return client.create_collection(
            name=self.collection_name, metadata=COLLECTION_METADATA
        )

    async def repair_collection(self) -> Collection:
        logger.warning("Recreating collection %s", self.collection_name)
        client = await self._connect()
        try:
            collection = await asyncio.to_thread(self._recreate, client)
        except Exception as exc:
            self._collection = None
            logger.error(
                "Failed to recreate collection %s: %s", self.collection_name, exc
            )
            raise IndexUnavailableError(
                f"Failed to recreate collection {self.collection_name!r}: {exc}"
            ) from exc
        self._collection = collection
        return collection

    async def _shared_repair(self) -> Collection:
        if self._repair_task is None:
            self._repair_task = asyncio.create_task(self._run_repair())
        return await asyncio.shield(self._repair_task)

    async def _run_repair(self) -> Collection:
        try:
            return await self.repair_collection()
        finally:
            self._repair_task = None

    async def ensure_collection_with_repair(self) -> Collection:
        """Fetch the collection, recreating it once if its state is broken.

        Callers failing while a repair is in flight wait for that repair
        instead of starting another one.
        """
        try:
            return await self.ensure_collection()
        except CollectionStateError as exc:
            logger.error("Collection unavailable, attempting repair: %s", exc)
        return await self._shared_repair()

    async def _current_collection(self) -> Collection:
        if self._collection is None:
            return await self.ensure_collection()
        return self._collection

    async def upsert(
        self,
        id: str,
        vector: List[float],
        document: str,
        metadata: Dict[str, Any],
    ) -> None:
        collection = await self._current_collection()
        try:
            await asyncio.to_thread(
                collection.upsert,
                ids=[id],
                embeddings=[vector],
                documents=[document],
                metadatas=[metadata],
            )
        except Exception as exc:
            raise IndexUnavailableError(f"Failed to upsert entry {id!r}: {exc}") from exc

    async def query_nearest(
        self, vector: List[float], owner_id: str, k: int = 1
    ) -> List[IndexHit]:
        if k < 1:
            raise ValueError("k must be at least 1")
        collection = await self._current_collection()
        try:
            results = await asyncio.to_thread(
                collection.query,
                query_embeddings=[vector],
                n_results=k,
                where={"owner_id": owner_id},
                include=["metadatas", "distances"],
            )
        except Exception as exc:
            raise IndexUnavailableError(f"Failed to query collection: {exc}") from exc
        return parse_query_results(results)


def _first_row(results: Dict[str, Any], key: str) -> List[Any]:
    rows = results.get(key) or []
    if not rows or rows[0] is None:
        return []
    return list(rows[0])


def parse_query_results(results: Dict[str, Any]) -> List[IndexHit]:
    ids = _first_row(results, "ids")
    metadatas = _first_row(results, "metadatas")
    distances = _first_row(results, "distances")

    hits: List[IndexHit] = []
    for index, entry_id in enumerate(ids):
        metadata = metadatas[index] if index < len(metadatas) else None
        distance = distances[index] if index < len(distances) else None
        hits.append(
            IndexHit(
                id=entry_id,
                metadata=dict(metadata) if metadata else None,
                distance=float(distance) if distance is not None else None,
            )
        )
    # Chroma already returns closest first; keep that order explicit.
    hits.sort(key=lambda hit: float("inf") if hit.distance is None else hit.distance)
    return hits
