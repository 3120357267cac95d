"""Shared in-memory fakes for the embedding model and the Chroma client."""

from __future__ import annotations

import hashlib
import math
import re
import time
from typing import Any

import pytest

from secondbrain.data_pipeline.embeddings import EmbedderLoader, EmbeddingGenerator
from secondbrain.data_pipeline.retrieval import PipelinePolicy, RetrievalService
from secondbrain.data_pipeline.vector_store import ChromaVectorStore


class HashingEmbedder:
    """Deterministic bag-of-words embedder: tokens hashed into buckets, L2-normalized."""

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for token in re.findall(r"[a-z]+", text.lower()):
            # crude stemming so "borrow" and "borrowing" share a bucket
            token = token[:6]
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            vector[int.from_bytes(digest[:4], "big") % self.dimension] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]


def _cosine_distance(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1.0 - dot / (norm_a * norm_b)


class FakeCollection:
    def __init__(self, name: str, metadata: dict[str, Any] | None) -> None:
        self.name = name
        self.metadata = metadata
        self.entries: dict[str, dict[str, Any]] = {}

    def upsert(self, *, ids, embeddings, documents, metadatas) -> None:
        for entry_id, embedding, document, metadata in zip(
            ids, embeddings, documents, metadatas
        ):
            self.entries[entry_id] = {
                "embedding": list(embedding),
                "document": document,
                "metadata": dict(metadata),
            }

    def query(self, *, query_embeddings, n_results, where, include) -> dict[str, Any]:
        query = query_embeddings[0]
        candidates = [
            (entry_id, entry)
            for entry_id, entry in self.entries.items()
            if all(entry["metadata"].get(key) == value for key, value in where.items())
        ]
        ranked = sorted(
            candidates, key=lambda item: _cosine_distance(query, item[1]["embedding"])
        )[:n_results]
        return {
            "ids": [[entry_id for entry_id, _ in ranked]],
            "metadatas": [[entry["metadata"] for _, entry in ranked]],
            "distances": [
                [_cosine_distance(query, entry["embedding"]) for _, entry in ranked]
            ],
        }


class FakeChromaClient:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}
        self.get_or_create_failures = 0
        # raised instead of the default state error while failures remain
        self.get_or_create_error: Exception | None = None
        self.create_failures = 0
        self.delete_delay = 0.0
        self.deleted: list[str] = []

    def get_or_create_collection(self, name: str, metadata=None) -> FakeCollection:
        if self.get_or_create_failures > 0:
            self.get_or_create_failures -= 1
            if self.get_or_create_error is not None:
                raise self.get_or_create_error
            raise RuntimeError("collection is in an inconsistent state")
        if name not in self.collections:
            self.collections[name] = FakeCollection(name, metadata)
        return self.collections[name]

    def delete_collection(self, name: str) -> None:
        if self.delete_delay:
            time.sleep(self.delete_delay)
        if name not in self.collections:
            raise ValueError(f"Collection {name} does not exist.")
        self.deleted.append(name)
        del self.collections[name]

    def create_collection(self, name: str, metadata=None) -> FakeCollection:
        if self.create_failures > 0:
            self.create_failures -= 1
            raise RuntimeError("index server refused to create collection")
        if name in self.collections:
            raise ValueError(f"Collection {name} already exists.")
        self.collections[name] = FakeCollection(name, metadata)
        return self.collections[name]


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def chroma_client() -> FakeChromaClient:
    return FakeChromaClient()


@pytest.fixture
def vector_store(chroma_client: FakeChromaClient) -> ChromaVectorStore:
    return ChromaVectorStore(lambda: chroma_client)


@pytest.fixture
def generator(embedder: HashingEmbedder) -> EmbeddingGenerator:
    return EmbeddingGenerator(EmbedderLoader(lambda: embedder))


@pytest.fixture
def service(
    generator: EmbeddingGenerator, vector_store: ChromaVectorStore
) -> RetrievalService:
    return RetrievalService(generator, vector_store, PipelinePolicy())
