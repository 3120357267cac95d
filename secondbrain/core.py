from functools import lru_cache
from typing import Any, Dict

from fastapi import HTTPException
from pydantic import ValidationError

from secondbrain.data_pipeline.retrieval import RetrievalService, build_service
from secondbrain.errors import (
    ConfigurationError,
    EmbeddingError,
    IndexUnavailableError,
    ModelLoadError,
)
from secondbrain.models.api import CardPayload, SearchResponse, StoreCardResponse
from secondbrain.models.cards import Card
from secondbrain.settings import get_settings


@lru_cache
def _build_retrieval_service() -> RetrievalService:
    return build_service(get_settings())


def get_retrieval_service() -> RetrievalService:
    try:
        return _build_retrieval_service()
    except (ValidationError, ConfigurationError, ValueError) as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


async def store_card(
    service: RetrievalService, payload: CardPayload, owner_id: str
) -> Dict[str, Any]:
    card = Card(**payload.model_dump(), owner_id=owner_id)
    try:
        stored = await service.store_card_embeddings(card)
    except ModelLoadError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except (EmbeddingError, IndexUnavailableError) as exc:
        raise HTTPException(
            status_code=500, detail=f"Storing embeddings failed: {exc}"
        ) from exc
    return StoreCardResponse(id=card.id, stored=stored).model_dump()


async def search_cards(
    service: RetrievalService, query: str, owner_id: str
) -> Dict[str, Any]:
    try:
        match = await service.query_best_match(query, owner_id)
    except ModelLoadError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except EmbeddingError as exc:
        raise HTTPException(status_code=500, detail=f"Search failed: {exc}") from exc
    return SearchResponse(query=query, match=match).model_dump()
