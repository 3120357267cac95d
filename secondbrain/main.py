from typing import Any, Dict

from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware

from secondbrain.auth import get_owner_id
from secondbrain.core import get_retrieval_service, search_cards, store_card
from secondbrain.data_pipeline.retrieval import RetrievalService
from secondbrain.models.api import CardPayload, SearchResponse, StoreCardResponse
from secondbrain.settings import get_settings

app = FastAPI()

settings = get_settings()
cors_origins = settings.cors_origins
origins = [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/")
def read_root():
    return {"Hello": "World"}


@app.post("/cards", response_model=StoreCardResponse)
async def create_card_embedding(
    payload: CardPayload,
    owner_id: str = Depends(get_owner_id),
    service: RetrievalService = Depends(get_retrieval_service),
) -> Dict[str, Any]:
    return await store_card(service, payload, owner_id)


@app.get("/search", response_model=SearchResponse)
async def search(
    query: str = Query(..., min_length=1),
    owner_id: str = Depends(get_owner_id),
    service: RetrievalService = Depends(get_retrieval_service),
) -> Dict[str, Any]:
    return await search_cards(service, query, owner_id)
