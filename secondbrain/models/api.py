from typing import Optional

from pydantic import BaseModel, Field

from secondbrain.models.cards import MatchResult


class CardPayload(BaseModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: Optional[str] = None
    type: str = Field(min_length=1)
    link: Optional[str] = None


class StoreCardResponse(BaseModel):
    id: str
    stored: bool


class SearchResponse(BaseModel):
    query: str
    match: Optional[MatchResult] = None
