from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Card(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="_id", min_length=1)
    title: str = Field(min_length=1)
    description: Optional[str] = None
    type: str = Field(min_length=1)
    link: Optional[str] = None
    owner_id: Optional[str] = Field(default=None, alias="userId")


class CardMetadata(BaseModel):
    """Metadata stored next to each vector; missing optionals are empty strings."""

    title: str
    description: str = ""
    type: str
    link: str = ""
    owner_id: str = ""

    @classmethod
    def from_card(cls, card: Card) -> "CardMetadata":
        return cls(
            title=card.title,
            description=card.description or "",
            type=card.type,
            link=card.link or "",
            owner_id=card.owner_id or "",
        )


class MatchResult(BaseModel):
    id: str
    title: str
    description: str = ""
    type: str
    link: str = ""
