from functools import lru_cache
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _validate_endpoint_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not value.startswith(("http://", "https://")):
        raise ValueError(f"Expected an http(s) URL for the index server, got: {value}")
    return value.rstrip("/")


EndpointUrl = Annotated[Optional[str], AfterValidator(_validate_endpoint_url)]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"

    embed_model_name: str = "sentence-transformers/all-MiniLM-L6-v2"
    embed_model_path: str = "models/sentence-transformers/all-MiniLM-L6-v2"
    embed_device: str | None = None

    chroma_url: EndpointUrl = None
    chroma_collection: str = "content_collection"

    skip_if_unconfigured: bool = True
    on_storage_error: Literal["suppress", "propagate"] = "propagate"

    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"


@lru_cache
def get_settings() -> Settings:
    return Settings()
