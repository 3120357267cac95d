import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from pydantic import ValidationError

from secondbrain.data_pipeline.embeddings import EmbedderLoader, EmbeddingGenerator
from secondbrain.data_pipeline.vector_store import ChromaVectorStore
from secondbrain.errors import ConfigurationError, IndexUnavailableError
from secondbrain.models.cards import Card, CardMetadata, MatchResult
from secondbrain.settings import Settings, get_settings

logger = logging.getLogger(__name__)

StorageErrorPolicy = Literal["suppress", "propagate"]


@dataclass(frozen=True)
class PipelinePolicy:
    skip_if_unconfigured: bool = True
    on_storage_error: StorageErrorPolicy = "propagate"

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelinePolicy":
        return cls(
            skip_if_unconfigured=settings.skip_if_unconfigured,
            on_storage_error=settings.on_storage_error,
        )


def build_canonical_text(card: Card) -> str:
    return f"{card.title} {card.description or ''} {card.type} {card.link or ''}".strip()


class RetrievalService:
    """Stores card embeddings and answers owner-scoped best-match queries.

    ``store`` may be ``None`` when no index server is configured; with
    ``policy.skip_if_unconfigured`` the service then skips all work.
    Embedding failures always reach the caller. Index failures while
    querying become "no match" after at most one collection repair; while
    storing they follow ``policy.on_storage_error`` and never repair, so a
    write can not wipe the collection.
    """

    def __init__(
        self,
        generator: EmbeddingGenerator,
        store: Optional[ChromaVectorStore],
        policy: PipelinePolicy = PipelinePolicy(),
    ) -> None:
        if store is None and not policy.skip_if_unconfigured:
            raise ConfigurationError("Index server URL is not configured")
        self._generator = generator
        self._store = store
        self.policy = policy

    @property
    def is_configured(self) -> bool:
        return self._store is not None

    async def store_card_embeddings(self, card: Card) -> bool:
        """Embed and upsert ``card``; returns whether an index entry was written."""
        if self._store is None:
            logger.warning("Index server not configured, skipping embedding storage")
            return False

        text = build_canonical_text(card)
        vector = await self._generator.embed(text)
        metadata = CardMetadata.from_card(card).model_dump()
        try:
            await self._store.ensure_collection()
            await self._store.upsert(card.id, vector, text, metadata)
        except IndexUnavailableError:
            if self.policy.on_storage_error == "propagate":
                raise
            logger.exception("Error storing embeddings for card %s", card.id)
            return False
        logger.debug("Stored embedding for card %s", card.id)
        return True

    async def query_best_match(
        self, query: str, owner_id: str
    ) -> Optional[MatchResult]:
        if self._store is None:
            logger.warning("Index server not configured, skipping vector search")
            return None

        vector = await self._generator.embed(query)
        try:
            await self._store.ensure_collection_with_repair()
            hits = await self._store.query_nearest(vector, owner_id, k=1)
        except IndexUnavailableError:
            logger.exception("Vector search failed for owner %s", owner_id)
            return None

        if not hits or not hits[0].metadata:
            logger.debug("No match for owner %s", owner_id)
            return None

        best = hits[0]
        try:
            return MatchResult.model_validate({**best.metadata, "id": best.id})
        except ValidationError:
            logger.warning("Skipping invalid index entry %s: %s", best.id, best.metadata)
            return None


def build_service(settings: Settings) -> RetrievalService:
    loader = EmbedderLoader.from_model(
        settings.embed_model_name,
        settings.embed_model_path,
        settings.embed_device,
    )
    store = None
    if settings.chroma_url:
        store = ChromaVectorStore.from_url(
            settings.chroma_url, collection_name=settings.chroma_collection
        )
    return RetrievalService(
        EmbeddingGenerator(loader),
        store,
        policy=PipelinePolicy.from_settings(settings),
    )


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(message)s",
    )


def load_card_file(path: Path) -> Card:
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    try:
        return Card.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid card in {path}: {exc}") from exc


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Store card embeddings or find the best matching card."
    )
    parser.add_argument(
        "--debug-config",
        action="store_true",
        help="Print the resolved config and exit.",
    )
    subparsers = parser.add_subparsers(dest="command")

    store_parser = subparsers.add_parser("store", help="Embed and store one card.")
    store_parser.add_argument(
        "--card-file", type=Path, required=True, help="Path to a card JSON file."
    )

    query_parser = subparsers.add_parser("query", help="Find the best match.")
    query_parser.add_argument("question", help="Free-text query")
    query_parser.add_argument("--owner", required=True, help="Owner id to search")

    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level)
    if args.debug_config:
        print(json.dumps(settings.model_dump(exclude={"jwt_secret"}), indent=2))
        return
    if args.command is None:
        parser.error("a command is required (store or query)")

    service = build_service(settings)
    if args.command == "store":
        card = load_card_file(args.card_file)
        if asyncio.run(service.store_card_embeddings(card)):
            logger.info("Stored card %s", card.id)
        else:
            logger.warning("Card %s was not stored", card.id)
        return

    match = asyncio.run(service.query_best_match(args.question, args.owner))
    if match is None:
        print("No match found.")
        return
    print(json.dumps(match.model_dump(), indent=2))


if __name__ == "__main__":
    main()
