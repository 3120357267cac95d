import asyncio
import logging
from typing import Callable, List, Optional

from secondbrain.data_pipeline.sentence_transformers import Embedder, load_embedder
from secondbrain.errors import EmbeddingError, ModelLoadError

logger = logging.getLogger(__name__)

EmbedderFactory = Callable[[], Embedder]


class EmbedderLoader:
    """Lazily loads one embedder and shares it with every caller.

    The first call to ``ensure_ready`` starts the load; callers arriving while
    it is in flight await the same task. A failed load is forgotten so the
    next call starts over.
    """

    def __init__(self, factory: EmbedderFactory) -> None:
        self._factory = factory
        self._embedder: Optional[Embedder] = None
        self._pending: Optional[asyncio.Task] = None

    @classmethod
    def from_model(
        cls, model_name: str, model_path: str, device: Optional[str] = None
    ) -> "EmbedderLoader":
        return cls(lambda: load_embedder(model_name, model_path, device))

    @property
    def is_ready(self) -> bool:
        return self._embedder is not None

    async def ensure_ready(self) -> Embedder:
        if self._embedder is not None:
            return self._embedder
        if self._pending is None:
            self._pending = asyncio.create_task(self._load())
        # Shielded so one cancelled waiter does not abort the shared load.
        return await asyncio.shield(self._pending)

    async def _load(self) -> Embedder:
        logger.info("Loading embedding model...")
        try:
            embedder = await asyncio.to_thread(self._factory)
        except Exception as exc:
            logger.error("Failed to load embedding model: %s", exc)
            self._pending = None
            raise ModelLoadError(f"Failed to load embedding model: {exc}") from exc
        self._embedder = embedder
        self._pending = None
        logger.info("Embedding model loaded successfully (dim=%d)", embedder.dimension)
        return embedder


class EmbeddingGenerator:
    def __init__(self, loader: EmbedderLoader) -> None:
        self._loader = loader

    async def embed(self, text: str) -> List[float]:
        embedder = await self._loader.ensure_ready()
        try:
            vector = await asyncio.to_thread(embedder.embed, text)
        except Exception as exc:
            logger.error("Error getting embeddings: %s", exc)
            raise EmbeddingError(f"Failed to embed text: {exc}") from exc
        if len(vector) != embedder.dimension:
            raise EmbeddingError(
                f"Expected a {embedder.dimension}-dimensional vector, got {len(vector)}"
            )
        return vector
