import logging
import shutil
import tempfile
from pathlib import Path
from types import ModuleType
from typing import List, Optional, Protocol

from sentence_transformers import SentenceTransformer, models

torch_module: Optional[ModuleType]
try:
    import torch as torch_module
except ImportError:  # pragma: no cover - torch is a dependency of sentence-transformers
    torch_module = None

logger = logging.getLogger(__name__)

# present in every directory written by SentenceTransformer.save
MODEL_MARKER = "modules.json"


class Embedder(Protocol):
    """A ready-to-use text encoder producing vectors of a fixed dimension."""

    dimension: int

    def embed(self, text: str) -> List[float]: ...


def resolve_device(device: Optional[str] = None) -> str:
    if device:
        return device
    if torch_module is not None and torch_module.cuda.is_available():
        return "cuda"
    return "cpu"


def _has_saved_model(path: Path) -> bool:
    return (path / MODEL_MARKER).is_file()


def _save_model(model: SentenceTransformer, target: Path) -> None:
    """Save into a sibling temp dir and move it into place once complete."""
    target.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{target.name}-", dir=target.parent))
    try:
        model.save(str(staging))
        if target.exists():
            logger.warning("Replacing incomplete model directory: %s", target)
            shutil.rmtree(target)
        staging.replace(target)
    except Exception:
        shutil.rmtree(staging, ignore_errors=True)
        raise


def load_transformer(
    model_name: str, model_path: str, device: Optional[str] = None
) -> SentenceTransformer:
    device = resolve_device(device)
    resolved_path = Path(model_path)
    if _has_saved_model(resolved_path):
        logger.info(
            "Loading embedding model from path: %s (device=%s)",
            resolved_path,
            device,
        )
        return SentenceTransformer(str(resolved_path), device=device)

    logger.info(
        "Loading embedding model: %s (device=%s, path=%s)",
        model_name,
        device,
        model_path,
    )
    # Mean pooling over token embeddings, whatever pooling the hub model ships with.
    word_embedding_model = models.Transformer(model_name)
    pooling_model = models.Pooling(
        word_embedding_model.get_word_embedding_dimension(),
        pooling_mode="mean",
    )
    model = SentenceTransformer(
        modules=[word_embedding_model, pooling_model], device=device
    )
    _save_model(model, resolved_path)
    return model


def embed_text(
    model: SentenceTransformer,
    text: str,
    normalize: bool,
) -> List[float]:
    embeddings = model.encode(
        text,
        show_progress_bar=False,
        convert_to_numpy=True,
        normalize_embeddings=normalize,
    )
    return embeddings.tolist()


class SentenceTransformerEmbedder:
    """Mean-pooled, L2-normalized sentence embeddings from a loaded model."""

    def __init__(self, model: SentenceTransformer) -> None:
        self._model = model
        dimension = model.get_sentence_embedding_dimension()
        if not dimension:
            raise ValueError("Embedding model does not report a sentence dimension")
        self.dimension = dimension

    def embed(self, text: str) -> List[float]:
        return embed_text(self._model, text, normalize=True)


def load_embedder(
    model_name: str, model_path: str, device: Optional[str] = None
) -> SentenceTransformerEmbedder:
    return SentenceTransformerEmbedder(load_transformer(model_name, model_path, device))
