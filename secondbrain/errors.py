class RetrievalError(Exception):
    """Base class for failures raised by the card retrieval pipeline."""


class ConfigurationError(RetrievalError):
    """The pipeline was asked to run without a usable configuration."""


class ModelLoadError(RetrievalError):
    """The embedding model could not be initialized.

    Retryable: the next call to the loader starts a fresh attempt.
    """


class EmbeddingError(RetrievalError):
    """A loaded model failed to produce a vector for the given text."""


class IndexUnavailableError(RetrievalError):
    """The vector index collection could not be fetched, created or repaired."""


class CollectionStateError(IndexUnavailableError):
    """The index server reached the collection but reported it as unusable.

    Only this failure triggers a delete-and-recreate repair; transport
    failures (timeouts, refused connections) never do.
    """
