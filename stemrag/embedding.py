# =============================================================================
# Embedding Module
# =============================================================================
# This module turns text into vector embeddings. The default backend runs a
# local sentence-transformers model; an OpenAI (or OpenAI-compatible) backend
# is available for setups that embed through an API.

from openai import OpenAI
from sentence_transformers import SentenceTransformer

from stemrag.config import get_secrets
from stemrag.errors import EmbeddingError, ModelLoadError


class SentenceTransformerBackend:
    """Local embedding model loaded with sentence-transformers."""

    def __init__(self, model_name, device='cpu', normalize=True):
        self.model_name = model_name
        self.normalize = normalize
        self._model = SentenceTransformer(model_name, device=device)
        self.dimension = self._model.get_sentence_embedding_dimension()

    def embed(self, text):
        vector = self._model.encode(
            text,
            normalize_embeddings=self.normalize,
            convert_to_numpy=True,
        )
        return [float(x) for x in vector]


class OpenAIEmbeddingBackend:
    """Embeddings through the OpenAI embeddings API."""

    # Known dimensions for OpenAI embedding models
    DIMENSIONS = {
        'text-embedding-3-small': 1536,
        'text-embedding-3-large': 3072,
        'text-embedding-ada-002': 1536,
    }

    def __init__(self, client, model):
        self.model_name = model
        self._client = client

        if model in self.DIMENSIONS:
            self.dimension = self.DIMENSIONS[model]
        else:
            # Unknown model (e.g. served locally): ask it once
            self.dimension = len(self.embed("dimension check"))

    def embed(self, text):
        response = self._client.embeddings.create(
            input=text,
            model=self.model_name
        )
        return response.data[0].embedding


class EmbeddingService:
    """
    Turns query text into a fixed-dimension embedding vector.

    The backend is loaded once and shared; it only ever runs inference,
    so one service can serve any number of query chains.

    Args:
        backend: Any object with an ``embed(text)`` method returning a list
                 of floats and a ``dimension`` attribute
    """

    def __init__(self, backend):
        self._backend = backend
        self._dimension = int(backend.dimension)

    @property
    def dimension(self):
        """The vector length D. Constant for the lifetime of the service."""
        return self._dimension

    @property
    def model_name(self):
        return getattr(self._backend, 'model_name', 'unknown')

    def generate_embedding(self, text):
        """
        Generate an embedding vector for a piece of text.

        Args:
            text: The text to embed (must not be empty)

        Returns:
            list: A list of exactly ``dimension`` floats

        Raises:
            EmbeddingError: If the text is empty, inference fails, or the
                            backend returns a vector of the wrong length
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        try:
            vector = self._backend.embed(text)
        except Exception as e:
            raise EmbeddingError(f"Embedding inference failed: {e}") from e

        vector = [float(x) for x in vector]
        if len(vector) != self._dimension:
            raise EmbeddingError(
                f"Embedding has {len(vector)} dimensions, expected {self._dimension}"
            )

        return vector


def create_embedding_service(config, logger=None):
    """
    Load the configured embedding backend and wrap it in a service.

    Args:
        config: Configuration dictionary with an 'embedding' section
        logger: Optional logger for tracking progress

    Returns:
        EmbeddingService: Ready-to-use service

    Raises:
        ModelLoadError: If the provider is unknown or the model can't be loaded
    """
    settings = config.get('embedding', {})
    provider = settings.get('provider', 'sentence_transformers')
    model = settings.get('model')

    message = f"Loading embedding model {model} ({provider})..."
    if logger:
        logger.info(message)
    else:
        print(message)

    try:
        if provider == 'sentence_transformers':
            backend = SentenceTransformerBackend(
                model,
                device=settings.get('device', 'cpu'),
                normalize=settings.get('normalize', True),
            )
        elif provider == 'openai':
            secrets = get_secrets()
            client = OpenAI(
                api_key=secrets.get('openai_api_key') or 'not-needed',
                base_url=settings.get('base_url'),
            )
            backend = OpenAIEmbeddingBackend(client, model)
        else:
            raise ModelLoadError(f"Unknown embedding provider: {provider}")
    except ModelLoadError:
        raise
    except Exception as e:
        raise ModelLoadError(f"Could not load embedding model {model}: {e}") from e

    service = EmbeddingService(backend)

    message = f"Embedding model ready ({service.dimension} dimensions)"
    if logger:
        logger.info(message)
    else:
        print(message)

    return service
