"""
Embedding Service for Case Documents

Provides chunk and query embeddings via OpenAI (default), Voyage AI or Cohere,
with a local sentence-transformers fallback. Supports batching, caching, and
different input types (documents vs queries). Every call reports the tokens it
consumed so indexing cost can be accounted.

Architecture:
    BaseEmbeddingService  -- shared caching, batching, embed_documents, embed_query
        OpenAIEmbeddingService    -- OpenAI text-embedding-3 provider
        VoyageEmbeddingService    -- Voyage AI voyage-law-2 provider
        CohereEmbeddingService    -- Cohere embed-v3 provider
    LocalEmbeddingService -- local sentence-transformers (no caching, no cost)
"""

import os
import json
import hashlib
import logging
from typing import Optional, Union
from dataclasses import dataclass, field
from pathlib import Path

import openai
from openai import OpenAI

from .llm_client import translate_openai_error
from .model_config import EMBEDDING_DIMENSIONS, get_embedding_config

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding service."""
    provider: str = "openai"  # "openai", "voyage" or "cohere"
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100  # items per API call
    max_tokens_per_batch: int = 100000
    chars_per_token: float = 4.0
    cache_dir: Optional[str] = None
    use_cache: bool = True


@dataclass
class EmbeddingResult:
    """Vectors for a list of inputs plus the tokens billed for them."""
    vectors: list[list[float]] = field(default_factory=list)
    tokens_used: int = 0
    model: str = ""

    @property
    def vector(self) -> list[float]:
        """First vector (query embeddings have exactly one)."""
        return self.vectors[0] if self.vectors else []


class BaseEmbeddingService:
    """
    Base class for API-based embedding services.

    Provides shared functionality:
    - Batched embedding with progress logging
    - Memory and file-based caching
    - Token usage accumulation across batches

    Subclasses implement:
    - _init_client(): Initialize the provider-specific API client
    - _request(texts, input_type): One API call returning (vectors, tokens)
    """

    _provider_name: str = "Base"
    _env_var_name: str = ""
    _doc_input_type: str = "document"
    _query_input_type: str = "query"

    def __init__(self, config: Optional[EmbeddingConfig] = None):
        """
        Initialize embedding service.

        Args:
            config: Optional configuration. Uses defaults if not provided.
        """
        self.config = config or EmbeddingConfig()
        self._client = None
        self._cache = {}

        if self.config.cache_dir:
            self._cache_path = Path(self.config.cache_dir)
            self._cache_path.mkdir(parents=True, exist_ok=True)
        else:
            self._cache_path = None

        self._init_client()

    def _init_client(self):
        """Initialize the provider-specific API client. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _init_client()")

    def _request(self, texts: list[str], input_type: str) -> tuple[list[list[float]], int]:
        """Call the provider API. Must be overridden by subclasses."""
        raise NotImplementedError("Subclasses must implement _request()")

    def _require_client(self) -> None:
        if not self._client:
            raise RuntimeError(
                f"{self._provider_name} client not initialized. "
                f"Check {self._env_var_name}."
            )

    def _create_batches(self, texts: list[str]) -> list[list[str]]:
        """Split texts into batches respecting both item count and token limits."""
        batches = []
        current_batch = []
        current_tokens = 0
        cpt = self.config.chars_per_token

        for text in texts:
            est_tokens = len(text) / cpt
            if current_batch and (
                len(current_batch) >= self.config.batch_size
                or current_tokens + est_tokens > self.config.max_tokens_per_batch
            ):
                batches.append(current_batch)
                current_batch = []
                current_tokens = 0
            current_batch.append(text)
            current_tokens += est_tokens

        if current_batch:
            batches.append(current_batch)

        return batches

    def embed_documents(self, texts: list[str]) -> EmbeddingResult:
        """
        Generate embeddings for document chunks.

        Any batch failure propagates; callers get either every vector or none.

        Args:
            texts: List of text strings to embed

        Returns:
            EmbeddingResult with one vector per input, in input order
        """
        if not texts:
            return EmbeddingResult(model=self.config.model)

        self._require_client()
        batches = self._create_batches(texts)

        logger.info(
            f"Embedding {len(texts)} chunks in {len(batches)} batches"
            f" with {self._provider_name}"
        )

        vectors = []
        tokens = 0
        for batch_idx, batch in enumerate(batches):
            batch_vectors, batch_tokens = self._embed_batch(batch, input_type=self._doc_input_type)
            vectors.extend(batch_vectors)
            tokens += batch_tokens

            if (batch_idx + 1) % 10 == 0:
                logger.info(f"Processed batch {batch_idx + 1}/{len(batches)}")

        return EmbeddingResult(vectors=vectors, tokens_used=tokens, model=self.config.model)

    def embed_query(self, query: str) -> EmbeddingResult:
        """
        Generate embedding for a search query.

        Uses a different input_type for better query-document matching.
        """
        self._require_client()
        vectors, tokens = self._embed_batch([query], input_type=self._query_input_type)
        return EmbeddingResult(vectors=vectors, tokens_used=tokens, model=self.config.model)

    def _embed_batch(
        self,
        texts: list[str],
        input_type: str = "document",
    ) -> tuple[list[list[float]], int]:
        """Embed a batch of texts, serving cached vectors without an API call."""
        results = []
        uncached_texts = []
        uncached_indices = []

        for i, text in enumerate(texts):
            cached = self._get_cached(self._get_cache_key(text, input_type))
            if cached is not None:
                results.append((i, cached))
            else:
                uncached_texts.append(text)
                uncached_indices.append(i)

        tokens = 0
        if uncached_texts:
            try:
                vectors, tokens = self._request(uncached_texts, input_type)
            except Exception as e:
                logger.error(f"{self._provider_name} embedding failed: {e}")
                raise

            if len(vectors) != len(uncached_texts):
                raise RuntimeError(
                    f"{self._provider_name} returned {len(vectors)} embeddings "
                    f"for {len(uncached_texts)} inputs"
                )

            for idx, embedding in zip(uncached_indices, vectors):
                self._set_cached(self._get_cache_key(texts[idx], input_type), embedding)
                results.append((idx, embedding))

        results.sort(key=lambda x: x[0])
        return [emb for _, emb in results], tokens

    def _get_cache_key(self, text: str, input_type: str) -> str:
        """Generate cache key for text."""
        content = f"{self.config.model}:{input_type}:{text}"
        return hashlib.sha256(content.encode()).hexdigest()[:32]

    def _get_cached(self, key: str) -> Optional[list[float]]:
        """Get cached embedding."""
        if not self.config.use_cache:
            return None

        if key in self._cache:
            return self._cache[key]

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            if cache_file.exists():
                try:
                    with open(cache_file) as f:
                        embedding = json.load(f)
                        self._cache[key] = embedding
                        return embedding
                except (OSError, ValueError) as e:
                    logger.debug(f"Failed to read embedding cache file {cache_file}: {e}")

        return None

    def _set_cached(self, key: str, embedding: list[float]) -> None:
        """Cache an embedding."""
        if not self.config.use_cache:
            return

        self._cache[key] = embedding

        if self._cache_path:
            cache_file = self._cache_path / f"{key}.json"
            try:
                with open(cache_file, "w") as f:
                    json.dump(embedding, f)
            except OSError as e:
                logger.warning(f"Failed to cache embedding: {e}")

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self.config.dimensions


class OpenAIEmbeddingService(BaseEmbeddingService):
    """
    Embeddings from OpenAI's text-embedding-3 family.

    OpenAI has no document/query distinction, so both input types map to the
    same request. Token usage comes from ``response.usage.total_tokens``.
    """

    _provider_name = "OpenAI"
    _env_var_name = "OPENAI_API_KEY"

    def _init_client(self):
        """Initialize the OpenAI client."""
        api_key = os.getenv("OPENAI_API_KEY")

        if not api_key:
            logger.warning(
                "OPENAI_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        kwargs = {"api_key": api_key, "timeout": float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))}
        if os.getenv("OPENAI_BASE_URL"):
            kwargs["base_url"] = os.getenv("OPENAI_BASE_URL")
        self._client = OpenAI(**kwargs)
        logger.info(f"OpenAI embedding client initialized with model {self.config.model}")

    def _request(self, texts, input_type):
        try:
            response = self._client.embeddings.create(model=self.config.model, input=texts)
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

        ordered = sorted(response.data, key=lambda item: item.index)
        usage = getattr(response, "usage", None)
        return [item.embedding for item in ordered], getattr(usage, "total_tokens", 0) or 0


class VoyageEmbeddingService(BaseEmbeddingService):
    """
    Embedding service using Voyage AI's voyage-law-2 model.

    voyage-law-2 provides:
    - 1024-dimensional embeddings
    - Better retrieval on legal text than general models
    - Different input types for documents vs queries
    """

    _provider_name = "Voyage AI"
    _env_var_name = "VOYAGE_API_KEY"
    _doc_input_type = "document"
    _query_input_type = "query"

    def _init_client(self):
        """Initialize the Voyage AI client."""
        api_key = os.getenv("VOYAGE_API_KEY")

        if not api_key:
            logger.warning(
                "VOYAGE_API_KEY not found. Embeddings will fail. "
                "Get your API key at https://dash.voyageai.com/"
            )
            return

        try:
            import voyageai
            self._client = voyageai.Client(api_key=api_key)
            logger.info(f"Voyage AI client initialized with model {self.config.model}")
        except ImportError:
            logger.error("voyageai package not installed. Run: pip install voyageai")
            raise

    def _request(self, texts, input_type):
        result = self._client.embed(texts, model=self.config.model, input_type=input_type)
        return result.embeddings, getattr(result, "total_tokens", 0) or 0


class CohereEmbeddingService(BaseEmbeddingService):
    """
    Generates embeddings using Cohere's embed-v3 model.

    Cohere reports billed input tokens under ``meta.billed_units``.
    """

    _provider_name = "Cohere"
    _env_var_name = "COHERE_API_KEY"
    _doc_input_type = "search_document"
    _query_input_type = "search_query"

    def _init_client(self):
        """Initialize the Cohere client."""
        api_key = os.getenv("COHERE_API_KEY")

        if not api_key:
            logger.warning(
                "COHERE_API_KEY not found. Embeddings will fail. "
                "Set the environment variable or use a different provider."
            )
            return

        try:
            import cohere
            self._client = cohere.Client(api_key)
            logger.info(f"Cohere client initialized with model {self.config.model}")
        except ImportError:
            logger.error("Cohere package not installed. Run: pip install cohere")
            raise

    def _request(self, texts, input_type):
        response = self._client.embed(texts=texts, model=self.config.model, input_type=input_type)
        billed = getattr(getattr(response, "meta", None), "billed_units", None)
        tokens = int(getattr(billed, "input_tokens", 0) or 0)
        return response.embeddings, tokens


class LocalEmbeddingService:
    """
    Alternative embedding service using local models.

    Uses sentence-transformers with BGE-M3 for cost-free embeddings.
    Good for development or high-volume batch processing.
    """

    def __init__(self, model_name: str = "BAAI/bge-m3"):
        """Initialize with a local model."""
        try:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(model_name)
            self._model_name = model_name
            self._dimensions = self._model.get_sentence_embedding_dimension()
            logger.info(f"Local embedding model loaded: {model_name}")
        except ImportError:
            raise ImportError(
                "sentence-transformers not installed. "
                "Run: pip install sentence-transformers"
            )

    def embed_documents(self, texts: list[str]) -> EmbeddingResult:
        """Embed documents using local model."""
        if not texts:
            return EmbeddingResult(model=self._model_name)
        embeddings = self._model.encode(texts, show_progress_bar=True)
        return EmbeddingResult(vectors=embeddings.tolist(), model=self._model_name)

    def embed_query(self, query: str) -> EmbeddingResult:
        """Embed a query using local model."""
        embedding = self._model.encode([query])
        return EmbeddingResult(vectors=[embedding[0].tolist()], model=self._model_name)

    @property
    def model(self) -> str:
        return self._model_name

    @property
    def dimensions(self) -> int:
        """Return embedding dimensions."""
        return self._dimensions


def get_embedding_service(
    provider: Optional[str] = None,
    use_local: bool = False,
    model: Optional[str] = None,
    cache_dir: Optional[str] = None,
) -> Union[OpenAIEmbeddingService, VoyageEmbeddingService, CohereEmbeddingService, LocalEmbeddingService]:
    """
    Factory function to get appropriate embedding service.

    Args:
        provider: "openai" (default), "voyage" or "cohere"; falls back to
            the EMBEDDING_PROVIDER environment variable
        use_local: If True, use local BGE-M3 model instead of API
        model: Optional model override
        cache_dir: Optional directory for the file cache

    Returns:
        Configured embedding service
    """
    if use_local:
        return LocalEmbeddingService(model or "BAAI/bge-m3")

    provider = provider or os.getenv("EMBEDDING_PROVIDER", "openai")

    if provider == "voyage":
        model = model or "voyage-law-2"
        return VoyageEmbeddingService(EmbeddingConfig(
            provider="voyage",
            model=model,
            dimensions=EMBEDDING_DIMENSIONS.get(model, 1024),
            batch_size=128,
            # Voyage tokenizes more aggressively than LLM tokenizers
            chars_per_token=2.0,
            cache_dir=cache_dir,
        ))

    if provider == "cohere":
        model = model or "embed-english-v3.0"
        return CohereEmbeddingService(EmbeddingConfig(
            provider="cohere",
            model=model,
            dimensions=EMBEDDING_DIMENSIONS.get(model, 1024),
            batch_size=96,
            cache_dir=cache_dir,
        ))

    model_config = get_embedding_config(model)
    return OpenAIEmbeddingService(EmbeddingConfig(
        provider="openai",
        model=model_config.model,
        dimensions=model_config.dimensions,
        batch_size=100,
        cache_dir=cache_dir,
    ))


# CLI for testing
if __name__ == "__main__":
    import sys
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    service = get_embedding_service()
    print(f"Using embedding model: {service.model}")

    query = " ".join(sys.argv[1:]) or "bank statements for the joint checking account"
    print(f"Query: {query}")
    result = service.embed_query(query)
    print(f"Embedding dimensions: {len(result.vector)}")
    print(f"Tokens used: {result.tokens_used}")
