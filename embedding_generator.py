"""
Embedding generators: the external providers the acquirer calls when a word
is neither cached nor stored, plus the deterministic synthetic fallback.
"""
import os
import hashlib
import threading
from typing import Any, Optional

import numpy as np
import requests

from exceptions import GenerationError
from logger_config import get_logger

logger = get_logger("wordmath.api.embeddings", "api")

DEFAULT_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"
DEFAULT_ENDPOINT = "https://api-inference.huggingface.co/models"
DEFAULT_DIMENSION = 384

# Value shipped in the sample .env; treated the same as no key at all
PLACEHOLDER_API_KEY = "your_huggingface_token_here"


def count_tokens(text: str) -> int:
    """Rudimentary token approximation: 1 token ~= 4 characters."""
    return max(1, len(text) // 4)


def synthetic_embedding(text: str, dimension: int = DEFAULT_DIMENSION) -> np.ndarray:
    """
    Derive a reproducible unit-length pseudo-embedding from *text*.

    The same text always yields the same vector (the generator is seeded from
    a SHA-256 digest of the text), different texts yield unrelated vectors.
    It carries no meaning and only keeps the pipeline running when no real
    embedding can be obtained.

    Args:
        text: Non-empty input text
        dimension: Length of the returned vector

    Returns:
        Normalised vector of shape (dimension,)
    """
    if not text:
        raise ValueError("Cannot derive a synthetic embedding from empty text")
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    rng = np.random.default_rng(int.from_bytes(digest[:8], "big"))
    vector = rng.uniform(-1.0, 1.0, size=dimension)
    norm = np.linalg.norm(vector)
    if norm == 0:
        raise ValueError("Synthetic embedding collapsed to the zero vector")
    return vector / norm


class EmbeddingGenerator:
    """Interface for providers turning text into a vector."""

    name = "base"

    @property
    def is_configured(self) -> bool:
        return True

    def generate(self, text: str) -> np.ndarray:
        """Return the embedding of *text* or raise GenerationError."""
        raise NotImplementedError


class HuggingFaceApiGenerator(EmbeddingGenerator):
    """Feature extraction through the Hugging Face Inference API."""

    name = "huggingface"

    def __init__(self,
                 api_key: Optional[str] = None,
                 *,
                 model_name: str = DEFAULT_MODEL,
                 api_url: str = DEFAULT_ENDPOINT,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        # Allow callers to obtain the key from env to avoid passing secrets
        self.api_key = api_key or os.getenv("HUGGINGFACE_API_KEY")
        self.model_name = model_name
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

        if not self.is_configured:
            logger.warning("HUGGINGFACE_API_KEY not set – API generation disabled, "
                           "words will fall back to synthetic embeddings")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != PLACEHOLDER_API_KEY

    def generate(self, text: str) -> np.ndarray:
        if not self.is_configured:
            raise GenerationError("Hugging Face API key not configured", provider=self.name)

        url = f"{self.api_url}/{self.model_name}"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {"inputs": text, "options": {"wait_for_model": True}}

        logger.info(f"Generating embedding for: {text!r}")
        try:
            response = self._session.post(url, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise GenerationError(f"Request to Hugging Face failed: {e}", provider=self.name) from e

        if response.status_code != 200:
            logger.error(f"API error: {response.status_code} - {response.text[:200]}")
            raise GenerationError(f"API error: {response.status_code}",
                                  provider=self.name, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise GenerationError("Response body is not JSON", provider=self.name) from e
        return self._parse_vector(body)

    def _parse_vector(self, body: Any) -> np.ndarray:
        """Handle the response shapes the feature-extraction endpoint returns."""
        try:
            array = np.asarray(body, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise GenerationError("Unexpected response format from Hugging Face API",
                                  provider=self.name) from e

        if array.ndim == 1:
            return array
        if array.ndim == 2 and array.shape[0] > 0:
            return array[0]
        if array.ndim == 3 and array.shape[0] > 0:
            # Token-level output: mean-pool the first sequence
            return array[0].mean(axis=0)
        raise GenerationError(f"Unexpected response shape {array.shape}", provider=self.name)


class SentenceTransformerGenerator(EmbeddingGenerator):
    """Local inference with sentence-transformers, loaded on first use."""

    name = "local"

    def __init__(self, model_name: str = DEFAULT_MODEL, cache_folder: Optional[str] = None):
        self.model_name = model_name
        self.cache_folder = os.path.expanduser(cache_folder) if cache_folder else None
        self._model = None
        self._load_lock = threading.Lock()

    def _load_model(self):
        with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading local embedding model {self.model_name}")
                self._model = SentenceTransformer(self.model_name, cache_folder=self.cache_folder)
        return self._model

    def generate(self, text: str) -> np.ndarray:
        try:
            model = self._load_model()
            return np.asarray(model.encode(text, show_progress_bar=False), dtype=np.float64)
        except Exception as e:
            raise GenerationError(f"Local embedding failed: {e}", provider=self.name) from e


class NullGenerator(EmbeddingGenerator):
    """Provider used when generation is switched off entirely."""

    name = "none"

    @property
    def is_configured(self) -> bool:
        return False

    def generate(self, text: str) -> np.ndarray:
        raise GenerationError("Embedding generation is disabled", provider=self.name)


def create_generator(config) -> EmbeddingGenerator:
    """
    Build the configured provider.

    Args:
        config: ConfigManager (or anything with a dotted ``get``)

    Returns:
        EmbeddingGenerator for ``embedding.provider`` ("huggingface", "local", "none")
    """
    provider = config.get("embedding.provider", "huggingface")
    model_name = config.get("embedding.model", DEFAULT_MODEL)

    if provider == "huggingface":
        return HuggingFaceApiGenerator(
            config.get_api_key("huggingface") if hasattr(config, "get_api_key") else None,
            model_name=model_name,
            api_url=config.get("api.huggingface.endpoint", DEFAULT_ENDPOINT),
            timeout=config.get("embedding.timeout", 10.0),
        )
    if provider == "local":
        return SentenceTransformerGenerator(model_name, config.get("embedding.model_cache_dir"))
    if provider != "none":
        logger.warning(f"Unknown embedding provider {provider!r}, generation disabled")
    return NullGenerator()
