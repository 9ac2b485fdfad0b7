"""Pluggable text embedding provider layer.

Usage:
  from app.services.embedding_providers import get_embedding_provider
  provider = get_embedding_provider()
  vec = provider.embed("black Jansport backpack")

Providers:
    - OpenAIEmbeddingProvider: OpenAI embeddings API (default)
    - SentenceTransformerProvider: local sentence-transformers model
    - HashingEmbeddingProvider: deterministic feature-hashing bag of words, for tests/local

Every provider returns an L2-normalised list of EMBEDDING_DIM floats and raises
EmbeddingProviderError on failure. Add new provider by implementing BaseEmbeddingProvider.
"""
from __future__ import annotations
from typing import List, Optional
import abc
import hashlib
import re
import threading
import time

import numpy as np

from config import settings
from app.domain.errors import EmbeddingProviderError
from app.scripts.logging_config import get_logger

try:
    import openai  # type: ignore
except Exception:  # pragma: no cover
    openai = None  # type: ignore

logger = get_logger("matching.embedding")


# ------------------------------------------------------------------------------
# 유틸
# ------------------------------------------------------------------------------
def _l2_normalize(vec: np.ndarray) -> np.ndarray:
    return vec / (np.linalg.norm(vec) + 1e-9)


def _project(vec: np.ndarray, target_dim: int) -> np.ndarray:
    d = vec.shape[-1]
    if d == target_dim:
        return vec
    if d > target_dim:
        return vec[:target_dim]
    out = np.zeros(target_dim, dtype=vec.dtype)
    out[:d] = vec
    return out


class BaseEmbeddingProvider(abc.ABC):
    name: str
    model: str

    def __init__(self, dim: Optional[int] = None):
        self.dim = int(dim or settings.EMBEDDING_DIM)

    @abc.abstractmethod
    def _embed(self, text: str) -> np.ndarray:
        ...

    def embed(self, text: str) -> List[float]:
        start = time.time()
        try:
            raw = self._embed(text)
        except EmbeddingProviderError:
            raise
        except Exception as e:
            dur = time.time() - start
            logger.warning("embed.error provider=%s model=%s latency=%.2fs type=%s msg=%s",
                           self.name, self.model, dur, type(e).__name__, str(e)[:180])
            raise EmbeddingProviderError(self.name, f"{type(e).__name__}: {str(e)[:400]}") from e
        vec = np.asarray(raw, dtype="float32").reshape(-1)
        if vec.shape[0] != self.dim:
            vec = _project(vec, self.dim)
        if not np.any(vec):
            raise EmbeddingProviderError(self.name, "provider returned a zero vector")
        dur = time.time() - start
        logger.info("embed.done provider=%s model=%s latency=%.2fs dim=%d chars=%d",
                    self.name, self.model, dur, self.dim, len(text))
        return _l2_normalize(vec).astype("float32").tolist()


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    name = "openai"

    def __init__(self, dim: Optional[int] = None, timeout: Optional[float] = None):
        super().__init__(dim)
        if openai is None:
            raise RuntimeError("openai package not installed")
        if not settings.OPENAI_API_KEY:
            raise RuntimeError("OPENAI_API_KEY missing")
        self.model = settings.OPENAI_EMBEDDING_MODEL
        self._client = openai.OpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=timeout if timeout is not None else settings.EMBEDDING_TIMEOUT_S,
            max_retries=1,
        )

    def _embed(self, text: str) -> np.ndarray:
        resp = self._client.embeddings.create(model=self.model, input=[text], dimensions=self.dim)
        return np.asarray(resp.data[0].embedding, dtype="float32")


class SentenceTransformerProvider(BaseEmbeddingProvider):
    """Local model, lazily loaded once per process. Output is projected onto EMBEDDING_DIM."""

    name = "local"

    def __init__(self, dim: Optional[int] = None):
        super().__init__(dim)
        self.model = settings.EMBEDDING_LOCAL_MODEL
        self._model = None
        self._load_lock = threading.RLock()

    def _load_model(self):
        if self._model is not None:
            return self._model
        with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer  # type: ignore

                kw = {}
                if settings.EMBEDDING_DEVICE:
                    kw["device"] = settings.EMBEDDING_DEVICE
                self._model = SentenceTransformer(self.model, **kw)
                logger.info("embed.model_loaded provider=%s model=%s", self.name, self.model)
        return self._model

    def _embed(self, text: str) -> np.ndarray:
        model = self._load_model()
        vec = model.encode([text], convert_to_numpy=True, normalize_embeddings=True)
        return vec[0]


_TOKEN_RE = re.compile(r"[0-9a-z가-힣]+")


class HashingEmbeddingProvider(BaseEmbeddingProvider):
    """Signed feature hashing over lower-cased word tokens.

    Texts sharing words land close in cosine space, which is enough for local runs and tests.
    """

    name = "hashing"
    model = "sha256-bow"

    def _embed(self, text: str) -> np.ndarray:
        tokens = _TOKEN_RE.findall((text or "").lower())
        if not tokens:
            raise EmbeddingProviderError(self.name, "no tokens to embed")
        vec = np.zeros(self.dim, dtype="float32")
        for tok in tokens:
            h = hashlib.sha256(tok.encode("utf-8")).digest()
            bucket = int.from_bytes(h[:8], "big") % self.dim
            sign = 1.0 if h[8] & 1 else -1.0
            vec[bucket] += sign
        return vec


# ------------------------------------------------------------------------------
# 공개 API
# ------------------------------------------------------------------------------
_singleton: Optional[BaseEmbeddingProvider] = None
_singleton_lock = threading.Lock()


def build_provider(name: str) -> BaseEmbeddingProvider:
    name = (name or "").strip().lower()
    if name == "openai":
        return OpenAIEmbeddingProvider()
    if name == "local":
        return SentenceTransformerProvider()
    if name == "hashing":
        return HashingEmbeddingProvider()
    raise ValueError(f"unknown EMBEDDING_PROVIDER: {name!r}")


def get_embedding_provider() -> BaseEmbeddingProvider:
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = build_provider(settings.EMBEDDING_PROVIDER)
            logger.info("embed.provider_ready provider=%s model=%s dim=%d",
                        _singleton.name, _singleton.model, _singleton.dim)
    return _singleton
