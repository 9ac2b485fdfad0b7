"""Embedding ensurer: compute a record's vector once, persist it, reuse it afterwards.

The stored vector is keyed by the sha256 of the description it was computed from
(``embeddingTextHash``). A vector with no stored hash is trusted as-is.
"""
from __future__ import annotations

import hashlib
from typing import List

from app.domain.errors import MissingDescriptionError
from app.models.items import ItemRecord
from app.scripts.logging_config import get_logger

logger = get_logger("matching.embedding")


def description_hash(text: str) -> str:
    return hashlib.sha256(text.strip().encode("utf-8")).hexdigest()


class EmbeddingEnsurer:
    def __init__(self, store, provider):
        self.store = store
        self.provider = provider

    def is_cached(self, record: ItemRecord) -> bool:
        if not record.embedding:
            return False
        if record.embedding_text_hash is None:
            return True
        return record.has_description() and record.embedding_text_hash == description_hash(record.description)

    def ensure(self, record: ItemRecord) -> List[float]:
        """Return the record's vector, calling the provider and writing it back only on a cache miss.

        Raises MissingDescriptionError when there is nothing to embed and
        EmbeddingProviderError when the provider fails (nothing is written then).
        """
        if self.is_cached(record):
            return record.embedding
        if not record.has_description():
            raise MissingDescriptionError(record.kind, record.id)

        vector = self.provider.embed(record.description)
        text_hash = description_hash(record.description)
        self.store.save_embedding(record.kind, record.id, vector, text_hash, self.provider.model)
        record.embedding = vector
        record.embedding_text_hash = text_hash
        logger.info("embedding.stored kind=%s id=%s provider=%s dim=%d",
                    record.kind, record.id, self.provider.name, len(vector))
        return vector
