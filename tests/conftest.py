import copy
from typing import Dict, List, Optional

import numpy as np
import pytest

from app.domain import item_schema as f
from app.domain.errors import EmbeddingProviderError
from app.models.items import ItemRecord, MatchOptions, StoredMatch
from app.services.embedding_cache import EmbeddingEnsurer
from app.services.embedding_providers import HashingEmbeddingProvider
from app.services.matcher import MatchEngine
from app.services.vector_index import VectorIndex


class FakeStore:
    """In-memory stand-in for FirestoreItemStore, storing documents with their Firestore field names."""

    def __init__(self):
        self.requests: Dict[str, dict] = {}
        self.found: Dict[str, dict] = {}
        self.matches: Dict[str, Dict[str, dict]] = {}
        self.embedding_writes: List[tuple] = []
        self.replace_calls: List[str] = []

    def add_request(self, rid: str, description: str = "", owner: str = "user-1", **extra) -> dict:
        doc = {f.REQUEST_OWNER_FIELD: owner, f.FIELD_DESCRIPTION: description, f.FIELD_STATUS: "submitted"}
        doc.update(extra)
        self.requests[rid] = doc
        return doc

    def add_found(self, fid: str, description: str = "", **extra) -> dict:
        doc = {f.FOUND_ITEM_HANDLER_FIELD: "staff-1", f.FIELD_DESCRIPTION: description, f.FIELD_STATUS: "found"}
        doc.update(extra)
        self.found[fid] = doc
        return doc

    def seed_matches(self, rid: str, found_ids: List[str]) -> None:
        self.matches[rid] = {
            fid: {"foundItemId": fid, "distance": 0.2, "confidence": 0.9, "rank": i, "status": "pending"}
            for i, fid in enumerate(found_ids)
        }

    def _docs(self, kind):
        return self.requests if kind == "request" else self.found

    # reads
    def get_item(self, kind, item_id) -> Optional[ItemRecord]:
        doc = self._docs(kind).get(item_id)
        if doc is None:
            return None
        return ItemRecord.from_doc(kind, item_id, copy.deepcopy(doc))

    def get_request(self, request_id):
        return self.get_item("request", request_id)

    def get_found_item(self, found_item_id):
        return self.get_item("found", found_item_id)

    def list_request_ids(self):
        return list(self.requests)

    def iter_found_items(self):
        for fid in list(self.found):
            yield self.get_found_item(fid)

    def list_matches(self, request_id) -> List[StoredMatch]:
        rows = self.matches.get(request_id, {})
        out = [StoredMatch(id=k, found_item_id=v["foundItemId"], distance=v["distance"],
                           confidence=v["confidence"], rank=v["rank"], status=v["status"])
               for k, v in rows.items()]
        return sorted(out, key=lambda m: m.rank)

    def get_match(self, request_id, found_item_id):
        for m in self.list_matches(request_id):
            if m.id == found_item_id:
                return m
        return None

    # writes
    def save_embedding(self, kind, item_id, vector, text_hash, model):
        doc = self._docs(kind)[item_id]
        doc[f.FIELD_EMBEDDING] = list(vector)
        doc[f.FIELD_EMBEDDING_HASH] = text_hash
        doc[f.FIELD_EMBEDDING_MODEL] = model
        self.embedding_writes.append((kind, item_id))

    def replace_matches(self, request_id, matches):
        self.replace_calls.append(request_id)
        deleted = len(self.matches.get(request_id, {}))
        self.matches[request_id] = {
            m.found_item_id: {"foundItemId": m.found_item_id, "distance": m.distance,
                              "confidence": m.confidence, "rank": m.rank, "status": "pending"}
            for m in matches
        }
        return deleted

    def update_match_status(self, request_id, found_item_id, status):
        self.matches[request_id][found_item_id]["status"] = status

    def update_item_status(self, kind, item_id, status, extra=None):
        doc = self._docs(kind)[item_id]
        doc[f.FIELD_STATUS] = status
        if extra:
            doc.update(extra)


class CountingProvider:
    """Deterministic provider that counts calls and can be told to fail."""

    name = "counting"
    model = "counting-v1"

    def __init__(self, dim: int = 8, fail: bool = False):
        self.dim = dim
        self.fail = fail
        self.calls: List[str] = []

    def embed(self, text: str):
        self.calls.append(text)
        if self.fail:
            raise EmbeddingProviderError(self.name, "service unavailable")
        vec = np.zeros(self.dim, dtype="float32")
        vec[len(text) % self.dim] = 1.0
        return vec.tolist()


class CosineIndex(VectorIndex):
    """Exact k-NN over the embeddings stored on the fake store's found items, like Firestore does."""

    collection = "lost"

    def __init__(self, store: FakeStore):
        self.store = store
        self.queries: List[dict] = []

    def find_nearest(self, query_vector, limit, prefilters=None, metric="COSINE"):
        self.queries.append({"limit": limit, "prefilters": prefilters, "metric": metric})
        q = np.asarray(query_vector, dtype="float32")
        scored = []
        for fid, doc in self.store.found.items():
            vec = doc.get(f.FIELD_EMBEDDING)
            if not vec:
                continue
            if prefilters and any(doc.get(k) != v for k, v in prefilters.items()):
                continue
            v = np.asarray(vec, dtype="float32")
            cos = float(np.dot(q, v) / (np.linalg.norm(q) * np.linalg.norm(v)))
            scored.append((fid, 1.0 - cos))
        scored.sort(key=lambda t: t[1])
        return scored[:limit]


class StaticIndex(VectorIndex):
    """Returns preset (id, distance) neighbours, truncated to limit."""

    collection = "lost"

    def __init__(self, neighbors=None, error: Optional[Exception] = None):
        self.neighbors = list(neighbors or [])
        self.error = error
        self.queries: List[dict] = []

    def find_nearest(self, query_vector, limit, prefilters=None, metric="COSINE"):
        self.queries.append({"limit": limit, "prefilters": prefilters, "metric": metric})
        if self.error is not None:
            raise self.error
        return self.neighbors[:limit]


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def hashing_provider():
    return HashingEmbeddingProvider(dim=512)


@pytest.fixture
def counting_provider():
    return CountingProvider()


@pytest.fixture
def make_engine(store, counting_provider):
    def _make(index=None, provider=None):
        ensurer = EmbeddingEnsurer(store, provider or counting_provider)
        return MatchEngine(
            store=store,
            index=index if index is not None else CosineIndex(store),
            ensurer=ensurer,
            metric="COSINE",
            default_options=MatchOptions(limit=10, distance_threshold=0.6),
        )
    return _make
