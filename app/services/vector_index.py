"""Nearest-neighbour search over the found-item inventory.

Two backends share one contract, ``find_nearest(query_vector, limit, prefilters, metric)``
returning ``[(found_item_id, distance)]`` in ascending distance order:

- FirestoreVectorIndex: Firestore native vector search (``find_nearest``) over the
  ``embedding`` field of the found-item collection. Requires a provisioned vector index.
- FaissVectorIndex (app/services/faiss_index.py): local flat index persisted under FAISS_DATA_DIR.
"""
from __future__ import annotations

import abc
import threading
from typing import Dict, List, Optional, Tuple

from google.api_core import exceptions as gexc
from google.cloud.firestore_v1 import FieldFilter
from google.cloud.firestore_v1.base_vector_query import DistanceMeasure
from google.cloud.firestore_v1.vector import Vector

from config import settings
from app.domain import item_schema as f
from app.domain.errors import VectorIndexMissingError
from app.scripts.logging_config import get_logger

logger = get_logger("matching.index")

Neighbor = Tuple[str, float]

DISTANCE_RESULT_FIELD = "vector_distance"

SUPPORTED_METRICS = {"COSINE", "EUCLIDEAN"}


class VectorIndex(abc.ABC):
    collection: str

    @abc.abstractmethod
    def find_nearest(self, query_vector: List[float], limit: int,
                     prefilters: Optional[Dict[str, str]] = None,
                     metric: str = "COSINE") -> List[Neighbor]:
        ...

    def upsert(self, item_id: str, vector: List[float], meta: Optional[Dict] = None) -> None:
        """Backends that keep their own copy of the vectors override this."""
        return None


def index_meta(record) -> Dict[str, Optional[str]]:
    """Fields a found item is prefiltered on."""
    return {f.FIELD_CATEGORY: record.category, f.FIELD_CAMPUS: record.campus}


class FirestoreVectorIndex(VectorIndex):
    def __init__(self, db=None, collection: Optional[str] = None, timeout: Optional[float] = None):
        self._db = db
        self.collection = collection or settings.FOUND_ITEMS_COLLECTION
        self.timeout = timeout if timeout is not None else settings.INDEX_QUERY_TIMEOUT_S

    @property
    def db(self):
        if self._db is None:
            from app.services.item_store import get_db
            self._db = get_db()
        return self._db

    def find_nearest(self, query_vector: List[float], limit: int,
                     prefilters: Optional[Dict[str, str]] = None,
                     metric: str = "COSINE") -> List[Neighbor]:
        metric = metric.upper()
        if metric not in SUPPORTED_METRICS:
            raise ValueError(f"unsupported distance metric: {metric}")
        query = self.db.collection(self.collection)
        for field, value in (prefilters or {}).items():
            query = query.where(filter=FieldFilter(field, "==", value))

        vector_query = query.find_nearest(
            vector_field=f.FIELD_EMBEDDING,
            query_vector=Vector(query_vector),
            distance_measure=getattr(DistanceMeasure, metric),
            limit=limit,
            distance_result_field=DISTANCE_RESULT_FIELD,
        )
        try:
            docs = vector_query.get(timeout=self.timeout)
        except gexc.FailedPrecondition as e:
            # Firestore reports a missing (or missing composite) vector index as FAILED_PRECONDITION
            raise VectorIndexMissingError(self.collection, str(e)[:300]) from e

        out: List[Neighbor] = []
        for d in docs:
            data = d.to_dict() or {}
            distance = data.get(DISTANCE_RESULT_FIELD)
            if distance is None:
                continue
            out.append((d.id, float(distance)))
        logger.info("index.query backend=firestore collection=%s limit=%d filters=%s returned=%d",
                    self.collection, limit, sorted((prefilters or {}).keys()), len(out))
        return out


_index: Optional[VectorIndex] = None
_index_lock = threading.Lock()


def build_vector_index(backend: str) -> VectorIndex:
    backend = (backend or "").strip().lower()
    if backend == "firestore":
        return FirestoreVectorIndex()
    if backend == "faiss":
        from app.services.faiss_index import FaissVectorIndex
        return FaissVectorIndex.open(settings.FAISS_DATA_DIR, settings.EMBEDDING_DIM)
    raise ValueError(f"unknown VECTOR_BACKEND: {backend!r}")


def get_vector_index() -> VectorIndex:
    global _index
    if _index is not None:
        return _index
    with _index_lock:
        if _index is None:
            _index = build_vector_index(settings.VECTOR_BACKEND)
            logger.info("index.ready backend=%s collection=%s", settings.VECTOR_BACKEND, _index.collection)
    return _index
