"""Match computation engine.

One matching pass for one lost-item request:

1. load the request (RequestNotFoundError if absent)
2. ensure its embedding (MissingDescriptionError / EmbeddingProviderError propagate)
3. k-NN over the found-item inventory with optional equality prefilters
4. distance -> confidence, drop candidates above the distance threshold
5. rank, then replace the request's stored match set wholesale

The threshold is applied to the top-``limit`` nearest candidates only, after retrieval.
A tight threshold with a small limit can therefore return fewer matches than exist in the
whole inventory; ``limit`` is never widened to compensate.
"""
from __future__ import annotations

import threading
import time
from typing import List, Optional

from config import settings
from app.domain.errors import RequestNotFoundError
from app.models.items import MatchOptions, MatchRequestResult, MatchResult
from app.scripts.logging_config import get_logger, log_match_event

logger = get_logger("matching.engine")


def distance_to_confidence(distance: float, metric: str = "COSINE") -> float:
    """Map a raw distance onto a confidence in [0, 1], 1.0 at distance 0.

    COSINE (range [0, 2]):            max(0, 1 - d / 2)
    EUCLIDEAN on unit vectors ([0, 2]): max(0, 1 - d^2 / 4), equal to the cosine
    confidence of the same pair.
    """
    metric = metric.upper()
    d = max(0.0, float(distance))
    if metric == "COSINE":
        return max(0.0, 1.0 - d / 2.0)
    if metric == "EUCLIDEAN":
        return max(0.0, 1.0 - (d * d) / 4.0)
    raise ValueError(f"unsupported distance metric: {metric}")


def rank_candidates(candidates: List[tuple], threshold: float, metric: str = "COSINE") -> List[MatchResult]:
    """Threshold (inclusive) and rank ``(found_item_id, distance)`` pairs given in retrieval order."""
    kept = []
    for found_id, distance in candidates:
        if distance > threshold:
            logger.debug("match.filtered id=%s distance=%.4f threshold=%.4f", found_id, distance, threshold)
            continue
        kept.append((found_id, distance, distance_to_confidence(distance, metric)))
    # stable sort: equal confidence keeps retrieval (distance ascending) order
    kept.sort(key=lambda c: c[2], reverse=True)
    return [
        MatchResult(found_item_id=found_id, distance=distance, confidence=conf, rank=i)
        for i, (found_id, distance, conf) in enumerate(kept)
    ]


class MatchEngine:
    def __init__(self, store, index, ensurer, metric: Optional[str] = None,
                 default_options: Optional[MatchOptions] = None):
        self.store = store
        self.index = index
        self.ensurer = ensurer
        self.metric = (metric or settings.VECTOR_DISTANCE_METRIC).upper()
        self.default_options = default_options or MatchOptions(
            limit=settings.MATCH_DEFAULT_LIMIT,
            distance_threshold=settings.MATCH_DISTANCE_THRESHOLD,
        )

    def match_request(self, request_id: str, options: Optional[MatchOptions] = None) -> MatchRequestResult:
        opts = options or self.default_options
        prefilters = opts.prefilters.as_equalities() if opts.prefilters else {}
        start = time.time()
        logger.info("match.start request=%s limit=%d threshold=%.3f prefilters=%s",
                    request_id, opts.limit, opts.distance_threshold, prefilters)

        request = self.store.get_request(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)

        query_vector = self.ensurer.ensure(request)

        candidates = self.index.find_nearest(query_vector, opts.limit, prefilters or None, self.metric)
        logger.info("match.search request=%s returned=%d", request_id, len(candidates))

        matches = rank_candidates(candidates[:opts.limit], opts.distance_threshold, self.metric)

        deleted = self.store.replace_matches(request_id, matches)

        log_match_event("match_completed", {
            "request_id": request_id,
            "candidates": len(candidates),
            "matches": len(matches),
            "replaced": deleted,
            "top_confidence": round(matches[0].confidence, 4) if matches else None,
            "duration_ms": round((time.time() - start) * 1000, 1),
        })
        return MatchRequestResult(request_id=request_id, matches=matches)


_engine: Optional[MatchEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> MatchEngine:
    global _engine
    if _engine is not None:
        return _engine
    with _engine_lock:
        if _engine is None:
            from app.services.embedding_cache import EmbeddingEnsurer
            from app.services.embedding_providers import get_embedding_provider
            from app.services.item_store import get_item_store
            from app.services.vector_index import get_vector_index

            store = get_item_store()
            _engine = MatchEngine(
                store=store,
                index=get_vector_index(),
                ensurer=EmbeddingEnsurer(store, get_embedding_provider()),
            )
    return _engine
