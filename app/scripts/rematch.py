"""Manual matching reprocess.

Re-runs matching passes outside of the triggers, e.g. after a request gained a description,
after provisioning the vector index, or after an outage swallowed trigger passes.

  python -m app.scripts.rematch --request-id REQ1 --request-id REQ2
  python -m app.scripts.rematch --all --threshold 0.5
  python -m app.scripts.rematch --rebuild-faiss
  python -m app.scripts.rematch --embed-found
"""
from __future__ import annotations

import argparse
import json
import time
from typing import Dict, List, Optional

import firebase_admin
from firebase_admin import credentials

from config import settings
from app.domain.errors import MatchingError
from app.models.items import MatchOptions, Prefilters
from app.scripts.logging_config import get_logger, setup_logging
from app.services.embedding_cache import EmbeddingEnsurer
from app.services.embedding_providers import get_embedding_provider
from app.services.item_store import get_item_store
from app.services.vector_index import index_meta

logger = get_logger("matching.rematch")


def rebuild_faiss(store, ensurer, data_dir: Optional[str] = None) -> Dict:
    """Rebuild the local FAISS index from every found item, embedding those that lack a vector."""
    from app.services.faiss_index import FaissVectorIndex

    index = FaissVectorIndex(data_dir or settings.FAISS_DATA_DIR, settings.EMBEDDING_DIM)
    index.reset()
    stats = {"indexed": 0, "skipped": 0, "failed": 0}
    for record in store.iter_found_items():
        try:
            vector = ensurer.ensure(record)
        except MatchingError as e:
            stats["skipped"] += 1
            logger.warning("rebuild.skip found_item=%s reason=%s", record.id, type(e).__name__)
            continue
        try:
            index.upsert(record.id, vector, index_meta(record), persist=False)
            stats["indexed"] += 1
        except ValueError as e:
            stats["failed"] += 1
            logger.error("rebuild.failed found_item=%s err=%s", record.id, e)
    index.save()
    stats["total_indexed"] = len(index)
    return stats


def embed_found_items(store, ensurer, index=None) -> Dict:
    """Embed every found item lacking a current vector, e.g. after an embedding provider outage.

    Works on any backend: the vector is written onto the found item (what Firestore vector search
    reads) and upserted into ``index`` when that index keeps its own copy.
    """
    stats = {"checked": 0, "embedded": 0, "skipped": 0, "failed": 0}
    for record in store.iter_found_items():
        stats["checked"] += 1
        if ensurer.is_cached(record):
            continue
        if not record.has_description():
            stats["skipped"] += 1
            continue
        try:
            vector = ensurer.ensure(record)
        except MatchingError as e:
            stats["failed"] += 1
            logger.warning("embed_found.failed found_item=%s reason=%s detail=%s", record.id, type(e).__name__, e)
            continue
        if index is not None:
            index.upsert(record.id, vector, index_meta(record))
        stats["embedded"] += 1
        logger.info("embed_found.embedded found_item=%s", record.id)
    return stats


def rematch(engine, request_ids: List[str], options: MatchOptions) -> Dict:
    summary = {"processed": 0, "succeeded": 0, "failed": 0, "matches": {}, "errors": {}}
    start = time.time()
    for rid in request_ids:
        summary["processed"] += 1
        try:
            result = engine.match_request(rid, options)
        except MatchingError as e:
            summary["failed"] += 1
            summary["errors"][rid] = f"{type(e).__name__}: {e}"
            continue
        summary["succeeded"] += 1
        summary["matches"][rid] = len(result.matches)
    summary["duration"] = round(time.time() - start, 2)
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="매칭 재계산 (수동 실행)")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--request-id", action="append", dest="request_ids", help="재매칭할 요청 ID (반복 가능)")
    target.add_argument("--all", action="store_true", help="모든 요청 재매칭")
    target.add_argument("--rebuild-faiss", action="store_true", help="로컬 FAISS 인덱스 재구축")
    target.add_argument("--embed-found", action="store_true", help="임베딩 없는 습득물 임베딩 생성")
    parser.add_argument("--limit", type=int, default=settings.MATCH_DEFAULT_LIMIT)
    parser.add_argument("--threshold", type=float, default=settings.MATCH_DISTANCE_THRESHOLD)
    parser.add_argument("--category", default=None)
    parser.add_argument("--campus", default=None)
    return parser


def main(argv: Optional[List[str]] = None) -> Dict:
    args = build_parser().parse_args(argv)
    setup_logging(json_fmt=settings.LOG_JSON)
    if not firebase_admin._apps:
        if settings.GOOGLE_APPLICATION_CREDENTIALS:
            firebase_admin.initialize_app(credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS))
        else:
            firebase_admin.initialize_app()

    store = get_item_store()
    if args.rebuild_faiss:
        result = rebuild_faiss(store, EmbeddingEnsurer(store, get_embedding_provider()))
    elif args.embed_found:
        from app.services.vector_index import get_vector_index

        result = embed_found_items(store, EmbeddingEnsurer(store, get_embedding_provider()), get_vector_index())
    else:
        from app.services.matcher import get_engine

        prefilters = None
        if args.category or args.campus:
            prefilters = Prefilters(category=args.category, campus=args.campus)
        options = MatchOptions(limit=args.limit, distance_threshold=args.threshold, prefilters=prefilters)
        request_ids = store.list_request_ids() if args.all else args.request_ids
        result = rematch(get_engine(), request_ids, options)
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return result


if __name__ == "__main__":
    main()
