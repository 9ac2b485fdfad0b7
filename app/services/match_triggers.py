"""Reactive matching on record creation.

- request created    -> one matching pass for that request
- found item created -> ensure the item's embedding, then one pass per existing request, concurrently

A found item whose embedding failed on a provider error is queued and retried at the start of
the next trigger of either kind, so it becomes a candidate once the provider recovers.

Each pass runs as its own executor task and swallows (logs) its own failure, so one bad
request never stops the others and nothing propagates back into record creation.
Matching is best-effort enrichment: a failed pass leaves stale or absent matches until the
next trigger re-runs it.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, asdict
from typing import List, Optional

from config import settings
from app.domain.errors import EmbeddingProviderError, MatchingError, VectorIndexMissingError
from app.models.items import MatchRequestResult
from app.scripts.logging_config import get_logger, log_fanout_summary
from app.services.vector_index import index_meta

logger = get_logger("matching.triggers")


@dataclass
class FanOutSummary:
    trigger: str
    source_id: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    pending: int = 0
    duration: float = 0.0


class MatchTriggers:
    def __init__(self, engine, store, ensurer, index=None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 dispatcher: Optional[ThreadPoolExecutor] = None,
                 fanout_timeout: Optional[float] = None):
        self.engine = engine
        self.store = store
        self.ensurer = ensurer
        self.index = index
        # passes and trigger coordination use separate pools: a coordinator blocks on its passes
        self.executor = executor or ThreadPoolExecutor(
            max_workers=settings.MATCH_MAX_WORKERS, thread_name_prefix="match-pass")
        self.dispatcher = dispatcher or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="match-trigger")
        self.fanout_timeout = fanout_timeout if fanout_timeout is not None else settings.MATCH_FANOUT_TIMEOUT_S
        # found items whose embedding hit a provider failure; retried by the next trigger
        self._unembedded: set = set()
        self._unembedded_lock = threading.Lock()

    # ------------------------------------------------------------------
    # single pass, isolated
    # ------------------------------------------------------------------
    def run_pass(self, request_id: str, trigger: str) -> Optional[MatchRequestResult]:
        """Run one pass; log and swallow any failure. Returns None when the pass failed."""
        try:
            result = self.engine.match_request(request_id)
        except VectorIndexMissingError as e:
            logger.error("trigger.pass_failed trigger=%s request=%s reason=vector_index_missing "
                         "detail=%s (provision the vector index on the found-item collection)",
                         trigger, request_id, e)
            return None
        except MatchingError as e:
            logger.warning("trigger.pass_failed trigger=%s request=%s reason=%s detail=%s",
                           trigger, request_id, type(e).__name__, e)
            return None
        except Exception:
            logger.exception("trigger.pass_failed trigger=%s request=%s reason=unexpected", trigger, request_id)
            return None
        logger.info("trigger.pass_done trigger=%s request=%s matches=%d",
                    trigger, request_id, len(result.matches))
        return result

    # ------------------------------------------------------------------
    # trigger entry points
    # ------------------------------------------------------------------
    def on_request_created(self, request_id: str) -> Optional[MatchRequestResult]:
        logger.info("trigger.request_created request=%s", request_id)
        self.retry_unembedded()
        return self.run_pass(request_id, "request_created")

    def on_found_item_created(self, found_item_id: str) -> FanOutSummary:
        logger.info("trigger.found_item_created found_item=%s", found_item_id)
        start = time.time()
        summary = FanOutSummary(trigger="found_item_created", source_id=found_item_id)

        self._prepare_found_item(found_item_id)
        self.retry_unembedded(skip=found_item_id)

        try:
            request_ids = self.store.list_request_ids()
        except Exception:
            logger.exception("trigger.list_requests_failed found_item=%s", found_item_id)
            summary.duration = round(time.time() - start, 3)
            return summary

        summary.total = len(request_ids)
        logger.info("trigger.fanout found_item=%s requests=%d", found_item_id, summary.total)
        futures = [self.executor.submit(self.run_pass, rid, "found_item_created") for rid in request_ids]
        done, not_done = wait(futures, timeout=self.fanout_timeout)
        for fut in done:
            if fut.result() is None:
                summary.failed += 1
            else:
                summary.succeeded += 1
        # passes still running keep going on the executor; they are reported, not cancelled
        summary.pending = len(not_done)
        summary.duration = round(time.time() - start, 3)
        log_fanout_summary(asdict(summary))
        return summary

    def _prepare_found_item(self, found_item_id: str) -> bool:
        """Embed the found item so the k-NN queries can see it. Returns False when it is not embedded.

        A provider failure queues the item; the next trigger retries it. Other failures
        (no description, item gone) are not retried automatically.
        """
        try:
            record = self.store.get_found_item(found_item_id)
            if record is None:
                logger.warning("trigger.found_item_missing found_item=%s", found_item_id)
                self._forget_unembedded(found_item_id)
                return False
            vector = self.ensurer.ensure(record)
            if self.index is not None:
                self.index.upsert(record.id, vector, index_meta(record))
        except EmbeddingProviderError as e:
            with self._unembedded_lock:
                self._unembedded.add(found_item_id)
            logger.warning("trigger.found_item_not_embedded found_item=%s reason=%s detail=%s retry=next_trigger",
                           found_item_id, type(e).__name__, e)
            return False
        except MatchingError as e:
            # requests are still re-matched: the item is simply not a candidate yet
            self._forget_unembedded(found_item_id)
            logger.warning("trigger.found_item_not_embedded found_item=%s reason=%s detail=%s",
                           found_item_id, type(e).__name__, e)
            return False
        except Exception:
            with self._unembedded_lock:
                self._unembedded.add(found_item_id)
            logger.exception("trigger.found_item_prepare_failed found_item=%s", found_item_id)
            return False
        self._forget_unembedded(found_item_id)
        return True

    def _forget_unembedded(self, found_item_id: str) -> None:
        with self._unembedded_lock:
            self._unembedded.discard(found_item_id)

    def pending_found_items(self) -> List[str]:
        """Found items whose embedding failed and will be retried by the next trigger."""
        with self._unembedded_lock:
            return sorted(self._unembedded)

    def retry_unembedded(self, skip: Optional[str] = None) -> int:
        """Retry embedding found items queued after a provider failure. Returns how many succeeded."""
        retried = 0
        for fid in self.pending_found_items():
            if fid == skip:
                continue
            if self._prepare_found_item(fid):
                retried += 1
                logger.info("trigger.found_item_embedded_on_retry found_item=%s", fid)
        return retried

    # ------------------------------------------------------------------
    # fire-and-forget submission (webhook routes)
    # ------------------------------------------------------------------
    def dispatch_request_created(self, request_id: str) -> Future:
        return self.dispatcher.submit(self.on_request_created, request_id)

    def dispatch_found_item_created(self, found_item_id: str) -> Future:
        return self.dispatcher.submit(self.on_found_item_created, found_item_id)

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self.dispatcher.shutdown(wait=wait_for_tasks)
        self.executor.shutdown(wait=wait_for_tasks)


_triggers: Optional[MatchTriggers] = None
_triggers_lock = threading.Lock()


def get_triggers() -> MatchTriggers:
    global _triggers
    if _triggers is not None:
        return _triggers
    with _triggers_lock:
        if _triggers is None:
            from app.services.matcher import get_engine

            engine = get_engine()
            _triggers = MatchTriggers(
                engine=engine,
                store=engine.store,
                ensurer=engine.ensurer,
                index=engine.index,
            )
    return _triggers
