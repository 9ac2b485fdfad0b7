"""Read side of the match set, plus the staff review actions on single matches."""
from __future__ import annotations

import threading
from typing import List, Optional

from app.domain import item_schema as f
from app.domain.errors import (
    FoundItemNotFoundError, MatchNotFoundError, NotAuthorizedError, RequestNotFoundError,
)
from app.models.items import CallerIdentity, FoundItemView, ItemRecord, MatchView
from app.scripts.logging_config import get_logger, log_match_event

logger = get_logger("matching.reader")


class MatchReader:
    def __init__(self, store):
        self.store = store

    def _load_request(self, request_id: str) -> ItemRecord:
        request = self.store.get_request(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def get_matches(self, request_id: str, caller: CallerIdentity) -> List[MatchView]:
        """Current ranked matches of a request, each joined to the found item as it is now.

        Only the request owner or an administrator may read them. Matches whose found item
        no longer exists are skipped.
        """
        request = self._load_request(request_id)
        if not caller.is_admin and request.owner_uid != caller.uid:
            raise NotAuthorizedError(caller.uid, request_id)

        views: List[MatchView] = []
        skipped = 0
        for m in self.store.list_matches(request_id):
            found = self.store.get_found_item(m.found_item_id)
            if found is None:
                skipped += 1
                continue
            views.append(MatchView(
                match_id=m.id,
                confidence=m.confidence,
                distance=m.distance,
                rank=m.rank,
                status=m.status,
                created_at=m.created_at,
                updated_at=m.updated_at,
                found_item=FoundItemView.from_record(found),
            ))
        if skipped:
            logger.info("matches.skipped_missing request=%s skipped=%d", request_id, skipped)
        return views

    # ------------------------------------------------------------------
    # staff review
    # ------------------------------------------------------------------
    def _review_target(self, request_id: str, found_item_id: str, reviewer: CallerIdentity):
        if not reviewer.is_admin:
            raise NotAuthorizedError(reviewer.uid, request_id)
        self._load_request(request_id)
        match = self.store.get_match(request_id, found_item_id)
        if match is None:
            raise MatchNotFoundError(request_id, found_item_id)
        return match

    def accept_match(self, request_id: str, found_item_id: str, reviewer: CallerIdentity) -> None:
        """Staff confirmed the pair: the match, the request and the found item all become matched."""
        self._review_target(request_id, found_item_id, reviewer)
        if self.store.get_found_item(found_item_id) is None:
            raise FoundItemNotFoundError(found_item_id)
        self.store.update_match_status(request_id, found_item_id, "accepted")
        self.store.update_item_status("request", request_id, "matched",
                                      {f.REQUEST_MATCHED_ITEM_FIELD: found_item_id})
        self.store.update_item_status("found", found_item_id, "matched")
        log_match_event("match_accepted", {
            "request_id": request_id, "found_item_id": found_item_id, "reviewer": reviewer.uid,
        })

    def reject_match(self, request_id: str, found_item_id: str, reviewer: CallerIdentity) -> None:
        self._review_target(request_id, found_item_id, reviewer)
        self.store.update_match_status(request_id, found_item_id, "rejected")
        log_match_event("match_rejected", {
            "request_id": request_id, "found_item_id": found_item_id, "reviewer": reviewer.uid,
        })


_reader: Optional[MatchReader] = None
_reader_lock = threading.Lock()


def get_reader() -> MatchReader:
    global _reader
    if _reader is not None:
        return _reader
    with _reader_lock:
        if _reader is None:
            from app.services.item_store import get_item_store
            _reader = MatchReader(get_item_store())
    return _reader
