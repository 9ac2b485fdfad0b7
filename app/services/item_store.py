from __future__ import annotations
from typing import Dict, Iterator, List, Optional

from firebase_admin import firestore
from google.cloud.firestore_v1.vector import Vector

from config import settings
from app.domain import item_schema as f
from app.models.items import ItemKind, ItemRecord, MatchResult, StoredMatch
from app.scripts.logging_config import get_logger

logger = get_logger("matching.store")

# Firestore 배치 한도(500) 보다 여유 있게 끊어서 커밋
BATCH_MAX_OPS = 400

_db = None

def get_db():
    global _db
    if _db is None:
        _db = firestore.client()
    return _db

# Firestore 구조
# requests/{request_id}  { ownerUid, genericDescription, category, campus, embedding, status, ... }
# lost/{found_item_id}   { handlerUid, genericDescription, category, campus, embedding, status, ... }
# requests/{request_id}/matches/{found_item_id}  { foundItemId, distance, confidence, rank, status, createdAt, updatedAt }


class FirestoreItemStore:
    """Record accessor and durable writes over the requests / found-item collections."""

    def __init__(self, db=None, timeout: Optional[float] = None):
        self._db = db
        self.timeout = timeout if timeout is not None else settings.FIRESTORE_TIMEOUT_S
        self.requests_collection = settings.REQUESTS_COLLECTION
        self.found_collection = settings.FOUND_ITEMS_COLLECTION
        self.matches_subcollection = settings.MATCHES_SUBCOLLECTION

    @property
    def db(self):
        if self._db is None:
            self._db = get_db()
        return self._db

    def _collection_name(self, kind: ItemKind) -> str:
        return self.requests_collection if kind == "request" else self.found_collection

    def _matches(self, request_id: str):
        return (self.db.collection(self.requests_collection)
                .document(request_id)
                .collection(self.matches_subcollection))

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get_item(self, kind: ItemKind, item_id: str) -> Optional[ItemRecord]:
        snap = self.db.collection(self._collection_name(kind)).document(item_id).get(timeout=self.timeout)
        if not snap.exists:
            return None
        return ItemRecord.from_doc(kind, snap.id, snap.to_dict())

    def get_request(self, request_id: str) -> Optional[ItemRecord]:
        return self.get_item("request", request_id)

    def get_found_item(self, found_item_id: str) -> Optional[ItemRecord]:
        return self.get_item("found", found_item_id)

    def list_request_ids(self) -> List[str]:
        """Every existing request id, regardless of status."""
        col = self.db.collection(self.requests_collection)
        return [snap.id for snap in col.select([f.FIELD_STATUS]).stream(timeout=self.timeout)]

    def iter_found_items(self) -> Iterator[ItemRecord]:
        col = self.db.collection(self.found_collection)
        for snap in col.stream(timeout=self.timeout):
            yield ItemRecord.from_doc("found", snap.id, snap.to_dict())

    def list_matches(self, request_id: str) -> List[StoredMatch]:
        docs = (self._matches(request_id)
                .order_by(f.MATCH_RANK_FIELD, direction=firestore.Query.ASCENDING)
                .stream(timeout=self.timeout))
        out: List[StoredMatch] = []
        for d in docs:
            out.append(_stored_match(d.id, d.to_dict() or {}))
        return out

    def get_match(self, request_id: str, found_item_id: str) -> Optional[StoredMatch]:
        snap = self._matches(request_id).document(found_item_id).get(timeout=self.timeout)
        if not snap.exists:
            return None
        return _stored_match(snap.id, snap.to_dict() or {})

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def save_embedding(self, kind: ItemKind, item_id: str, vector: List[float],
                       text_hash: str, model: str) -> None:
        ref = self.db.collection(self._collection_name(kind)).document(item_id)
        ref.update({
            f.FIELD_EMBEDDING: Vector(vector),
            f.FIELD_EMBEDDING_HASH: text_hash,
            f.FIELD_EMBEDDING_MODEL: model,
        }, timeout=self.timeout)
        logger.info("firestore.write op=update doc=%s/%s field=%s dim=%d",
                    self._collection_name(kind), item_id, f.FIELD_EMBEDDING, len(vector))

    def replace_matches(self, request_id: str, matches: List[MatchResult]) -> int:
        """Delete every stored match of the request, then write the new set.

        Deletes and inserts share batches, so a set of up to BATCH_MAX_OPS operations lands in a
        single commit. Larger sets are split; readers may then briefly see a partial set.
        Returns the number of deleted documents.
        """
        col = self._matches(request_id)
        existing = [snap.reference for snap in col.select([f.MATCH_RANK_FIELD]).stream(timeout=self.timeout)]
        server_ts = firestore.SERVER_TIMESTAMP
        batch = self.db.batch()
        ops = 0
        for ref in existing:
            batch.delete(ref)
            ops += 1
            if ops % BATCH_MAX_OPS == 0:
                batch.commit(timeout=self.timeout)
                batch = self.db.batch()
        for m in matches:
            batch.set(col.document(m.found_item_id), {
                f.MATCH_FOUND_ITEM_FIELD: m.found_item_id,
                f.MATCH_DISTANCE_FIELD: m.distance,
                f.MATCH_CONFIDENCE_FIELD: m.confidence,
                f.MATCH_RANK_FIELD: m.rank,
                f.MATCH_STATUS_FIELD: "pending",
                f.FIELD_CREATED_AT: server_ts,
                f.FIELD_UPDATED_AT: server_ts,
            })
            ops += 1
            if ops % BATCH_MAX_OPS == 0:
                batch.commit(timeout=self.timeout)
                batch = self.db.batch()
        if ops % BATCH_MAX_OPS != 0:
            batch.commit(timeout=self.timeout)
        logger.info("firestore.write op=replace doc=%s/%s/%s deleted=%d inserted=%d",
                    self.requests_collection, request_id, self.matches_subcollection,
                    len(existing), len(matches))
        return len(existing)

    def update_match_status(self, request_id: str, found_item_id: str, status: str) -> None:
        self._matches(request_id).document(found_item_id).update({
            f.MATCH_STATUS_FIELD: status,
            f.FIELD_UPDATED_AT: firestore.SERVER_TIMESTAMP,
        }, timeout=self.timeout)

    def update_item_status(self, kind: ItemKind, item_id: str, status: str,
                           extra: Optional[Dict] = None) -> None:
        payload = {f.FIELD_STATUS: status, f.FIELD_UPDATED_AT: firestore.SERVER_TIMESTAMP}
        if extra:
            payload.update(extra)
        self.db.collection(self._collection_name(kind)).document(item_id).update(payload, timeout=self.timeout)
        logger.info("firestore.write op=update doc=%s/%s status=%s", self._collection_name(kind), item_id, status)


def _stored_match(doc_id: str, data: Dict) -> StoredMatch:
    return StoredMatch(
        id=doc_id,
        found_item_id=data.get(f.MATCH_FOUND_ITEM_FIELD) or doc_id,
        distance=float(data.get(f.MATCH_DISTANCE_FIELD) or 0.0),
        confidence=float(data.get(f.MATCH_CONFIDENCE_FIELD) or 0.0),
        rank=int(data.get(f.MATCH_RANK_FIELD) or 0),
        status=data.get(f.MATCH_STATUS_FIELD) or "pending",
        created_at=data.get(f.FIELD_CREATED_AT),
        updated_at=data.get(f.FIELD_UPDATED_AT),
    )


_store: Optional[FirestoreItemStore] = None


def get_item_store() -> FirestoreItemStore:
    global _store
    if _store is None:
        _store = FirestoreItemStore()
    return _store
