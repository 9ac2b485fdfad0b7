"""Firestore field names and status vocabularies for requests, found items and matches."""

REQUEST_STATUSES = ["submitted", "under_review", "approved", "rejected", "matched", "claimed"]
FOUND_ITEM_STATUSES = ["found", "matched", "claimed", "archived"]
MATCH_REVIEW_STATUSES = ["pending", "accepted", "rejected"]

# 아이템 공통 필드
FIELD_DESCRIPTION = "genericDescription"
FIELD_CATEGORY = "category"
FIELD_SUBCATEGORY = "subcategory"
FIELD_CAMPUS = "campus"
FIELD_ATTRIBUTES = "attributes"
FIELD_IMAGES = "images"
FIELD_STATUS = "status"
FIELD_CREATED_AT = "createdAt"
FIELD_UPDATED_AT = "updatedAt"

# 임베딩 캐시 필드
FIELD_EMBEDDING = "embedding"
FIELD_EMBEDDING_HASH = "embeddingTextHash"
FIELD_EMBEDDING_MODEL = "embeddingModel"

# Owner field. Older request documents carry "userId"; new writes use "ownerUid" only.
REQUEST_OWNER_FIELD = "ownerUid"
REQUEST_OWNER_LEGACY_FIELDS = ["userId", "owner_uid"]
FOUND_ITEM_HANDLER_FIELD = "handlerUid"

# Campus used to be recorded as the session location id.
CAMPUS_LEGACY_FIELDS = ["locationId"]

REQUEST_MATCHED_ITEM_FIELD = "matchedFoundItemId"

# 매칭 문서 필드 (requests/{id}/matches/{foundItemId})
MATCH_FOUND_ITEM_FIELD = "foundItemId"
MATCH_DISTANCE_FIELD = "distance"
MATCH_CONFIDENCE_FIELD = "confidence"
MATCH_RANK_FIELD = "rank"
MATCH_STATUS_FIELD = "status"

# Fields never returned to clients by the read API.
PRIVATE_FIELDS = {FIELD_EMBEDDING, FIELD_EMBEDDING_HASH, FIELD_EMBEDDING_MODEL}
