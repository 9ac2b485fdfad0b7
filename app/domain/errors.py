"""Exception taxonomy for the matching engine.

Triggers catch ``MatchingError`` per pass and log it; the HTTP layer maps the
concrete classes onto status codes.
"""
from __future__ import annotations


class MatchingError(Exception):
    """Base class for every failure raised by the matching core."""


class RequestNotFoundError(MatchingError):
    def __init__(self, request_id: str):
        super().__init__(f"request not found: {request_id}")
        self.request_id = request_id


class FoundItemNotFoundError(MatchingError):
    def __init__(self, found_item_id: str):
        super().__init__(f"found item not found: {found_item_id}")
        self.found_item_id = found_item_id


class MatchNotFoundError(MatchingError):
    def __init__(self, request_id: str, found_item_id: str):
        super().__init__(f"match not found: requests/{request_id}/matches/{found_item_id}")
        self.request_id = request_id
        self.found_item_id = found_item_id


class MissingDescriptionError(MatchingError):
    """The record has no generic description to embed; it stays unmatched until it gets one."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} {record_id} has no genericDescription to embed")
        self.kind = kind
        self.record_id = record_id


class EmbeddingProviderError(MatchingError):
    """Transient or permanent failure of the embedding service. Nothing was persisted."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"embedding provider '{provider}' failed: {message}")
        self.provider = provider


class VectorIndexMissingError(MatchingError):
    """The candidate collection has no queryable vector index. Configuration defect, never retried."""

    def __init__(self, collection: str, detail: str = ""):
        msg = f"no vector index configured on '{collection}'"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.collection = collection


class NotAuthorizedError(MatchingError):
    def __init__(self, caller_uid: str, request_id: str):
        super().__init__(f"caller {caller_uid} may not access request {request_id}")
        self.caller_uid = caller_uid
        self.request_id = request_id
