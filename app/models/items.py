from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.domain import item_schema as f

ItemKind = Literal["request", "found"]


def _coerce_vector(raw: Any) -> Optional[List[float]]:
    # Firestore returns google.cloud.firestore_v1.vector.Vector (a Sequence) or a plain list
    if raw is None:
        return None
    try:
        vec = [float(x) for x in raw]
    except TypeError:
        return None
    return vec or None


def _string_bag(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): v for k, v in raw.items() if isinstance(v, str)}


def _str_or_none(raw: Any) -> Optional[str]:
    return raw if isinstance(raw, str) else None


def _first_present(data: Dict[str, Any], keys: List[str]) -> Optional[str]:
    for k in keys:
        v = data.get(k)
        if isinstance(v, str) and v.strip():
            return v
    return None


class ItemRecord(BaseModel):
    """A lost-item request or a found-item inventory entry, as stored in Firestore."""

    id: str
    kind: ItemKind
    owner_uid: Optional[str] = None
    description: str = ""
    category: Optional[str] = None
    subcategory: Optional[str] = None
    campus: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)
    images: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    embedding: Optional[List[float]] = Field(default=None, repr=False)
    embedding_text_hash: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_doc(cls, kind: ItemKind, doc_id: str, data: Optional[Dict[str, Any]]) -> "ItemRecord":
        data = data or {}
        if kind == "request":
            owner = _first_present(data, [f.REQUEST_OWNER_FIELD] + f.REQUEST_OWNER_LEGACY_FIELDS)
        else:
            owner = _first_present(data, [f.FOUND_ITEM_HANDLER_FIELD])
        description = data.get(f.FIELD_DESCRIPTION)
        images = data.get(f.FIELD_IMAGES) or []
        return cls(
            id=doc_id,
            kind=kind,
            owner_uid=owner,
            description=description if isinstance(description, str) else "",
            category=_str_or_none(data.get(f.FIELD_CATEGORY)),
            subcategory=_str_or_none(data.get(f.FIELD_SUBCATEGORY)),
            campus=_first_present(data, [f.FIELD_CAMPUS] + f.CAMPUS_LEGACY_FIELDS),
            attributes=_string_bag(data.get(f.FIELD_ATTRIBUTES)),
            images=[str(i) for i in images if i],
            status=_str_or_none(data.get(f.FIELD_STATUS)),
            embedding=_coerce_vector(data.get(f.FIELD_EMBEDDING)),
            embedding_text_hash=_str_or_none(data.get(f.FIELD_EMBEDDING_HASH)),
            created_at=data.get(f.FIELD_CREATED_AT) if isinstance(data.get(f.FIELD_CREATED_AT), datetime) else None,
            updated_at=data.get(f.FIELD_UPDATED_AT) if isinstance(data.get(f.FIELD_UPDATED_AT), datetime) else None,
        )

    def has_description(self) -> bool:
        return bool(self.description and self.description.strip())


class CallerIdentity(BaseModel):
    uid: str
    is_admin: bool = False


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Prefilters(_CamelModel):
    category: Optional[str] = None
    campus: Optional[str] = None

    def as_equalities(self) -> Dict[str, str]:
        out = {}
        if self.category:
            out[f.FIELD_CATEGORY] = self.category
        if self.campus:
            out[f.FIELD_CAMPUS] = self.campus
        return out


class MatchOptions(_CamelModel):
    """Options of a single matching pass. limit < 1 is rejected with a ValidationError."""

    limit: int = Field(default=10, ge=1)
    distance_threshold: float = Field(default=0.6, ge=0.0)
    prefilters: Optional[Prefilters] = None


class MatchResult(_CamelModel):
    # wire name of the found-item reference in a pass result
    found_item_id: str = Field(alias="lostRefId")
    distance: float
    confidence: float
    rank: int


class MatchRequestResult(_CamelModel):
    request_id: str
    matches: List[MatchResult]


class StoredMatch(BaseModel):
    """A match child-record as read back from requests/{id}/matches."""

    id: str
    found_item_id: str
    distance: float
    confidence: float
    rank: int
    status: str = "pending"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FoundItemView(_CamelModel):
    id: str
    description: str
    category: Optional[str] = None
    subcategory: Optional[str] = None
    campus: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)
    images: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, rec: ItemRecord) -> "FoundItemView":
        return cls(
            id=rec.id,
            description=rec.description,
            category=rec.category,
            subcategory=rec.subcategory,
            campus=rec.campus,
            attributes=rec.attributes,
            images=rec.images,
            status=rec.status,
            created_at=rec.created_at,
            updated_at=rec.updated_at,
        )


class MatchView(_CamelModel):
    match_id: str
    confidence: float
    distance: float
    rank: int
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    found_item: FoundItemView


class MatchesResponse(_CamelModel):
    request_id: str
    matches: List[MatchView]
