from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from app.api.deps import get_caller, require_admin
from app.domain.errors import (
    EmbeddingProviderError, FoundItemNotFoundError, MatchNotFoundError, MissingDescriptionError,
    NotAuthorizedError, RequestNotFoundError, VectorIndexMissingError,
)
from app.models.items import CallerIdentity, MatchesResponse, MatchOptions, MatchRequestResult
from app.services.match_reader import MatchReader, get_reader
from app.services.matcher import MatchEngine, get_engine

router = APIRouter(tags=["matches"])


@router.get("/requests/{request_id}/matches", response_model=MatchesResponse)
def list_matches(
    request_id: str,
    caller: CallerIdentity = Depends(get_caller),
    reader: MatchReader = Depends(get_reader),
):
    try:
        views = reader.get_matches(request_id, caller)
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="request_not_found")
    except NotAuthorizedError:
        raise HTTPException(status_code=403, detail="forbidden")
    return MatchesResponse(request_id=request_id, matches=views)


@router.post("/requests/{request_id}/match", response_model=MatchRequestResult)
def run_match(
    request_id: str,
    options: Optional[MatchOptions] = Body(None),
    _admin: CallerIdentity = Depends(require_admin),
    engine: MatchEngine = Depends(get_engine),
):
    """Manually (re)run a matching pass for one request."""
    try:
        return engine.match_request(request_id, options)
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="request_not_found")
    except MissingDescriptionError:
        raise HTTPException(status_code=409, detail="missing_description")
    except VectorIndexMissingError as e:
        raise HTTPException(status_code=503, detail=f"vector_index_missing:{e.collection}")
    except EmbeddingProviderError as e:
        raise HTTPException(status_code=502, detail=f"embedding_provider_error:{e.provider}")


@router.post("/admin/requests/{request_id}/matches/{found_item_id}/accept", status_code=204)
def accept_match(
    request_id: str,
    found_item_id: str,
    admin: CallerIdentity = Depends(require_admin),
    reader: MatchReader = Depends(get_reader),
):
    _review(reader.accept_match, request_id, found_item_id, admin)


@router.post("/admin/requests/{request_id}/matches/{found_item_id}/reject", status_code=204)
def reject_match(
    request_id: str,
    found_item_id: str,
    admin: CallerIdentity = Depends(require_admin),
    reader: MatchReader = Depends(get_reader),
):
    _review(reader.reject_match, request_id, found_item_id, admin)


def _review(action, request_id: str, found_item_id: str, admin: CallerIdentity) -> None:
    try:
        action(request_id, found_item_id, admin)
    except RequestNotFoundError:
        raise HTTPException(status_code=404, detail="request_not_found")
    except (MatchNotFoundError, FoundItemNotFoundError) as e:
        raise HTTPException(status_code=404, detail=type(e).__name__)
    except NotAuthorizedError:
        raise HTTPException(status_code=403, detail="forbidden")
