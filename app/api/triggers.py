from fastapi import APIRouter, Depends

from app.api.deps import verify_trigger_key
from app.services.match_triggers import MatchTriggers, get_triggers

router = APIRouter(prefix="/triggers", tags=["triggers"], dependencies=[Depends(verify_trigger_key)])


# Called by the record-creation flow right after the document commits. The pass runs in the
# background; the caller never waits on (or fails because of) matching.
@router.post("/request-created/{request_id}", status_code=202)
def request_created(request_id: str, triggers: MatchTriggers = Depends(get_triggers)):
    triggers.dispatch_request_created(request_id)
    return {"accepted": True, "trigger": "request_created", "id": request_id}


@router.post("/found-item-created/{found_item_id}", status_code=202)
def found_item_created(found_item_id: str, triggers: MatchTriggers = Depends(get_triggers)):
    triggers.dispatch_found_item_created(found_item_id)
    return {"accepted": True, "trigger": "found_item_created", "id": found_item_id}
