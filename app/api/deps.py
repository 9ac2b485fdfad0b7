from typing import Optional

from fastapi import Depends, Header, HTTPException
from firebase_admin import auth

from config import settings
from app.models.items import CallerIdentity
from app.scripts.logging_config import get_logger

logger = get_logger(__name__)


def verify_bearer_token(token: str) -> dict:
    """Verify a Firebase ID token and return its decoded claims."""
    return auth.verify_id_token(token)


def _is_admin(claims: dict) -> bool:
    if claims.get("role") == "admin" or claims.get("admin") is True:
        return True
    return claims.get("uid") in settings.admin_uids()


async def get_caller(authorization: Optional[str] = Header(None)) -> CallerIdentity:
    """Resolve the caller from ``Authorization: Bearer <firebase id token>``.

    Raises:
        HTTPException: 401 if the header is missing or the token does not verify.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="unauthorized")
    token = authorization[len("Bearer "):].strip()
    try:
        claims = verify_bearer_token(token)
    except Exception as e:
        logger.info("auth.invalid_token type=%s", type(e).__name__)
        raise HTTPException(status_code=401, detail="unauthorized")
    uid = claims.get("uid") or claims.get("sub")
    if not uid:
        raise HTTPException(status_code=401, detail="unauthorized")
    return CallerIdentity(uid=uid, is_admin=_is_admin({**claims, "uid": uid}))


async def require_admin(caller: CallerIdentity = Depends(get_caller)) -> CallerIdentity:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="forbidden")
    return caller


async def verify_trigger_key(x_trigger_key: Optional[str] = Header(None)) -> None:
    """Verify the X-Trigger-Key header sent by the record-creation flow.

    Raises:
        HTTPException: 401 if the key is missing or does not match, 503 if no key is configured.
    """
    expected = settings.TRIGGER_API_KEY
    if not expected:
        raise HTTPException(status_code=503, detail="trigger_key_not_configured")
    if x_trigger_key != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing trigger key")
