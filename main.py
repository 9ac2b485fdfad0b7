# main.py
import json
import uuid
from contextlib import asynccontextmanager
from time import time

import firebase_admin
from fastapi import FastAPI, Request
from firebase_admin import credentials

from config import settings
from app.scripts.logging_config import setup_logging, get_logger, set_request_id

# 1) 로깅 설정(최우선)
# 운영 환경에서 JSON 로그를 원하면 LOG_JSON=true
setup_logging(json_fmt=settings.LOG_JSON)
logger = get_logger(__name__)

# 2) Firebase 초기화
cred_obj = None

try:
    if settings.FIREBASE_CREDENTIALS_JSON_STRING:
        cred_obj = credentials.Certificate(json.loads(settings.FIREBASE_CREDENTIALS_JSON_STRING))
        logger.info("Firebase credentials loaded from FIREBASE_CREDENTIALS_JSON_STRING.")
    elif settings.GOOGLE_APPLICATION_CREDENTIALS:
        cred_obj = credentials.Certificate(settings.GOOGLE_APPLICATION_CREDENTIALS)
        logger.info("Firebase credentials loaded from GOOGLE_APPLICATION_CREDENTIALS file.")

    if cred_obj and not firebase_admin._apps:
        firebase_admin.initialize_app(cred_obj)
        logger.info("Firebase initialized successfully.")
    elif not cred_obj:
        logger.warning("Firebase credentials not found. Firestore-backed matching will be unavailable.")
except Exception as e:
    logger.exception("Firebase initialization failed: %s", e)

# 3) FastAPI 앱
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # 종료 시 진행 중인 매칭 패스를 마무리
    from app.services import match_triggers
    if match_triggers._triggers is not None:
        match_triggers._triggers.shutdown(wait_for_tasks=True)
        logger.info("Match trigger executors shut down.")


app = FastAPI(title="Campus Lost & Found Matching API", lifespan=lifespan)

# 4) 요청 로깅 미들웨어
@app.middleware("http")
async def log_requests(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    set_request_id(rid)

    start = time()
    path = request.url.path
    method = request.method
    client_ip = getattr(request.client, 'host', '-') if request.client else '-'

    logger.info("REQ start %s %s ip=%s", method, path, client_ip)
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        duration = (time() - start) * 1000
        status = getattr(response, 'status_code', 'NA')
        logger.info("REQ end %s %s status=%s %.1fms", method, path, status, duration)

# 5) CORS (optional)
try:
    from fastapi.middleware.cors import CORSMiddleware
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://localhost:3000",
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("CORS middleware configured for %s", allowed_origins)
except Exception as e:
    logger.warning("CORS middleware not added: %s", e)

# 6) 라우터
from app.api import matches, triggers

app.include_router(matches.router)
app.include_router(triggers.router)

# 7) 엔드포인트
@app.get("/")
def root():
    return {"message": "Campus lost & found matching engine", "routes": [
        "/requests/{request_id}/matches",
        "/requests/{request_id}/match",
        "/admin/requests/{request_id}/matches/{found_item_id}/accept",
        "/admin/requests/{request_id}/matches/{found_item_id}/reject",
        "/triggers/request-created/{request_id}",
        "/triggers/found-item-created/{found_item_id}",
    ]}

@app.get("/healthz")
def healthz():
    return {
        "ok": True,
        "embedding_provider": settings.EMBEDDING_PROVIDER,
        "vector_backend": settings.VECTOR_BACKEND,
        "metric": settings.VECTOR_DISTANCE_METRIC,
    }
