import os

import requests
from firebase_functions import firestore_fn, options
from firebase_admin import initialize_app

# Firestore 문서 생성 이벤트를 매칭 API 의 /triggers 웹훅으로 전달합니다.
# 실제 매칭(임베딩, 벡터 검색, 결과 저장)은 API 서버에서 백그라운드로 실행됩니다.

initialize_app()
options.set_global_options(region=options.SupportedRegion.ASIA_NORTHEAST3)

MATCHING_API_URL = os.environ.get("MATCHING_API_URL", "").rstrip("/")
TRIGGER_API_KEY = os.environ.get("TRIGGER_API_KEY", "")
FORWARD_TIMEOUT_S = float(os.environ.get("TRIGGER_FORWARD_TIMEOUT_S", "10"))


def _forward(path: str) -> None:
    if not MATCHING_API_URL:
        print(f"MATCHING_API_URL 미설정: {path} 전달 생략")
        return
    try:
        resp = requests.post(
            f"{MATCHING_API_URL}{path}",
            headers={"X-Trigger-Key": TRIGGER_API_KEY},
            timeout=FORWARD_TIMEOUT_S,
        )
        resp.raise_for_status()
        print(f"트리거 전달 완료: {path} status={resp.status_code}")
    except requests.RequestException as e:
        # 이벤트 실패는 재시도하지 않음. 누락된 요청은 rematch 스크립트로 재처리
        print(f"트리거 전달 실패: {path} err={e}")


@firestore_fn.on_document_created(document="requests/{requestId}")
def on_request_created(event: firestore_fn.Event[firestore_fn.DocumentSnapshot | None]) -> None:
    _forward(f"/triggers/request-created/{event.params['requestId']}")


@firestore_fn.on_document_created(document="lost/{foundItemId}")
def on_found_item_created(event: firestore_fn.Event[firestore_fn.DocumentSnapshot | None]) -> None:
    _forward(f"/triggers/found-item-created/{event.params['foundItemId']}")
