# logging_config.py
import logging
import logging.config
import logging.handlers
from pathlib import Path
from datetime import datetime
import json
import contextvars

# 요청 단위 식별자(ContextVar로 보관)
_request_id_ctx = contextvars.ContextVar("request_id", default="-")

class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_ctx.get("-")
        return True

def set_request_id(req_id: str):
    _request_id_ctx.set(req_id)

def get_request_id() -> str:
    return _request_id_ctx.get("-")

def get_logger(name: str = __name__) -> logging.Logger:
    return logging.getLogger(name)

# 로그 디렉터리
LOG_DIR = Path("logs")

def build_dict_config(json_fmt: bool = False) -> dict:
    fmt = (
        '{"ts":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s",'
        '"request_id":"%(request_id)s","msg":"%(message)s"}'
        if json_fmt
        else '%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s'
    )

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_id": {"()": RequestIdFilter},
        },
        "formatters": {
            "default": {
                "format": fmt,
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "INFO",
                "formatter": "default",
                "filters": ["request_id"],
            },
            "file_app": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "level": "INFO",
                "formatter": "default",
                "filters": ["request_id"],
                "filename": str(LOG_DIR / "app.log"),
                "when": "midnight",
                "interval": 1,
                "backupCount": 30,
                "encoding": "utf-8",
            },
            "file_matching": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "level": "INFO",
                "formatter": "default",
                "filters": ["request_id"],
                "filename": str(LOG_DIR / "matching.log"),
                "when": "midnight",
                "interval": 1,
                "backupCount": 30,
                "encoding": "utf-8",
            },
        },
        "loggers": {
            # 루트 로거: 앱 전반
            "": {
                "level": "INFO",
                "handlers": ["console", "file_app"],
            },
            # 매칭 엔진/트리거 전용 로거 (matching.*)
            "matching": {
                "level": "INFO",
                "handlers": ["console", "file_matching"],
                "propagate": False,
            },
            # uvicorn 로거 레벨 통일
            "uvicorn": {"level": "INFO"},
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"level": "INFO"},
        },
    }

def setup_logging(json_fmt: bool = False):
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_dict_config(json_fmt=json_fmt))

# ===== 매칭 보조 함수들 =====
def log_match_event(event_type: str, details: dict, logger: logging.Logger | None = None):
    logger = logger or get_logger("matching")
    logger.info("MATCH_EVENT: %s", json.dumps({
        "timestamp": datetime.now().isoformat(),
        "event_type": event_type,
        "details": details
    }, ensure_ascii=False, default=str))

def log_fanout_summary(summary: dict, logger: logging.Logger | None = None):
    logger = logger or get_logger("matching")
    payload = {
        'trigger': summary.get('trigger'),
        'source_id': summary.get('source_id'),
        'total_requests': summary.get('total', 0),
        'succeeded': summary.get('succeeded', 0),
        'failed': summary.get('failed', 0),
        'pending': summary.get('pending', 0),
        'duration_seconds': summary.get('duration', 0),
    }
    logger.info("팬아웃 완료: %s", json.dumps(payload, ensure_ascii=False))
