from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env.local", env_file_encoding="utf-8", extra="ignore")

    # Firebase
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None
    FIREBASE_CREDENTIALS_JSON_STRING: Optional[str] = None
    FIRESTORE_TIMEOUT_S: float = 10.0

    # Collections (found-item inventory lives in "lost" for historical reasons)
    REQUESTS_COLLECTION: str = "requests"
    FOUND_ITEMS_COLLECTION: str = "lost"
    MATCHES_SUBCOLLECTION: str = "matches"

    # Embedding provider: openai | local | hashing
    EMBEDDING_PROVIDER: str = "openai"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_LOCAL_MODEL: str = "all-MiniLM-L6-v2"
    EMBEDDING_DEVICE: Optional[str] = None  # "cpu", "cuda", "mps"
    EMBEDDING_DIM: int = 768
    EMBEDDING_TIMEOUT_S: float = 20.0

    # Vector index: firestore (native vector search) | faiss (local file index)
    VECTOR_BACKEND: str = "firestore"
    VECTOR_DISTANCE_METRIC: str = "COSINE"
    INDEX_QUERY_TIMEOUT_S: float = 15.0
    FAISS_DATA_DIR: str = "data"

    # Matching defaults
    MATCH_DEFAULT_LIMIT: int = 10
    MATCH_DISTANCE_THRESHOLD: float = 0.6  # cosine distance scale [0, 2]
    MATCH_MAX_WORKERS: int = 8
    MATCH_FANOUT_TIMEOUT_S: float = 540.0

    # Auth
    ADMIN_UIDS: str = ""  # comma separated uids treated as administrators
    TRIGGER_API_KEY: Optional[str] = None

    # Logging
    LOG_JSON: bool = False

    def admin_uids(self) -> set[str]:
        return {u.strip() for u in (self.ADMIN_UIDS or "").split(",") if u.strip()}


settings = Settings()
