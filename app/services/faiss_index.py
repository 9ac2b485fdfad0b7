from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional

try:
    import faiss  # type: ignore
except Exception:
    faiss = None  # placeholder if not installed yet

import numpy as np

from app.domain import item_schema as f
from app.domain.errors import VectorIndexMissingError
from app.scripts.logging_config import get_logger
from .vector_index import Neighbor, SUPPORTED_METRICS, VectorIndex

logger = get_logger("matching.index")

INDEX_FILE = "found_items.index"
META_FILE = "found_items_meta.json"
IDMAP_FILE = "found_items_idmap.json"


# ------------------------------------------------------------------------------------
# 유틸
# ------------------------------------------------------------------------------------
def _l2_normalize(v: np.ndarray) -> np.ndarray:
    # (n, d) 또는 (d,)
    if v.ndim == 1:
        n = np.linalg.norm(v) + 1e-9
        return (v / n).astype("float32")
    n = np.linalg.norm(v, axis=1, keepdims=True) + 1e-9
    return (v / n).astype("float32")


def _atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding)
    os.replace(tmp, path)


def _atomic_write_index(index, path: Path) -> None:
    tmp = str(path) + ".tmp"
    faiss.write_index(index, tmp)
    os.replace(tmp, str(path))


def _create_flat_index(dim: int):
    if faiss is None:
        raise RuntimeError("faiss 라이브러리가 설치되지 않았습니다.")
    # Cosine 유사도 = Inner Product + 사전 정규화. IDMap2 로 감싸서 id 단위 교체(remove_ids) 지원
    return faiss.IndexIDMap2(faiss.IndexFlatIP(dim))


class FaissVectorIndex(VectorIndex):
    """Exact cosine search over found-item vectors kept in a local FAISS file.

    Cosine distance is reported as ``1 - inner_product`` on normalised vectors, range [0, 2],
    the same scale Firestore uses. Prefilters are applied on the full exact result list,
    so a filtered query still returns up to ``limit`` matching candidates.
    """

    def __init__(self, data_dir: Path, dim: int):
        self.data_dir = Path(data_dir)
        self.dim = int(dim)
        self.collection = f"faiss:{self.data_dir / INDEX_FILE}"
        self._lock = threading.RLock()
        self._index = None
        self._meta: Dict[str, dict] = {}
        self._ids: Dict[str, int] = {}  # item_id -> faiss int64 id
        self._next_id = 0

    @property
    def index_path(self) -> Path:
        return self.data_dir / INDEX_FILE

    # --------------------------------------------------------------------------------
    # Persistence
    # --------------------------------------------------------------------------------
    @classmethod
    def open(cls, data_dir, dim: int) -> "FaissVectorIndex":
        inst = cls(Path(data_dir), dim)
        inst.load()
        return inst

    def load(self) -> None:
        """인덱스/메타/ID 맵 로드. 파일이 없으면 미구성 상태로 남김(검색 시 VectorIndexMissingError)."""
        with self._lock:
            if faiss is None or not self.index_path.exists():
                self._index = None
                return
            self._index = faiss.read_index(str(self.index_path))
            meta_path = self.data_dir / META_FILE
            idmap_path = self.data_dir / IDMAP_FILE
            self._meta = json.loads(meta_path.read_text("utf-8")) if meta_path.exists() else {}
            self._ids = json.loads(idmap_path.read_text("utf-8")) if idmap_path.exists() else {}
            self._next_id = max(self._ids.values(), default=-1) + 1
            if self._index.ntotal != len(self._ids):
                logger.warning("index.inconsistent ntotal=%d idmap=%d path=%s",
                               self._index.ntotal, len(self._ids), self.index_path)

    def save(self) -> None:
        """인덱스/메타/ID 맵 저장(원자적 저장)."""
        with self._lock:
            if self._index is None:
                return
            self.data_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write_index(self._index, self.index_path)
            _atomic_write_text(self.data_dir / META_FILE, json.dumps(self._meta, ensure_ascii=False, indent=2))
            _atomic_write_text(self.data_dir / IDMAP_FILE, json.dumps(self._ids, ensure_ascii=False, indent=2))

    def reset(self) -> None:
        with self._lock:
            self._index = _create_flat_index(self.dim)
            self._meta = {}
            self._ids = {}
            self._next_id = 0

    def __len__(self) -> int:
        with self._lock:
            return 0 if self._index is None else int(self._index.ntotal)

    # --------------------------------------------------------------------------------
    # Core API
    # --------------------------------------------------------------------------------
    def upsert(self, item_id: str, vector: List[float], meta: Optional[Dict] = None, persist: bool = True) -> None:
        """벡터를 추가하거나 같은 id 의 기존 벡터를 교체합니다."""
        arr = np.asarray(vector, dtype="float32")
        if arr.ndim != 1 or arr.shape[0] != self.dim:
            raise ValueError(f"upsert: 벡터 차원 불일치 shape={arr.shape} != dim={self.dim}")
        arr = _l2_normalize(arr.reshape(1, self.dim))
        with self._lock:
            if self._index is None:
                self._index = _create_flat_index(self.dim)
            old = self._ids.get(item_id)
            if old is not None:
                self._index.remove_ids(np.asarray([old], dtype="int64"))
            fid = self._next_id
            self._next_id += 1
            self._index.add_with_ids(arr, np.asarray([fid], dtype="int64"))
            self._ids[item_id] = fid
            self._meta[item_id] = dict(meta or {})
            if persist:
                self.save()

    def find_nearest(self, query_vector: List[float], limit: int,
                     prefilters: Optional[Dict[str, str]] = None,
                     metric: str = "COSINE") -> List[Neighbor]:
        if metric.upper() not in SUPPORTED_METRICS:
            raise ValueError(f"unsupported distance metric: {metric}")
        q = np.asarray(query_vector, dtype="float32").reshape(1, -1)
        if q.shape[1] != self.dim:
            raise ValueError(f"find_nearest: 벡터 차원 불일치 qdim={q.shape[1]} != dim={self.dim}")
        q = _l2_normalize(q)
        with self._lock:
            if self._index is None:
                raise VectorIndexMissingError(self.collection, "run `python -m app.scripts.rematch --rebuild-faiss`")
            ntotal = int(self._index.ntotal)
            if ntotal == 0:
                return []
            k = ntotal if prefilters else min(int(limit), ntotal)
            scores, fids = self._index.search(q, k)
            by_fid = {v: k_ for k_, v in self._ids.items()}
            out: List[Neighbor] = []
            for score, fid in zip(scores[0], fids[0]):
                if fid == -1:
                    continue
                item_id = by_fid.get(int(fid))
                if item_id is None:
                    continue
                meta = self._meta.get(item_id, {})
                if prefilters and any(meta.get(field) != value for field, value in prefilters.items()):
                    continue
                cos_dist = max(0.0, 1.0 - float(score))
                # Euclidean on unit vectors: |a-b| = sqrt(2 * cosine_distance)
                distance = cos_dist if metric.upper() == "COSINE" else float(np.sqrt(2.0 * cos_dist))
                out.append((item_id, distance))
                if len(out) >= limit:
                    break
        logger.info("index.query backend=faiss limit=%d filters=%s returned=%d",
                    limit, sorted((prefilters or {}).keys()), len(out))
        return out

