import json
import logging
import os
import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

import config

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing file cannot be read or written."""


class CacheStore:
    """
    JSON-file key/value store with per-key TTL.

    Each key lives in its own file under `base_dir` so the web process and the
    monitor loop can share state. An in-memory mirror answers reads when the
    file is missing or unreadable.
    """

    def __init__(self, base_dir: Optional[str] = None, clock: Callable[[], float] = time.time):
        self.base_dir = base_dir or config.resolve_data_dir()
        self._clock = clock
        self._local: Dict[str, Dict[str, Any]] = {}

    def _path(self, key: str) -> str:
        safe = re.sub(r'[^A-Za-z0-9_.-]', '_', key)
        return os.path.join(self.base_dir, f"{safe}.json")

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        now = self._clock()
        entry = {'data': value, 'timestamp': now, 'expires_at': now + ttl if ttl else None}
        self._local[key] = entry

        path = self._path(key)
        temp_file = path + ".tmp"
        try:
            os.makedirs(self.base_dir, exist_ok=True)
            with open(temp_file, "w") as f:
                json.dump(entry, f)
            os.replace(temp_file, path)
        except (OSError, TypeError, ValueError) as e:
            raise StoreError(f"Failed to write {key}: {e}") from e

    def get(self, key: str) -> Any:
        entry = self._read(key)
        if entry is None:
            return None
        expires_at = entry.get('expires_at')
        if expires_at is not None and self._clock() >= expires_at:
            return None
        return entry.get('data')

    def _read(self, key: str) -> Optional[Dict[str, Any]]:
        path = self._path(key)
        if not os.path.exists(path):
            return self._local.get(key)
        try:
            with open(path, "r") as f:
                entry = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Cache read failed for {key}, using local copy: {e}")
            return self._local.get(key)
        self._local[key] = entry
        return entry

    # --- typed helpers ---
    def store_prediction(self, data: Dict) -> None:
        self.set(config.PREDICTION_KEY, data, config.PREDICTION_TTL)

    def get_prediction(self) -> Optional[Dict]:
        return self.get(config.PREDICTION_KEY)

    def store_history(self, records: list) -> None:
        self.set(config.HISTORY_KEY, records, config.HISTORY_TTL)

    def get_history(self) -> Optional[list]:
        return self.get(config.HISTORY_KEY)


@dataclass
class PredictionStats:
    """Win/loss bookkeeping carried between prediction cycles."""
    last_prediction: Optional[Dict] = None
    last_result: Optional[Dict] = None
    win_streak: int = 0
    loss_streak: int = 0
    total_predictions: int = 0
    wins: int = 0
    accuracy: float = 0.0

    @property
    def losses(self) -> int:
        return self.total_predictions - self.wins

    def record(self, is_win: bool) -> str:
        self.total_predictions += 1
        if is_win:
            self.wins += 1
            self.win_streak += 1
            self.loss_streak = 0
        else:
            self.loss_streak += 1
            self.win_streak = 0
        self.accuracy = round(self.wins / self.total_predictions * 100, 2)
        return "WIN" if is_win else "LOSS"

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "PredictionStats":
        if not isinstance(data, dict):
            return cls()
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)

    @classmethod
    def load(cls, store: CacheStore) -> "PredictionStats":
        return cls.from_dict(store.get(config.STATS_KEY))

    def save(self, store: CacheStore) -> None:
        store.set(config.STATS_KEY, self.to_dict())
