"""Device-local key/value store persisted to a JSON file."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from threading import RLock
from typing import Any, Dict

logger = logging.getLogger(__name__)

SESSION_ID_KEY = "session_id"
DASHBOARD_VIEWED_KEY = "dashboard_last_viewed_at"
PRODUCTS_CACHE_KEY = "products"
ORDERS_CACHE_KEY = "orders"


@dataclass
class LocalStore:
    """Small JSON document holding the session token and cache-of-last-resort."""

    storage_path: Path
    _lock: RLock = field(default_factory=RLock, init=False)

    def __post_init__(self) -> None:
        self.storage_path = Path(self.storage_path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load_state_locked().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            state = self._load_state_locked()
            state[key] = value
            self._write_state_unlocked(state)

    def delete(self, key: str) -> None:
        with self._lock:
            state = self._load_state_locked()
            if key in state:
                del state[key]
                self._write_state_unlocked(state)

    def _load_state_locked(self) -> Dict[str, Any]:
        if not self.storage_path.exists():
            return {}
        raw = self.storage_path.read_text(encoding="utf-8") or "{}"
        try:
            state = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Local store %s is corrupt, starting empty", self.storage_path)
            return {}
        if not isinstance(state, dict):
            return {}
        return state

    def _write_state_unlocked(self, state: Dict[str, Any]) -> None:
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.storage_path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(state, indent=2, ensure_ascii=False), encoding="utf-8")
        temp_path.replace(self.storage_path)


__all__ = [
    "LocalStore",
    "SESSION_ID_KEY",
    "DASHBOARD_VIEWED_KEY",
    "PRODUCTS_CACHE_KEY",
    "ORDERS_CACHE_KEY",
]
