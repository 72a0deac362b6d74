import json
import logging
import time
from typing import Dict, List, Optional

from config import config
from orchestration.persistence import KeyValueStore, PersistenceError
from strategy.signal_manager import Signal


logger = logging.getLogger(__name__)

HISTORY_KEY = 'signalHistory'


class SignalHistoryLog:
    """Most-recent-first log of arbitrated signals, persisted after every change."""

    def __init__(self, store: KeyValueStore, capacity: Optional[int] = None, key: str = HISTORY_KEY):
        self.store = store
        self.capacity = int(capacity or config.history.get('capacity', 10))
        self.key = key
        self._entries: List[Dict] = []

    @property
    def entries(self) -> List[Dict]:
        return [dict(e) for e in self._entries]

    def signals(self) -> List[Signal]:
        return [Signal.from_dict(e) for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, signal: Signal) -> Dict:
        now_ms = int(time.time() * 1000)
        item = signal.to_dict()
        item['timestamp'] = item.get('timestamp') or now_ms
        item['id'] = now_ms
        self._entries.insert(0, item)
        del self._entries[self.capacity:]
        self._persist()
        return dict(item)

    def _persist(self) -> None:
        self.store.set(self.key, json.dumps(self._entries))

    def load(self) -> List[Dict]:
        saved = self.store.get(self.key)
        self._entries = []
        if not saved:
            return self.entries
        try:
            data = json.loads(saved)
            if not isinstance(data, list):
                raise PersistenceError(f"history is {type(data).__name__}, expected list")
            self._entries = [dict(e) for e in data if isinstance(e, dict)][:self.capacity]
        except (ValueError, PersistenceError) as exc:
            logger.warning("Stored signal history ignored: %s", exc)
            self._entries = []
        else:
            logger.info("Restored %s signals from history", len(self._entries))
        return self.entries

    def clear(self) -> None:
        self._entries = []
        self.store.remove(self.key)
