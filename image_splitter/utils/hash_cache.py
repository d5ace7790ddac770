import hashlib
import threading


class HashCache:
    def __init__(self, max_entries: int = 64):
        self.max_entries = max_entries
        self._store: dict[str, object] = {}
        self._lock = threading.Lock()

    @staticmethod
    def digest(content: bytes, *salt: str) -> str:
        hasher = hashlib.sha256(content)
        for part in salt:
            hasher.update(b'\x00' + part.encode('utf-8'))
        return hasher.hexdigest()

    def get(self, key: str):
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, value: object):
        if self.max_entries <= 0:
            return
        with self._lock:
            self._store.pop(key, None)
            if len(self._store) >= self.max_entries:
                first_key = next(iter(self._store.keys()), None)
                if first_key is not None:
                    self._store.pop(first_key, None)
            self._store[key] = value

    def __len__(self) -> int:
        return len(self._store)
