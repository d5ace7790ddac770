import threading


class DisplayHandleRegistry:
    """Live crop bytes addressable by an HTTP path until explicitly revoked."""

    def __init__(self, base_path: str = '/crops'):
        self._base_path = base_path.rstrip('/')
        self._store: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def handle_for(self, asset_id: str) -> str:
        return f'{self._base_path}/{asset_id}'

    def _key(self, handle_or_id: str) -> str:
        prefix = f'{self._base_path}/'
        if handle_or_id.startswith(prefix):
            return handle_or_id[len(prefix):]
        return handle_or_id

    def create(self, asset_id: str, data: bytes) -> str:
        with self._lock:
            if asset_id in self._store:
                raise ValueError(f'Display handle already exists for asset_id={asset_id}')
            self._store[asset_id] = data
        return self.handle_for(asset_id)

    def resolve(self, handle_or_id: str) -> bytes | None:
        with self._lock:
            return self._store.get(self._key(handle_or_id))

    def revoke(self, handle_or_id: str) -> bool:
        with self._lock:
            return self._store.pop(self._key(handle_or_id), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
