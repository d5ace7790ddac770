import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from image_splitter.core.types import CropAsset


class HistoryLogger:
    def __init__(self, history_dir: str):
        self._base_dir = Path(history_dir)
        self._crops_dir = self._base_dir / 'crops'
        self._records_dir = self._base_dir / 'records'
        self._lock = threading.Lock()

    def _record_path(self, history_id: str) -> Path:
        return self._records_dir / f'{history_id}.json'

    def _serialize_crops(self, assets: list[CropAsset], crop_dir: Path) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        for asset in assets:
            crop_path = crop_dir / asset.filename
            crop_path.write_bytes(asset.data)
            rows.append(
                {
                    'id': asset.id,
                    'label': asset.label,
                    'filename': asset.filename,
                    'path': crop_path.as_posix(),
                    'width': asset.width,
                    'height': asset.height,
                }
            )
        return rows

    def save_history(
        self,
        *,
        original_name: str | None,
        assets: list[CropAsset],
        session_id: str | None = None,
        model: str | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        history_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        created_at = now.isoformat().replace('+00:00', 'Z')
        day_part = now.date().isoformat()

        with self._lock:
            crop_dir = self._crops_dir / day_part / history_id
            crop_dir.mkdir(parents=True, exist_ok=True)
            self._records_dir.mkdir(parents=True, exist_ok=True)
            record = {
                'history_id': history_id,
                'original_name': (original_name or '').strip() or None,
                'created_at': created_at,
                'timestamp': int(now.timestamp() * 1000),
                'session_id': session_id,
                'request_id': request_id,
                'model': model,
                'crops': self._serialize_crops(assets, crop_dir),
            }
            self._record_path(history_id).write_text(
                json.dumps(record, ensure_ascii=True, separators=(',', ':')) + '\n',
                encoding='utf-8',
            )
            return record

    def list_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        if not self._records_dir.exists():
            return []
        records: list[dict[str, Any]] = []
        with self._lock:
            for path in self._records_dir.glob('*.json'):
                raw = path.read_text(encoding='utf-8').strip()
                if raw:
                    records.append(json.loads(raw))
        records.sort(key=lambda row: row.get('timestamp', 0), reverse=True)
        if limit is not None and limit > 0:
            records = records[:limit]
        return records
