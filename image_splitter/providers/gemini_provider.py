import base64
import io
import json
import logging
import re
import time
from typing import Any

import httpx

from image_splitter.core.detector import Detector
from image_splitter.core.errors import MalformedResponse, SplitterError
from image_splitter.core.types import DetectionResult

logger = logging.getLogger('image_splitter.gemini')

DEFAULT_MODEL = 'gemini-2.5-flash-lite'
DEFAULT_BASE_URL = 'https://generativelanguage.googleapis.com'

PANEL_PROMPT = """
Analyze this image which consists of multiple sub-images arranged in a grid, collage, or comic strip format.
Identify the bounding box of EACH distinct sub-image (panel).

Guidelines:
- Detect the precise boundary of each sub-image, excluding outer borders or gutters if possible.
- If the image is a comic/manga page, detect each panel.
- If the image is a 2x2 grid, detect 4 quadrants.
- Ensure no sub-image is missed.
- List the regions in reading order.

Return a JSON object with a key "regions" containing an array of objects.
Each object must have:
- "label": a short, descriptive label (e.g. "panel 1", "top-left view").
- "box": [ymin, xmin, ymax, xmax] as normalized coordinates between 0 and 1.

Example:
{
  "regions": [
    { "label": "top-left panel", "box": [0.0, 0.0, 0.49, 0.49] },
    { "label": "top-right panel", "box": [0.0, 0.51, 0.49, 1.0] }
  ]
}
"""

_CODE_FENCE = re.compile(r'```(?:json)?\s*([\s\S]*?)```')


def _join_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def extract_json_payload(text: str) -> Any:
    match = _CODE_FENCE.search(text or '')
    candidate = match.group(1).strip() if match else (text or '').strip()
    if not candidate:
        raise MalformedResponse('Detection model returned an empty response.')
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedResponse(
            'Detection model returned text that is not valid JSON.',
            details={'snippet': candidate[:200]},
        ) from exc


def to_region_payload(payload: Any) -> Any:
    # Older prompts answered with {"crops": [{"label", "box_2d"}]}.
    if not isinstance(payload, dict) or 'regions' in payload or not isinstance(payload.get('crops'), list):
        return payload
    regions = []
    for row in payload['crops']:
        if isinstance(row, dict) and 'box' not in row and 'box_2d' in row:
            row = {**row, 'box': row['box_2d']}
        regions.append(row)
    return {**payload, 'regions': regions}


def _map_http_error(response: httpx.Response) -> SplitterError:
    body = response.text or ''
    status = response.status_code
    if status == 401 or 'API_KEY_INVALID' in body:
        return SplitterError('API_KEY_INVALID', 'API key is invalid. Please check your settings.', status_code=401)
    if status == 403 or 'PERMISSION_DENIED' in body:
        return SplitterError(
            'PERMISSION_DENIED',
            'Permission denied. Ensure the Gemini API is enabled for this key.',
            status_code=403,
        )
    if status == 429 or 'RESOURCE_EXHAUSTED' in body:
        return SplitterError(
            'QUOTA_EXCEEDED',
            'Quota exceeded (429). Please wait or switch to a "Lite" / "Flash" model.',
            status_code=429,
        )
    return SplitterError(
        'DETECTION_FAILED',
        f'Gemini API error: HTTP {status}',
        status_code=502,
        details={'upstream_status': status, 'body': body[:200]},
    )


def _response_text(body: dict) -> str:
    candidates = body.get('candidates') or []
    if not candidates:
        return ''
    parts = (candidates[0].get('content') or {}).get('parts') or []
    return ''.join(str(part.get('text') or '') for part in parts if isinstance(part, dict))


class GeminiProvider(Detector):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout_ms: int = 60000,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url
        self._timeout = max(int(timeout_ms), 1000) / 1000.0

    @property
    def model_id(self) -> str:
        return self._model

    def detect(self, image, *, model: str | None = None, api_key: str | None = None) -> DetectionResult:
        key = api_key or self._api_key
        if not key:
            raise SplitterError('MISSING_API_KEY', 'No Gemini API key configured.', status_code=401)
        model_name = model or self._model

        start = time.perf_counter()
        width, height = image.size
        payload = io.BytesIO()
        image.save(payload, format='JPEG', quality=92)
        request_body = {
            'contents': [
                {
                    'role': 'user',
                    'parts': [
                        {'text': PANEL_PROMPT},
                        {
                            'inline_data': {
                                'mime_type': 'image/jpeg',
                                'data': base64.b64encode(payload.getvalue()).decode('ascii'),
                            }
                        },
                    ],
                }
            ],
            'generationConfig': {'responseMimeType': 'application/json'},
        }

        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(
                    _join_url(self._base_url, f'/v1beta/models/{model_name}:generateContent'),
                    headers={'x-goog-api-key': key},
                    json=request_body,
                )
        except httpx.HTTPError as exc:
            raise SplitterError('DETECTION_FAILED', f'Gemini API request failed: {exc}', status_code=502) from exc

        if response.status_code >= 400:
            error = _map_http_error(response)
            logger.warning('Gemini request failed model=%s status=%s code=%s', model_name, response.status_code, error.code)
            raise error

        text = _response_text(response.json())
        detection = to_region_payload(extract_json_payload(text))
        latency_ms = int((time.perf_counter() - start) * 1000)
        return DetectionResult(
            response=detection,
            model_id=model_name,
            latency_ms=max(latency_ms, 1),
            image_size=(width, height),
        )
