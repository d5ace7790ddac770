import time

from image_splitter.core.detector import Detector
from image_splitter.core.types import DetectionResult


class DummyProvider(Detector):
    def __init__(self, model_id: str = 'dummy-grid-v1') -> None:
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def detect(self, image, *, model: str | None = None, api_key: str | None = None) -> DetectionResult:
        _ = (model, api_key)
        start = time.perf_counter()
        width, height = image.size
        response = {
            'regions': [
                {'label': 'top-left panel', 'box': [0.0, 0.0, 0.49, 0.49]},
                {'label': 'top-right panel', 'box': [0.0, 0.51, 0.49, 1.0]},
                # 0-1000 grid, as some models answer despite the prompt.
                {'label': 'bottom-left panel', 'box': [510, 0, 1000, 490]},
                {'label': '', 'box': [0.51, 1.0, 1.0, 0.51]},
                {'label': 'gutter', 'box': [0.49, 0.0, 0.5, 1.0]},
                {'label': 'noise', 'box': [0.1, 0.2]},
            ]
        }
        latency_ms = int((time.perf_counter() - start) * 1000)
        return DetectionResult(
            response=response,
            model_id=self.model_id,
            latency_ms=max(latency_ms, 1),
            image_size=(width, height),
        )
