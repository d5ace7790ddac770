from abc import ABC, abstractmethod

from image_splitter.config import Settings
from image_splitter.core.types import DetectionResult


class Detector(ABC):
    @abstractmethod
    def detect(self, image, *, model: str | None = None, api_key: str | None = None) -> DetectionResult:
        raise NotImplementedError

    @property
    @abstractmethod
    def model_id(self) -> str:
        raise NotImplementedError


def create_detector(settings: Settings) -> Detector:
    provider = settings.provider.strip().lower()
    if provider == 'dummy':
        from image_splitter.providers.dummy_provider import DummyProvider

        return DummyProvider(model_id='dummy-grid-v1')
    if provider == 'gemini':
        from image_splitter.providers.gemini_provider import GeminiProvider

        return GeminiProvider(
            api_key=settings.gemini_api_key,
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout_ms=settings.gemini_timeout_ms,
        )
    raise ValueError(f'Unsupported PROVIDER={settings.provider!r}')
