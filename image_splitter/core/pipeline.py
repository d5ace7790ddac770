import asyncio
import logging
import time
from dataclasses import dataclass

from image_splitter.core.detector import Detector
from image_splitter.core.errors import RunAbandoned
from image_splitter.core.normalizer import MIN_DIMENSION_FRACTION, normalize
from image_splitter.core.rasterizer import CropRasterizer
from image_splitter.core.session import SessionStore
from image_splitter.core.types import CropAsset, DetectionResult, ValidatedRegion
from image_splitter.utils.hash_cache import HashCache

logger = logging.getLogger('image_splitter.pipeline')


@dataclass
class SplitOutcome:
    session_id: str
    regions: list[ValidatedRegion]
    assets: list[CropAsset]
    model_id: str
    detection_latency_ms: int
    latency_ms: int
    image_size: tuple[int, int]
    cached_detection: bool = False


class SplitPipeline:
    def __init__(
        self,
        detector: Detector,
        rasterizer: CropRasterizer,
        sessions: SessionStore,
        min_dimension_fraction: float = MIN_DIMENSION_FRACTION,
        cache: HashCache | None = None,
    ) -> None:
        self.detector = detector
        self.rasterizer = rasterizer
        self.sessions = sessions
        self.min_dimension_fraction = min_dimension_fraction
        self.cache = cache

    async def _detect(
        self,
        image,
        model: str | None,
        api_key: str | None,
        cache_key: str | None,
    ) -> tuple[DetectionResult, bool]:
        if self.cache is not None and cache_key:
            cached = self.cache.get(cache_key)
            if isinstance(cached, DetectionResult):
                return cached, True
        result = await asyncio.to_thread(self.detector.detect, image, model=model, api_key=api_key)
        return result, False

    async def run(
        self,
        session_id: str,
        image,
        *,
        model: str | None = None,
        api_key: str | None = None,
        cache_key: str | None = None,
    ) -> SplitOutcome:
        token = self.sessions.begin_run(session_id)
        start = time.perf_counter()
        detection, cached = await self._detect(image, model, api_key, cache_key)
        regions = normalize(detection.response, min_dimension_fraction=self.min_dimension_fraction)
        # Only structurally valid responses are worth replaying.
        if self.cache is not None and cache_key and not cached:
            self.cache.set(cache_key, detection)
        if not self.sessions.is_current(session_id, token):
            raise RunAbandoned(session_id)
        assets = await asyncio.to_thread(self.rasterizer.rasterize, image, regions)
        if not self.sessions.commit(session_id, token, assets):
            raise RunAbandoned(session_id)
        latency_ms = int((time.perf_counter() - start) * 1000)

        logger.info(
            'split session_id=%s model=%s cached=%s raw_regions=%s regions=%s assets=%s latency_ms=%s',
            session_id,
            detection.model_id,
            cached,
            len(detection.response.get('regions') or []),
            len(regions),
            len(assets),
            latency_ms,
        )
        return SplitOutcome(
            session_id=session_id,
            regions=regions,
            assets=assets,
            model_id=detection.model_id,
            detection_latency_ms=detection.latency_ms,
            latency_ms=max(latency_ms, 1),
            image_size=image.size,
            cached_detection=cached,
        )
