import io
import logging
import uuid
from collections.abc import Callable

from PIL import Image

from image_splitter.core.errors import SourceImageUnreadable
from image_splitter.core.handles import DisplayHandleRegistry
from image_splitter.core.types import CropAsset, ValidatedRegion

logger = logging.getLogger('image_splitter.rasterizer')

Encoder = Callable[[Image.Image], bytes | None]


def encode_jpeg(image: Image.Image) -> bytes | None:
    if image.mode not in ('RGB', 'L'):
        image = image.convert('RGB')
    buffer = io.BytesIO()
    try:
        image.save(buffer, format='JPEG')
    except (OSError, ValueError) as exc:
        logger.warning('JPEG encode failed size=%s mode=%s error=%s', image.size, image.mode, exc)
        return None
    return buffer.getvalue() or None


def to_pixel_rect(box: tuple[float, float, float, float], image_size: tuple[int, int]) -> tuple[int, int, int, int]:
    width, height = image_size
    ymin, xmin, ymax, xmax = box
    x = max(0, min(int(round(xmin * width)), width - 1))
    y = max(0, min(int(round(ymin * height)), height - 1))
    w = max(1, min(int(round((xmax - xmin) * width)), width - x))
    h = max(1, min(int(round((ymax - ymin) * height)), height - y))
    return x, y, w, h


class CropRasterizer:
    def __init__(self, handles: DisplayHandleRegistry, encoder: Encoder = encode_jpeg) -> None:
        self._handles = handles
        self._encoder = encoder

    def _load_source(self, image) -> Image.Image:
        try:
            image.load()
        except (OSError, SyntaxError, ValueError, AttributeError) as exc:
            raise SourceImageUnreadable(details={'error': str(exc)}) from exc
        width, height = image.size
        if width <= 0 or height <= 0:
            raise SourceImageUnreadable(details={'image_size': [width, height]})
        return image

    def rasterize(self, image, regions: list[ValidatedRegion]) -> list[CropAsset]:
        source = self._load_source(image)
        assets: list[CropAsset] = []
        try:
            for index, region in enumerate(regions):
                x, y, w, h = to_pixel_rect(region.box, source.size)
                # crop() returns a new image that does not share pixels with the source.
                surface = source.crop((x, y, x + w, y + h))
                data = self._encoder(surface)
                if not data:
                    logger.warning('Skipping region index=%s label=%r: encoder returned no data', index, region.label)
                    continue
                asset_id = str(uuid.uuid4())
                handle = self._handles.create(asset_id, data)
                assets.append(
                    CropAsset(
                        id=asset_id,
                        label=region.label,
                        data=data,
                        display_handle=handle,
                        width=w,
                        height=h,
                    )
                )
        except Exception:
            for asset in assets:
                self._handles.revoke(asset.display_handle)
            logger.warning('rasterize aborted; revoked handles=%s', len(assets))
            raise
        logger.debug('rasterize regions=%s assets=%s source_size=%s', len(regions), len(assets), source.size)
        return assets
