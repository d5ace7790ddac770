from io import BytesIO

from PIL import Image, ImageOps

from image_splitter.core.errors import SplitterError

_FLATTEN_BACKGROUND = (255, 255, 255)


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == 'RGB':
        return image
    if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
        # Transparent pixels would turn black in JPEG crops; flatten onto white instead.
        rgba = image.convert('RGBA')
        background = Image.new('RGB', rgba.size, _FLATTEN_BACKGROUND)
        background.paste(rgba, mask=rgba.getchannel('A'))
        return background
    return image.convert('RGB')


def load_image_from_bytes(image_bytes: bytes, max_bytes: int) -> Image.Image:
    if not image_bytes:
        raise SplitterError('MISSING_IMAGE', 'Missing image upload (field name: image).', status_code=400)
    if len(image_bytes) > max_bytes:
        raise SplitterError('IMAGE_TOO_LARGE', f'Image too large. Max {max_bytes} bytes.', status_code=413)

    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Image.DecompressionBombError as exc:
        raise SplitterError('IMAGE_TOO_LARGE', 'Image has too many pixels.', status_code=413) from exc
    except Exception as exc:
        raise SplitterError('IMAGE_DECODE_FAILED', 'Could not decode image.', status_code=400) from exc

    # Phone photos carry their rotation in EXIF; crop boxes refer to the upright image.
    image = ImageOps.exif_transpose(image)
    return _to_rgb(image)
