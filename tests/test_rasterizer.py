from io import BytesIO

import pytest
from PIL import Image

from image_splitter.core.errors import SourceImageUnreadable
from image_splitter.core.handles import DisplayHandleRegistry
from image_splitter.core.rasterizer import CropRasterizer, encode_jpeg, to_pixel_rect
from image_splitter.core.types import ValidatedRegion


def make_quadrant_image(width: int = 200, height: int = 100) -> Image.Image:
    image = Image.new('RGB', (width, height), color=(0, 0, 255))
    half_w, half_h = width // 2, height // 2
    image.paste((255, 0, 0), (0, 0, half_w, half_h))
    image.paste((0, 255, 0), (half_w, 0, width, half_h))
    image.paste((255, 255, 0), (0, half_h, half_w, height))
    image.putpixel((0, 0), (12, 34, 56))
    return image


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format='PNG')
    return buffer.getvalue()


def decode(data: bytes) -> Image.Image:
    image = Image.open(BytesIO(data))
    image.load()
    return image


def test_crop_has_expected_pixel_size_and_origin():
    source = make_quadrant_image(200, 100)
    rasterizer = CropRasterizer(DisplayHandleRegistry(), encoder=encode_png)

    assets = rasterizer.rasterize(source, [ValidatedRegion('top-left', (0.0, 0.0, 0.5, 0.5))])

    assert len(assets) == 1
    crop = decode(assets[0].data)
    assert crop.size == (round(0.5 * 200), round(0.5 * 100))
    assert (assets[0].width, assets[0].height) == crop.size
    assert crop.getpixel((0, 0)) == source.getpixel((0, 0))


def test_crop_matches_source_pixels_at_offset():
    source = make_quadrant_image(200, 100)
    rasterizer = CropRasterizer(DisplayHandleRegistry(), encoder=encode_png)

    assets = rasterizer.rasterize(source, [ValidatedRegion('top-right', (0.0, 0.5, 0.5, 1.0))])

    crop = decode(assets[0].data)
    assert crop.size == (100, 50)
    assert crop.getpixel((0, 0)) == (0, 255, 0)
    assert crop.getpixel((99, 49)) == source.getpixel((199, 49))


def test_default_encoder_produces_jpeg():
    source = make_quadrant_image(200, 100)
    rasterizer = CropRasterizer(DisplayHandleRegistry())

    assets = rasterizer.rasterize(source, [ValidatedRegion('bottom', (0.5, 0.0, 1.0, 1.0))])

    crop = decode(assets[0].data)
    assert crop.format == 'JPEG'
    assert crop.size == (200, 50)


def test_encode_jpeg_converts_alpha_images():
    rgba = Image.new('RGBA', (10, 10), color=(10, 20, 30, 128))

    data = encode_jpeg(rgba)

    assert data is not None
    assert decode(data).format == 'JPEG'


def test_rounding_overshoot_is_clamped_to_image_bounds():
    assert to_pixel_rect((0.0, 0.5, 1.0, 1.0), (3, 3)) == (2, 0, 1, 3)
    assert to_pixel_rect((0.0, 0.0, 1.0, 1.0), (640, 480)) == (0, 0, 640, 480)


def test_rasterize_preserves_region_order_and_labels():
    source = make_quadrant_image()
    regions = [
        ValidatedRegion('third', (0.5, 0.5, 1.0, 1.0)),
        ValidatedRegion('first', (0.0, 0.0, 0.5, 0.5)),
        ValidatedRegion('second', (0.0, 0.5, 0.5, 1.0)),
    ]
    rasterizer = CropRasterizer(DisplayHandleRegistry())

    assets = rasterizer.rasterize(source, regions)

    assert [asset.label for asset in assets] == ['third', 'first', 'second']
    assert len({asset.id for asset in assets}) == 3


def test_assets_get_live_display_handles():
    handles = DisplayHandleRegistry(base_path='/crops')
    rasterizer = CropRasterizer(handles)

    assets = rasterizer.rasterize(make_quadrant_image(), [ValidatedRegion('all', (0.0, 0.0, 1.0, 1.0))])

    asset = assets[0]
    assert asset.display_handle == f'/crops/{asset.id}'
    assert handles.resolve(asset.display_handle) == asset.data
    assert len(handles) == 1


def test_rasterize_is_deterministic_for_the_same_input():
    source = make_quadrant_image()
    regions = [ValidatedRegion('a', (0.0, 0.0, 0.5, 0.5)), ValidatedRegion('b', (0.25, 0.25, 0.75, 0.75))]
    rasterizer = CropRasterizer(DisplayHandleRegistry())

    first = rasterizer.rasterize(source, regions)
    second = rasterizer.rasterize(source, regions)

    assert [asset.data for asset in first] == [asset.data for asset in second]
    assert {asset.id for asset in first}.isdisjoint({asset.id for asset in second})


def test_failed_region_encoding_is_skipped():
    calls = {'count': 0}

    def flaky_encoder(image: Image.Image) -> bytes | None:
        calls['count'] += 1
        if calls['count'] == 2:
            return None
        return encode_png(image)

    handles = DisplayHandleRegistry()
    rasterizer = CropRasterizer(handles, encoder=flaky_encoder)
    regions = [
        ValidatedRegion('a', (0.0, 0.0, 0.5, 0.5)),
        ValidatedRegion('b', (0.0, 0.5, 0.5, 1.0)),
        ValidatedRegion('c', (0.5, 0.0, 1.0, 0.5)),
    ]

    assets = rasterizer.rasterize(make_quadrant_image(), regions)

    assert [asset.label for asset in assets] == ['a', 'c']
    assert len(assets) <= len(regions)
    assert len(handles) == 2


def test_encoder_exception_revokes_handles_created_so_far():
    calls = {'count': 0}

    def broken_encoder(image: Image.Image) -> bytes | None:
        calls['count'] += 1
        if calls['count'] == 2:
            raise RuntimeError('encoder crashed')
        return encode_png(image)

    handles = DisplayHandleRegistry()
    rasterizer = CropRasterizer(handles, encoder=broken_encoder)
    regions = [
        ValidatedRegion('a', (0.0, 0.0, 0.5, 0.5)),
        ValidatedRegion('b', (0.0, 0.5, 0.5, 1.0)),
    ]

    with pytest.raises(RuntimeError):
        rasterizer.rasterize(make_quadrant_image(), regions)

    assert len(handles) == 0


def test_small_images_keep_at_least_one_pixel_inside_bounds():
    # A 10 px wide image: xmin=0.98 rounds to x=10, which is pulled back to the last column.
    assert to_pixel_rect((0.0, 0.98, 1.0, 1.0), (10, 10)) == (9, 0, 1, 10)


def test_empty_encoder_output_counts_as_failure():
    rasterizer = CropRasterizer(DisplayHandleRegistry(), encoder=lambda _image: b'')

    assert rasterizer.rasterize(make_quadrant_image(), [ValidatedRegion('a', (0.0, 0.0, 1.0, 1.0))]) == []


def test_truncated_source_raises_source_image_unreadable():
    payload = encode_png(Image.effect_noise((64, 64), 40).convert('RGB'))
    truncated = Image.open(BytesIO(payload[: len(payload) // 2]))
    rasterizer = CropRasterizer(DisplayHandleRegistry())

    with pytest.raises(SourceImageUnreadable) as exc_info:
        rasterizer.rasterize(truncated, [ValidatedRegion('a', (0.0, 0.0, 1.0, 1.0))])

    assert exc_info.value.code == 'SOURCE_IMAGE_UNREADABLE'


def test_non_image_source_raises_source_image_unreadable():
    rasterizer = CropRasterizer(DisplayHandleRegistry())

    with pytest.raises(SourceImageUnreadable):
        rasterizer.rasterize(object(), [ValidatedRegion('a', (0.0, 0.0, 1.0, 1.0))])


def test_crop_is_independent_of_the_source_bitmap():
    source = make_quadrant_image(20, 20)
    rasterizer = CropRasterizer(DisplayHandleRegistry(), encoder=encode_png)

    assets = rasterizer.rasterize(source, [ValidatedRegion('a', (0.0, 0.0, 0.5, 0.5))])
    source.paste((0, 0, 0), (0, 0, 20, 20))

    assert decode(assets[0].data).getpixel((1, 1)) == (255, 0, 0)
