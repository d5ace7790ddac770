import logging
import math
from collections.abc import Mapping
from typing import Any

from image_splitter.core.errors import MalformedResponse
from image_splitter.core.types import ValidatedRegion

logger = logging.getLogger('image_splitter.normalizer')

MIN_DIMENSION_FRACTION = 0.02
THOUSANDS_SCALE = 1000.0
FALLBACK_LABEL = 'full image'
FALLBACK_BOX = (0.0, 0.0, 1.0, 1.0)


def _to_coordinate(value: Any) -> float | None:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    try:
        # JSON integers are unbounded and may not fit in a float.
        coordinate = float(value)
    except OverflowError:
        return None
    return coordinate if math.isfinite(coordinate) else None


def _parse_box(box: Any) -> list[float] | None:
    if not isinstance(box, (list, tuple)) or len(box) != 4:
        return None
    coordinates = [_to_coordinate(value) for value in box]
    if any(coordinate is None for coordinate in coordinates):
        return None
    return coordinates


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def normalize_box(box: list[float]) -> tuple[float, float, float, float]:
    # Heuristic: any coordinate above 1 means the model answered on a 0-1000 grid.
    if any(value > 1.0 for value in box):
        box = [value / THOUSANDS_SCALE for value in box]
    ymin, xmin, ymax, xmax = box
    if ymin > ymax:
        ymin, ymax = ymax, ymin
    if xmin > xmax:
        xmin, xmax = xmax, xmin
    return (_clamp_unit(ymin), _clamp_unit(xmin), _clamp_unit(ymax), _clamp_unit(xmax))


def _pick_label(label: Any, position: int) -> str:
    if isinstance(label, str) and label:
        return label
    return f'region {position}'


def normalize(raw: Any, min_dimension_fraction: float = MIN_DIMENSION_FRACTION) -> list[ValidatedRegion]:
    """Turn a raw detection payload into validated unit-normalized regions.

    Individual entries that are malformed or degenerate are dropped silently.
    Only a payload without a list-valued ``regions`` field is an error. The
    result is never empty: when nothing survives, a single full-image region
    is returned.
    """
    entries = raw.get('regions') if isinstance(raw, Mapping) else None
    if not isinstance(entries, list):
        raise MalformedResponse(details={'payload_type': type(raw).__name__})

    validated: list[ValidatedRegion] = []
    malformed = 0
    degenerate = 0
    for entry in entries:
        if not isinstance(entry, Mapping):
            malformed += 1
            continue
        box = _parse_box(entry.get('box'))
        if box is None:
            malformed += 1
            continue
        ymin, xmin, ymax, xmax = normalize_box(box)
        if (xmax - xmin) < min_dimension_fraction or (ymax - ymin) < min_dimension_fraction:
            degenerate += 1
            continue
        label = _pick_label(entry.get('label'), len(validated) + 1)
        validated.append(ValidatedRegion(label=label, box=(ymin, xmin, ymax, xmax)))

    if malformed or degenerate:
        logger.debug(
            'normalize dropped entries raw=%s malformed=%s degenerate=%s kept=%s',
            len(entries),
            malformed,
            degenerate,
            len(validated),
        )
    if not validated:
        logger.info('normalize produced no usable regions raw=%s; using full image fallback', len(entries))
        return [ValidatedRegion(label=FALLBACK_LABEL, box=FALLBACK_BOX)]
    return validated
