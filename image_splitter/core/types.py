from dataclasses import dataclass

from image_splitter.core.export import export_filename


@dataclass(frozen=True)
class ValidatedRegion:
    label: str
    box: tuple[float, float, float, float]

    @property
    def width(self) -> float:
        return self.box[3] - self.box[1]

    @property
    def height(self) -> float:
        return self.box[2] - self.box[0]


@dataclass
class CropAsset:
    id: str
    label: str
    data: bytes
    display_handle: str
    width: int
    height: int

    @property
    def filename(self) -> str:
        return export_filename(self.label, self.id)


@dataclass
class DetectionResult:
    response: dict
    model_id: str
    latency_ms: int
    image_size: tuple[int, int]
