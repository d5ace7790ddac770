from pydantic import BaseModel, Field


class RegionOut(BaseModel):
    label: str
    box: list[float] = Field(min_length=4, max_length=4)


class CropOut(BaseModel):
    id: str
    label: str
    url: str
    download_url: str
    filename: str
    width: int
    height: int


class SplitResponse(BaseModel):
    ok: bool = True
    session_id: str
    model: str
    latency_ms: int
    detection_latency_ms: int
    cached_detection: bool = False
    image_size: list[int]
    regions: list[RegionOut]
    crops: list[CropOut]
    history_id: str | None = None


class SessionCropsResponse(BaseModel):
    ok: bool = True
    session_id: str
    crops: list[CropOut] = []


class ResetResponse(BaseModel):
    ok: bool = True
    session_id: str
    released: int


class HistoryCropOut(BaseModel):
    id: str
    label: str
    filename: str
    path: str
    width: int
    height: int


class HistoryEntryOut(BaseModel):
    history_id: str
    original_name: str | None = None
    created_at: str
    model: str | None = None
    crops: list[HistoryCropOut] = []


class HistoryResponse(BaseModel):
    ok: bool = True
    entries: list[HistoryEntryOut] = []


class HealthResponse(BaseModel):
    ok: bool
    version: str
    provider: str
    model_loaded: bool
    model: str | None = None
    live_handles: int = 0
    uptime_s: float


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    message: str
    request_id: str | None = None
