import logging
import time
import uuid
from urllib.parse import quote

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from image_splitter.config import get_settings
from image_splitter.core.detector import create_detector
from image_splitter.core.errors import SplitterError
from image_splitter.core.export import build_archive
from image_splitter.core.handles import DisplayHandleRegistry
from image_splitter.core.pipeline import SplitPipeline
from image_splitter.core.rasterizer import CropRasterizer
from image_splitter.core.session import SessionStore
from image_splitter.core.types import CropAsset
from image_splitter.history import HistoryLogger
from image_splitter.logging_setup import setup_logging
from image_splitter.schemas import (
    CropOut,
    ErrorResponse,
    HealthResponse,
    HistoryResponse,
    RegionOut,
    ResetResponse,
    SessionCropsResponse,
    SplitResponse,
)
from image_splitter.utils.hash_cache import HashCache
from image_splitter.utils.image_io import load_image_from_bytes

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger('image_splitter')

app = FastAPI(title='Image Splitter', version=settings.version)
started_at = time.time()


def _request_id(request: Request) -> str:
    return request.headers.get('x-request-id') or str(uuid.uuid4())


def _crop_out(asset: CropAsset) -> CropOut:
    return CropOut(
        id=asset.id,
        label=asset.label,
        url=asset.display_handle,
        download_url=f'{asset.display_handle}/download',
        filename=asset.filename,
        width=asset.width,
        height=asset.height,
    )


@app.on_event('startup')
def startup_event() -> None:
    detector = create_detector(settings)
    handles = DisplayHandleRegistry(base_path='/crops')
    sessions = SessionStore(handles, max_sessions=settings.max_sessions)
    app.state.detector = detector
    app.state.handles = handles
    app.state.sessions = sessions
    app.state.pipeline = SplitPipeline(
        detector=detector,
        rasterizer=CropRasterizer(handles),
        sessions=sessions,
        min_dimension_fraction=settings.min_dimension_fraction,
        cache=HashCache(settings.detection_cache_size),
    )
    app.state.history = HistoryLogger(settings.history_dir)
    app.state.model_loaded = True
    logger.info(
        'Splitter initialized provider=%s model=%s min_dimension_fraction=%s history_enabled=%s history_dir=%s',
        settings.provider,
        detector.model_id,
        settings.min_dimension_fraction,
        settings.enable_history,
        settings.history_dir,
    )


@app.exception_handler(SplitterError)
async def splitter_error_handler(request: Request, exc: SplitterError):
    request_id = _request_id(request)
    logger.warning('Request failed request_id=%s code=%s message=%s', request_id, exc.code, exc.message)
    payload = ErrorResponse(
        error=exc.code,
        message=exc.message,
        request_id=request_id,
    )
    return JSONResponse(status_code=exc.status_code, content=payload.model_dump())


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    request_id = _request_id(request)
    logger.exception('Unhandled exception request_id=%s', request_id)
    payload = ErrorResponse(
        error='UNEXPECTED_SERVER_ERROR',
        message='Unexpected server error.',
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=payload.model_dump())


@app.get('/health', response_model=HealthResponse)
def health():
    detector = app.state.detector
    return HealthResponse(
        ok=True,
        version=settings.version,
        provider=settings.provider,
        model_loaded=bool(getattr(app.state, 'model_loaded', False)),
        model=getattr(detector, 'model_id', None),
        live_handles=len(app.state.handles),
        uptime_s=round(time.time() - started_at, 3),
    )


@app.post('/split', response_model=SplitResponse)
async def split(
    request: Request,
    image: UploadFile = File(...),
    model: str | None = Form(default=None),
):
    request_id = _request_id(request)
    session_id = request.headers.get('x-session-id') or str(uuid.uuid4())
    api_key = request.headers.get('x-gemini-api-key') or None

    image_bytes = await image.read()
    img = load_image_from_bytes(image_bytes, settings.max_image_bytes)

    pipeline: SplitPipeline = app.state.pipeline
    model_name = model or pipeline.detector.model_id
    outcome = await pipeline.run(
        session_id,
        img,
        model=model,
        api_key=api_key,
        cache_key=HashCache.digest(image_bytes, model_name),
    )

    history_id: str | None = None
    if settings.enable_history:
        try:
            history_logger: HistoryLogger = app.state.history
            record = history_logger.save_history(
                original_name=image.filename,
                assets=outcome.assets,
                session_id=session_id,
                model=outcome.model_id,
                request_id=request_id,
            )
            history_id = str(record.get('history_id'))
        except Exception:
            logger.exception('Failed to persist split history request_id=%s', request_id)

    response = SplitResponse(
        ok=True,
        session_id=session_id,
        model=outcome.model_id,
        latency_ms=outcome.latency_ms,
        detection_latency_ms=outcome.detection_latency_ms,
        cached_detection=outcome.cached_detection,
        image_size=list(outcome.image_size),
        regions=[RegionOut(label=region.label, box=list(region.box)) for region in outcome.regions],
        crops=[_crop_out(asset) for asset in outcome.assets],
        history_id=history_id,
    )

    logger.info(
        'split request_id=%s session_id=%s bytes=%s regions=%s crops=%s history_id=%s',
        request_id,
        session_id,
        len(image_bytes),
        len(outcome.regions),
        len(outcome.assets),
        history_id,
    )
    return response


@app.get('/crops/{crop_id}')
def get_crop(crop_id: str):
    handles: DisplayHandleRegistry = app.state.handles
    data = handles.resolve(crop_id)
    if data is None:
        raise SplitterError('CROP_NOT_FOUND', f'No live crop for id={crop_id}', status_code=404)
    return Response(content=data, media_type='image/jpeg')


@app.get('/crops/{crop_id}/download')
def download_crop(crop_id: str):
    sessions: SessionStore = app.state.sessions
    asset = sessions.find_asset(crop_id)
    if asset is None:
        raise SplitterError('CROP_NOT_FOUND', f'No live crop for id={crop_id}', status_code=404)
    return Response(
        content=asset.data,
        media_type='image/jpeg',
        headers={'Content-Disposition': _content_disposition(asset.filename)},
    )


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode('ascii', 'replace').decode('ascii').replace('?', '_').replace('"', '_')
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


def _require_session(session_id: str) -> SessionStore:
    sessions: SessionStore = app.state.sessions
    if not sessions.has_session(session_id):
        raise SplitterError('SESSION_NOT_FOUND', f'No session for id={session_id}', status_code=404)
    return sessions


@app.get('/sessions/{session_id}/crops', response_model=SessionCropsResponse)
def session_crops(session_id: str):
    sessions = _require_session(session_id)
    return SessionCropsResponse(
        ok=True,
        session_id=session_id,
        crops=[_crop_out(asset) for asset in sessions.get_assets(session_id)],
    )


@app.get('/sessions/{session_id}/archive')
def session_archive(session_id: str):
    sessions = _require_session(session_id)
    assets = sessions.get_assets(session_id)
    if not assets:
        raise SplitterError('SESSION_EMPTY', f'Session {session_id} has no crops to export.', status_code=404)
    return Response(
        content=build_archive(assets),
        media_type='application/zip',
        headers={'Content-Disposition': f'attachment; filename="crops_{session_id[:8]}.zip"'},
    )


@app.delete('/sessions/{session_id}', response_model=ResetResponse)
def reset_session(session_id: str):
    sessions = _require_session(session_id)
    released = sessions.reset(session_id)
    return ResetResponse(ok=True, session_id=session_id, released=released)


@app.get('/history', response_model=HistoryResponse)
def history(limit: int = 20):
    history_logger: HistoryLogger = app.state.history
    return HistoryResponse(ok=True, entries=history_logger.list_history(limit=max(1, min(200, limit))))


def run() -> None:
    import uvicorn

    uvicorn.run('image_splitter.main:app', host=settings.host, port=settings.port, log_level=settings.log_level.lower())
