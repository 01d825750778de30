"""
Pixee AI Backend - HTTP API над пайплайном обработки изображений.

Роуты:
- /health: статус сервиса
- /api/images/*: операции над изображениями (Replicate)
- /processed, /uploads: статика с результатами и публично размещенными файлами
"""
import asyncio
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .catalog import STYLES
from .cleanup import schedule_cleanup
from .config import settings
from .exceptions import InvalidRequest, PipelineError
from .files import cleanup_files
from .models import OperationResult
from .operations import OPERATIONS, InputFile, run_operation
from .pipeline import PredictionPipeline, build_pipeline
from .schemas import (
    ErrorResponse,
    OperationResponse,
    OperationsResponse,
    StylesResponse,
    TextToImageRequest,
)

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    "invalid_request": 400,
    "file_not_accessible": 400,
    "configuration_error": 500,
    "upstream_error": 502,
    "no_version_available": 502,
    "prediction_failed": 502,
    "prediction_timeout": 504,
}

FEATURES = [
    "Background Remover",
    "AI Enhancer",
    "Magic Eraser",
    "Avatar Creator",
    "Text to Image",
    "Image Upscale",
    "Style Transfer",
    "Mockup Generator",
    "AI Art",
]

HEALTH_PROBE_MODEL = "stability-ai/stable-diffusion"
STARTED_AT = time.monotonic()

for directory in (settings.UPLOAD_DIR, settings.PROCESSED_DIR, settings.PUBLIC_UPLOADS_DIR):
    os.makedirs(directory, exist_ok=True)

app = FastAPI(**settings.get_app_config())
app.add_middleware(CORSMiddleware, **settings.get_cors_config())
app.mount("/processed", StaticFiles(directory=settings.PROCESSED_DIR), name="processed")
app.mount("/uploads", StaticFiles(directory=settings.PUBLIC_UPLOADS_DIR), name="uploads")

router = APIRouter(prefix="/api/images", tags=["Images"])


# ============================================================================
# Lifecycle
# ============================================================================

@app.on_event("startup")
async def startup_event():
    app.state.pipeline = build_pipeline(settings)
    app.state.cleanup_task = schedule_cleanup(settings)
    logger.info(f"🚀 {settings.APP_NAME} running on {settings.HOST}:{settings.PORT}")


@app.on_event("shutdown")
async def shutdown_event():
    task = getattr(app.state, "cleanup_task", None)
    if task is not None:
        task.cancel()
    pipeline = getattr(app.state, "pipeline", None)
    if pipeline is not None:
        await pipeline.close()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    if response.status_code >= 500:
        logger.error(
            f"❌ {request.method} {request.url.path} | Статус: {response.status_code} | Время: {process_time:.4f}s"
        )
    elif response.status_code >= 400:
        logger.warning(
            f"⚠️ {request.method} {request.url.path} | Статус: {response.status_code} | Время: {process_time:.4f}s"
        )
    else:
        logger.info(
            f"✅ {request.method} {request.url.path} | Статус: {response.status_code} | Время: {process_time:.4f}s"
        )
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Необработанная ошибка: {str(exc)}", exc_info=True)
    return unexpected_error_response()


def get_pipeline(request: Request) -> PredictionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        pipeline = build_pipeline(settings)
        request.app.state.pipeline = pipeline
    return pipeline


# ============================================================================
# Helpers
# ============================================================================

def error_response(error: PipelineError, operation: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(**error.to_dict(), operation=operation)
    return JSONResponse(
        status_code=STATUS_BY_CATEGORY.get(error.category, 500),
        content=body.model_dump(),
    )


def unexpected_error_response(operation: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=PipelineError.category, message="Internal server error", operation=operation)
    return JSONResponse(status_code=500, content=body.model_dump())


def success_response(result: OperationResult, multi: bool = False) -> Dict[str, Any]:
    body = OperationResponse(
        message=result.message,
        downloadUrl=result.download_url,
        allImages=result.all_urls if multi else None,
        operation=result.operation,
        prediction_id=result.prediction_id,
    )
    return body.model_dump(exclude_none=True)


def _write_file(path: str, data: bytes):
    with open(path, "wb") as f:
        f.write(data)


def _staged_name(upload: UploadFile) -> str:
    ext = os.path.splitext(upload.filename or "")[1].lower()
    if not ext:
        ext = "." + (upload.content_type or "image/jpeg").split("/", 1)[-1].split("+", 1)[0]
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}{ext}"


async def stage_upload(upload: UploadFile) -> InputFile:
    """Write an uploaded image into the staging directory."""
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise InvalidRequest(f"Only image files are allowed ({upload.filename}: {content_type or 'unknown'})")

    data = await upload.read()
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise InvalidRequest(f"File too large: {upload.filename}")

    path = os.path.join(settings.UPLOAD_DIR, _staged_name(upload))
    await asyncio.to_thread(_write_file, path, data)
    logger.info(f"📸 Staged upload {upload.filename} -> {path} ({len(data)} bytes)")
    return InputFile(path=path, mime_type=content_type)


async def form_options(request: Request) -> Dict[str, Any]:
    """Plain (non-file) form fields of a multipart request."""
    form = await request.form()
    return {key: value for key, value in form.multi_items() if isinstance(value, str)}


async def process(
    pipeline: PredictionPipeline,
    operation: str,
    uploads: List[UploadFile],
    options: Optional[Dict[str, Any]] = None,
):
    staged: List[InputFile] = []
    try:
        for upload in uploads:
            staged.append(await stage_upload(upload))
        result = await run_operation(pipeline, operation, staged, options)
    except PipelineError as e:
        return error_response(e, operation)
    except Exception:
        logger.exception(f"❌ Unexpected error in {operation}")
        return unexpected_error_response(operation)
    finally:
        cleanup_files(f.path for f in staged)
    return success_response(result, multi=OPERATIONS[operation].multi_output)


# ============================================================================
# Info Endpoints
# ============================================================================

@app.get("/health")
def health() -> Dict[str, Any]:
    return {
        "status": "OK",
        "service": settings.APP_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - STARTED_AT,
        "features": FEATURES,
    }


@router.get("/operations", response_model=OperationsResponse)
def list_operations() -> OperationsResponse:
    return OperationsResponse(operations=list(OPERATIONS))


@router.get("/styles", response_model=StylesResponse)
def list_styles() -> StylesResponse:
    return StylesResponse(styles=STYLES)


@router.get("/health")
async def upstream_health(pipeline: PredictionPipeline = Depends(get_pipeline)):
    """Ping the upstream models API."""
    try:
        await pipeline.client.get_model(HEALTH_PROBE_MODEL)
    except PipelineError as e:
        logger.error(f"❌ Replicate API health check failed: {e.message}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "service": "Replicate API", "error": e.message},
        )
    return {
        "status": "healthy",
        "service": "Replicate API",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ============================================================================
# Image Operations
# ============================================================================

@router.post("/remove-background")
async def remove_background(
    request: Request,
    image: UploadFile = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    return await process(pipeline, "background_remover", [image], await form_options(request))


@router.post("/enhance")
async def enhance(
    request: Request,
    image: UploadFile = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    return await process(pipeline, "enhancer", [image], await form_options(request))


@router.post("/upscale")
async def upscale(
    request: Request,
    image: UploadFile = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    return await process(pipeline, "upscale", [image], await form_options(request))


@router.post("/style-transfer")
async def style_transfer(
    request: Request,
    image: UploadFile = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    return await process(pipeline, "style_transfer", [image], await form_options(request))


@router.post("/create-mockup")
async def create_mockup(
    request: Request,
    image: UploadFile = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    return await process(pipeline, "mockup", [image], await form_options(request))


@router.post("/magic-eraser")
async def magic_eraser(
    request: Request,
    image: UploadFile = File(...),
    mask: UploadFile = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    return await process(pipeline, "magic_eraser", [image, mask], await form_options(request))


@router.post("/create-avatar")
async def create_avatar(
    request: Request,
    images: List[UploadFile] = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    """Первое изображение - основное лицо, остальные (до 3) - вспомогательные."""
    return await process(pipeline, "avatar_creator", images, await form_options(request))


@router.post("/ai-art")
async def ai_art(
    request: Request,
    images: List[UploadFile] = File(...),
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    return await process(pipeline, "ai_art", images, await form_options(request))


@router.post("/text-to-image")
async def text_to_image(
    req: TextToImageRequest,
    pipeline: PredictionPipeline = Depends(get_pipeline),
):
    options = req.model_dump(exclude_none=True)
    return await process(pipeline, "text_to_image", [], options)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
