"""API routes for batch compression and download."""
import asyncio
import logging
import re
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from compressor import config
from compressor.archive import iter_zip
from compressor.conversion import BatchOrchestrator, ConversionRequest, FormatTag, NoFilesProvided
from compressor.conversion.models import normalize_format
from compressor.conversion.service import new_batch_id
from compressor.db import get_recent_conversions, get_stats, record_batch
from compressor.store import ResultNotFound, ResultStore

logger = logging.getLogger("compressor.api")
router = APIRouter(prefix="/api", tags=["compressor"])

_EXT_TO_MIME = {
    ".jpeg": "image/jpeg", ".jpg": "image/jpeg", ".png": "image/png",
    ".webp": "image/webp", ".avif": "image/avif", ".jxl": "image/jxl",
}
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def get_result_store(request: Request) -> ResultStore:
    return request.app.state.result_store


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.orchestrator


def parse_quality(raw: Optional[str]) -> int:
    """Leading integer of raw ("80abc" -> 80, "12.5" -> 12), or DEFAULT_QUALITY when absent, unparseable or zero.
    Range is not enforced."""
    match = _LEADING_INT.match(raw or "")
    if match is None:
        return config.DEFAULT_QUALITY
    return int(match.group(1)) or config.DEFAULT_QUALITY


def content_type_for(filename: str) -> str:
    return _EXT_TO_MIME.get(Path(filename).suffix.lower(), "application/octet-stream")


def content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def _too_large(filename: str) -> HTTPException:
    return HTTPException(413, f"File too large: {filename} (max {config.MAX_IMAGE_SIZE_MB} MB)")


async def _stage_upload(file: UploadFile) -> Path:
    """Stream an upload to UPLOAD_DIR, enforcing the per-file size limit."""
    safe_name = f"{uuid.uuid4().hex}_{Path(file.filename or 'upload').name}"
    dest = config.UPLOAD_DIR / safe_name
    total = 0
    try:
        with open(dest, "wb") as f:
            while chunk := await file.read(1024 * 1024):
                total += len(chunk)
                if total > config.MAX_IMAGE_SIZE_BYTES:
                    raise _too_large(file.filename)
                f.write(chunk)
    except Exception:
        dest.unlink(missing_ok=True)
        raise
    return dest


async def _read_upload(file: UploadFile) -> bytes:
    data = await file.read()
    if len(data) > config.MAX_IMAGE_SIZE_BYTES:
        raise _too_large(file.filename)
    return data


async def _build_requests(files: list[UploadFile], target_format: str, quality: int) -> list[ConversionRequest]:
    requests: list[ConversionRequest] = []
    try:
        for file in files:
            name = file.filename or "upload"
            if config.UPLOAD_STAGING == "disk":
                path = await _stage_upload(file)
                requests.append(ConversionRequest(name, target_format, quality, staging_path=path))
            else:
                data = await _read_upload(file)
                requests.append(ConversionRequest(name, target_format, quality, input_bytes=data))
    except HTTPException:
        _discard_staged(requests)
        raise
    except Exception as e:
        logger.exception("Upload failed: %s", e)
        _discard_staged(requests)
        raise HTTPException(500, "Upload failed")
    return requests


def _discard_staged(requests: list[ConversionRequest]) -> None:
    for req in requests:
        if req.staging_path is not None:
            req.staging_path.unlink(missing_ok=True)


def _record_history(batch_id: str, target_format: str, quality: int, results) -> None:
    try:
        record_batch(batch_id, target_format, quality, results)
    except SQLAlchemyError as e:
        logger.warning("Could not record history for batch %s: %s", batch_id, e)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/formats")
def get_formats():
    return {"output_image": FormatTag.values(), "default": config.DEFAULT_FORMAT}


@router.get("/limits")
def get_limits():
    """Return upload limits for the client."""
    return {
        "max_files_per_batch": config.MAX_FILES_PER_BATCH,
        "max_image_size_mb": config.MAX_IMAGE_SIZE_MB,
        "max_image_size_bytes": config.MAX_IMAGE_SIZE_BYTES,
    }


@router.post("/compress")
async def compress(
    images: Optional[list[UploadFile]] = File(None),
    output_format: str = Query(config.DEFAULT_FORMAT, alias="format", description="jpeg | png | webp | avif | jxl"),
    quality: Optional[str] = Query(None, description="Integer quality; defaults when absent or invalid"),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    """Convert all uploaded images in parallel. Successful outputs are held for download until the next batch."""
    if not images:
        logger.warning("No images uploaded.")
        raise HTTPException(400, "No images uploaded.")
    if len(images) > config.MAX_FILES_PER_BATCH:
        raise HTTPException(400, f"Max {config.MAX_FILES_PER_BATCH} images per batch")

    target_format = normalize_format(output_format)
    quality_value = parse_quality(quality)
    logger.info("Received %s file(s) for conversion to %s with quality %s", len(images), target_format, quality_value)

    requests = await _build_requests(images, target_format, quality_value)
    batch_id = new_batch_id()
    try:
        results = await asyncio.to_thread(orchestrator.run_batch, requests, batch_id)
    except NoFilesProvided as e:
        raise HTTPException(400, str(e))

    await asyncio.to_thread(_record_history, batch_id, target_format, quality_value, results)
    return [r.to_dict() for r in results]


@router.get("/download-all-zip")
def download_all_zip(store: ResultStore = Depends(get_result_store)):
    """Zip every output currently held. Outputs stay available after the archive is sent."""
    entries = store.snapshot()
    logger.info("Zipping %s output(s)", len(entries))
    return StreamingResponse(
        iter_zip(entries),
        media_type="application/zip",
        headers={"Content-Disposition": content_disposition(config.ARCHIVE_FILENAME)},
    )


@router.get("/download/{filename}")
def download_output(filename: str, store: ResultStore = Depends(get_result_store)):
    """Download one converted file. The output is removed once served."""
    try:
        payload = store.take(filename)
    except ResultNotFound:
        logger.warning("File not found for download: %s", filename)
        raise HTTPException(404, "File not found.")
    logger.info("Serving file for download: %s", filename)
    return Response(
        content=payload,
        media_type=content_type_for(filename),
        headers={"Content-Disposition": content_disposition(filename)},
    )


@router.get("/stats")
def stats():
    """Aggregate conversion history."""
    return get_stats()


@router.get("/history")
def history(limit: int = Query(50, ge=1, le=500)):
    """Recent per-file conversion history, newest first."""
    return {"conversions": get_recent_conversions(limit=limit)}
