"""Image conversion workers and the batch orchestrator that runs them in parallel."""
import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional, Protocol, Sequence

from compressor.config import CONVERSION_TIMEOUT_SECONDS, EXPOSE_ERROR_DETAILS, MAX_WORKERS
from compressor.conversion.codec import PillowCodec
from compressor.conversion.models import (
    CodecError,
    ConversionRequest,
    ConversionResult,
    FormatTag,
    NoFilesProvided,
    Outcome,
)
from compressor.store import ResultStore

logger = logging.getLogger("compressor.service")

GENERIC_ERROR_MESSAGE = "Conversion failed"


def new_batch_id() -> str:
    return uuid.uuid4().hex[:12]


class Codec(Protocol):
    def encode(self, data: bytes, fmt: FormatTag, quality: int) -> bytes:
        ...


class ConversionWorker:
    """Converts one request. Never raises: every failure ends up in the result outcome."""

    def __init__(self, codec: Optional[Codec] = None, expose_error_details: bool = EXPOSE_ERROR_DETAILS):
        self.codec = codec or PillowCodec()
        self.expose_error_details = expose_error_details

    def convert(self, req: ConversionRequest) -> ConversionResult:
        try:
            return self._convert(req)
        finally:
            self.cleanup_staging(req)

    def _convert(self, req: ConversionRequest) -> ConversionResult:
        original_size = req.original_size
        result = ConversionResult(
            original_name=req.original_name,
            output_name=req.output_name,
            original_size=original_size,
            output_size=0,
            outcome=Outcome.FAILED,
        )
        fmt = FormatTag.parse(req.target_format)
        if fmt is None:
            logger.warning("Unsupported format requested for %s: %s", req.original_name, req.target_format)
            result.outcome = Outcome.UNSUPPORTED_FORMAT
            result.message = f"Unsupported format: {req.target_format}"
            return result

        try:
            data = req.read_input()
            payload = self.codec.encode(data, fmt, req.quality)
        except (CodecError, OSError) as e:
            logger.error("Error processing %s: %s", req.original_name, e)
            result.message = self._error_message(e)
            return result
        except Exception as e:
            logger.exception("Unexpected error processing %s: %s", req.original_name, e)
            result.message = self._error_message(e)
            return result

        result.outcome = Outcome.COMPLETE
        result.output_size = len(payload)
        result.payload = payload
        logger.info(
            "Converted %s -> %s (%s -> %s bytes)",
            req.original_name, result.output_name, original_size, result.output_size,
        )
        return result

    def _error_message(self, exc: Exception) -> str:
        if not self.expose_error_details:
            return GENERIC_ERROR_MESSAGE
        return str(exc) or type(exc).__name__

    @staticmethod
    def cleanup_staging(req: ConversionRequest) -> None:
        """Remove the staged upload. Failures are logged and do not affect the result."""
        if req.staging_path is None:
            return
        try:
            req.staging_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove staged upload %s: %s", req.staging_path, e)


class BatchOrchestrator:
    """Runs a batch of conversions in parallel and publishes successes into the result store."""

    def __init__(
        self,
        store: ResultStore,
        worker: Optional[ConversionWorker] = None,
        max_workers: int = MAX_WORKERS,
        item_timeout: Optional[float] = CONVERSION_TIMEOUT_SECONDS or None,
    ):
        self.store = store
        self.worker = worker or ConversionWorker()
        self.item_timeout = item_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="convert")
        logger.info("BatchOrchestrator initialized with max_workers=%s item_timeout=%s", max_workers, item_timeout)

    def run_batch(
        self,
        requests: Sequence[ConversionRequest],
        batch_id: Optional[str] = None,
    ) -> list[ConversionResult]:
        """Convert all requests. Results are returned in input order, not completion order."""
        if not requests:
            raise NoFilesProvided()
        batch_id = batch_id or new_batch_id()
        self.store.clear()
        logger.info("Batch %s: converting %s file(s)", batch_id, len(requests))

        futures = [self._executor.submit(self.worker.convert, req) for req in requests]
        results = [self._collect(req, future) for req, future in zip(requests, futures)]

        self.store.publish(
            (r.output_name, r.payload) for r in results if r.is_complete and r.payload is not None
        )
        completed = sum(1 for r in results if r.is_complete)
        logger.info("Batch %s finished: %s/%s complete", batch_id, completed, len(results))
        return results

    def _collect(self, req: ConversionRequest, future: Future) -> ConversionResult:
        try:
            return future.result(timeout=self.item_timeout)
        except FutureTimeoutError:
            original_size = req.original_size
            if future.cancel():
                # never started, so the worker will not clean up after it
                self.worker.cleanup_staging(req)
            logger.error("Conversion of %s timed out after %ss", req.original_name, self.item_timeout)
            return ConversionResult(
                original_name=req.original_name,
                output_name=req.output_name,
                original_size=original_size,
                output_size=0,
                outcome=Outcome.FAILED,
                message=f"Conversion timed out after {self.item_timeout:g}s",
            )

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
