"""ASGI application for Smart Receipts."""
# mypy: ignore-errors

from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Optional
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Body, Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from smart_receipts import __version__, metrics
from smart_receipts.config import Settings, get_settings
from smart_receipts.db.repository import get_database
from smart_receipts.duplicates import DuplicateDetector, format_duplicate_message
from smart_receipts.embeddings.client import EmbeddingError, build_embedder
from smart_receipts.embeddings.indexer import EmbeddingIndexer
from smart_receipts.ingest.service import DEFAULT_PROCESSING_METHOD, ReceiptGroupingService
from smart_receipts.library.filters import LibraryFilters, apply_filters_and_sort
from smart_receipts.library.stats import summarize_receipts
from smart_receipts.logging_utils import configure_logging as configure_app_logging
from smart_receipts.models.receipt import (
    DuplicateCheckResult,
    GroupedReceiptView,
    ReceiptDeleteResult,
    ReceiptRow,
    ReceiptSaveResult,
    ReceiptSummary,
    ReceiptUpdate,
    parse_extracted_receipt,
)
from smart_receipts.models.search import BackfillResult, EmbeddingStatus
from smart_receipts.search.service import SmartSearchService
from smart_receipts.search.tiers import SearchFailedError
from smart_receipts.server import deps
from smart_receipts.storage.images import ImageStorage

logger = logging.getLogger(__name__)

MAX_IMAGE_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB
_STATUS_FOR_ERROR_KIND = {
    "validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "not_found": status.HTTP_404_NOT_FOUND,
    "store": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _json_safe(value: Any) -> Any:
    """Convert non-serializable values into JSON-safe representations."""

    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value.hex()
    if isinstance(value, (list, tuple)):
        return [_json_safe(entry) for entry in value]
    if isinstance(value, dict):
        return {key: _json_safe(sub_value) for key, sub_value in value.items()}
    return repr(value)


def _normalize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Ensure validation error payloads can be serialized to JSON."""

    return [{key: _json_safe(value) for key, value in error.items()} for error in errors]


def _configure_logging(settings: Settings) -> None:
    secrets = [settings.api_token or "", settings.embedding_api_key or "", settings.signing_secret]
    configure_app_logging(settings.log_level, settings.log_format, secrets)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _raise_for_error_kind(error_kind: Optional[str], message: Optional[str]) -> None:
    status_code = _STATUS_FOR_ERROR_KIND.get(error_kind or "", status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise HTTPException(status_code=status_code, detail=message or "Request failed")


def _parse_receipt_payload(extracted: dict[str, Any]):
    try:
        return parse_extracted_receipt(extracted)
    except ValidationError as exc:
        logger.warning("Invalid extracted receipt errors=%s", exc.errors())
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=_normalize_validation_errors(exc.errors()),
        ) from exc


def run_scheduled_backfill() -> BackfillResult:
    """Embed one batch of rows that are still missing a vector."""

    settings = get_settings()
    indexer = EmbeddingIndexer(get_database(), build_embedder(settings))
    result = indexer.backfill(batch_size=settings.embedding_backfill_batch_size)
    if result.processed:
        logger.info(
            "Embedding backfill processed=%s successful=%s remaining=%s",
            result.processed,
            result.successful,
            result.remaining,
        )
    return result


def create_app() -> FastAPI:
    """Create and configure a FastAPI application instance."""

    settings = get_settings()
    _configure_logging(settings)

    application = FastAPI(title="Smart Receipts", version=__version__)
    application.state.embedding_queue = None

    @application.on_event("shutdown")
    async def stop_embedding_queue() -> None:
        queue = getattr(application.state, "embedding_queue", None)
        if queue is not None:
            queue.stop()

    if settings.embedding_backfill_enabled:
        backfill_scheduler = AsyncIOScheduler()
        backfill_scheduler.add_job(
            run_scheduled_backfill,
            "interval",
            seconds=settings.embedding_backfill_interval,
            max_instances=1,
            coalesce=True,
        )

        @application.on_event("startup")
        async def start_backfill_scheduler() -> None:
            backfill_scheduler.start()

        @application.on_event("shutdown")
        async def stop_backfill_scheduler() -> None:
            backfill_scheduler.shutdown(wait=False)

    logger.debug("Application created with log level %s", settings.log_level)

    if settings.log_requests:
        access_logger = logging.getLogger("smart_receipts.access")

        @application.middleware("http")
        async def log_request_response(request: Request, call_next):
            """Log request/response details without leaking sensitive data."""

            request_id = request.headers.get("X-Request-ID") or uuid4().hex
            request.state.request_id = request_id
            start = perf_counter()
            path = request.url.path
            method = request.method
            try:
                response: Response = await call_next(request)
            except Exception:
                duration_ms = (perf_counter() - start) * 1000
                access_logger.exception(
                    "HTTP %s %s status=500 duration_ms=%.2f",
                    method,
                    path,
                    duration_ms,
                    extra={"request_id": request_id},
                )
                metrics.REQUEST_COUNT.labels(method=method, path=path, status="500").inc()
                metrics.REQUEST_LATENCY.labels(method=method, path=path).observe(duration_ms / 1000.0)
                raise

            duration_ms = (perf_counter() - start) * 1000
            response.headers.setdefault("X-Request-ID", request_id)
            access_logger.info(
                "HTTP %s %s status=%s duration_ms=%.2f",
                method,
                path,
                response.status_code,
                duration_ms,
                extra={"request_id": request_id},
            )
            try:
                metrics.REQUEST_COUNT.labels(
                    method=method,
                    path=path,
                    status=str(response.status_code),
                ).inc()
                metrics.REQUEST_LATENCY.labels(method=method, path=path).observe(duration_ms / 1000.0)
            except Exception:  # pragma: no cover - metrics best effort
                pass
            return response

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        body_preview: str | None = None
        try:
            raw_body = await request.body()
            if raw_body:
                decoded = raw_body.decode("utf-8", errors="replace")
                if len(decoded) > 2048:
                    decoded = decoded[:2048] + "...(truncated)"
                body_preview = decoded
        except Exception:  # pragma: no cover - defensive logging
            body_preview = "<unable to read body>"

        log_kwargs: dict[str, Any] = {}
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            log_kwargs["extra"] = {"request_id": request_id}

        logger.warning(
            "Validation error on %s %s: %s | body=%s",
            request.method,
            request.url.path,
            exc.errors(),
            body_preview,
            **log_kwargs,
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": _normalize_validation_errors(exc.errors())},
        )

    @application.post(
        "/receipts",
        response_model=ReceiptSaveResult,
        status_code=status.HTTP_201_CREATED,
        summary="Save an extracted receipt",
    )
    def receipts_save(
        payload: SaveReceiptRequest,
        auth: None = Depends(deps.require_api_token),
        service: ReceiptGroupingService = Depends(deps.get_grouping_service),
    ) -> ReceiptSaveResult:
        receipt = _parse_receipt_payload(payload.extracted)
        result = service.save_receipt(
            receipt,
            payload.user_id,
            image_url=payload.image_url,
            processing_method=payload.processing_method,
            ocr_confidence=payload.ocr_confidence,
            extracted_text=payload.extracted_text,
        )
        if not result.success:
            _raise_for_error_kind(result.error_kind, result.error)
        return result

    @application.get(
        "/receipts",
        response_model=list[GroupedReceiptView],
        summary="List receipts grouped by purchase",
    )
    def receipts_grouped(
        user_id: str = Query(..., min_length=1),
        service: ReceiptGroupingService = Depends(deps.get_grouping_service),
    ):
        return service.get_grouped_receipts(user_id)

    @application.get(
        "/receipts/library",
        response_model=list[ReceiptRow],
        summary="Filter and sort a user's receipts",
    )
    def receipts_library(
        user_id: str = Query(..., min_length=1),
        brand: Optional[list[str]] = Query(default=None),
        category: Optional[str] = Query(default=None),
        warranty_status: Optional[str] = Query(default=None),
        min_price: Optional[float] = Query(default=None),
        max_price: Optional[float] = Query(default=None),
        sort: Optional[str] = Query(default=None),
        service: ReceiptGroupingService = Depends(deps.get_grouping_service),
    ) -> list[ReceiptRow]:
        filters = LibraryFilters(
            brands=brand or [],
            category=category,
            warranty_status=warranty_status,
            min_price=min_price,
            max_price=max_price,
        )
        try:
            return apply_filters_and_sort(service.list_receipts(user_id), filters, sort)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    @application.get(
        "/receipts/summary",
        response_model=ReceiptSummary,
        summary="Dashboard totals and warranty counts",
    )
    def receipts_summary(
        user_id: str = Query(..., min_length=1),
        service: ReceiptGroupingService = Depends(deps.get_grouping_service),
    ) -> ReceiptSummary:
        return summarize_receipts(service.list_receipts(user_id))

    @application.post(
        "/receipts/duplicates",
        summary="Check an extracted receipt against saved receipts",
    )
    def receipts_duplicates(
        payload: DuplicateCheckRequest,
        detector: DuplicateDetector = Depends(deps.get_duplicate_detector),
    ) -> dict[str, Any]:
        receipt = _parse_receipt_payload(payload.extracted)
        result: DuplicateCheckResult = detector.check(receipt, payload.user_id)
        return {**result.model_dump(mode="json"), "message": format_duplicate_message(result)}

    @application.post(
        "/receipts/images",
        status_code=status.HTTP_201_CREATED,
        summary="Upload a receipt image",
    )
    async def receipts_image_upload(
        user_id: str = Form(..., min_length=1),
        file: UploadFile = File(...),
        auth: None = Depends(deps.require_api_token),
        storage: ImageStorage = Depends(deps.get_image_storage),
    ) -> dict[str, Any]:
        content = await file.read()
        if not content:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded file is empty.")
        if len(content) > MAX_IMAGE_UPLOAD_BYTES:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"Image exceeds {MAX_IMAGE_UPLOAD_BYTES // (1024 * 1024)} MiB limit.",
            )
        try:
            stored = storage.upload(user_id, content, file.filename)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return {"path": stored.path, "url": stored.url, "expires_at": stored.expires_at.isoformat()}

    @application.post(
        "/receipts/images/sign",
        summary="Issue a fresh signed URL for a stored image",
    )
    def receipts_image_sign(
        payload: SignImageRequest,
        auth: None = Depends(deps.require_api_token),
        storage: ImageStorage = Depends(deps.get_image_storage),
    ) -> dict[str, Any]:
        path = payload.path or ImageStorage.path_from_url(payload.url)
        if not path:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Could not extract file path from URL",
            )
        url, expires_at = storage.sign(path)
        return {"path": path, "url": url, "expires_at": expires_at.isoformat()}

    @application.get(
        "/receipts/images/{path:path}",
        summary="Download a receipt image through a signed URL",
    )
    def receipts_image_download(
        path: str,
        expires: int = Query(...),
        signature: str = Query(..., min_length=1),
        storage: ImageStorage = Depends(deps.get_image_storage),
    ) -> Response:
        if not storage.verify(path, expires, signature):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired signature")
        try:
            content = storage.read(path)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return Response(content=content, media_type="application/octet-stream")

    @application.patch(
        "/receipts/{row_id}",
        response_model=ReceiptRow,
        summary="Edit one receipt row",
    )
    def receipts_update(
        row_id: str,
        patch: ReceiptUpdate,
        user_id: str = Query(..., min_length=1),
        auth: None = Depends(deps.require_api_token),
        service: ReceiptGroupingService = Depends(deps.get_grouping_service),
    ) -> ReceiptRow:
        result = service.update_receipt(user_id, row_id, patch)
        if result.receipt is None:
            _raise_for_error_kind(result.error_kind, result.error)
        return result.receipt

    @application.delete(
        "/receipts/{row_id}",
        response_model=ReceiptDeleteResult,
        summary="Delete one receipt row",
    )
    def receipts_delete(
        row_id: str,
        user_id: str = Query(..., min_length=1),
        auth: None = Depends(deps.require_api_token),
        service: ReceiptGroupingService = Depends(deps.get_grouping_service),
    ) -> ReceiptDeleteResult:
        result = service.delete_receipt(user_id, row_id=row_id)
        if not result.success:
            _raise_for_error_kind(result.error_kind, result.error)
        return result

    @application.delete(
        "/receipt-groups/{group_id}",
        response_model=ReceiptDeleteResult,
        summary="Delete every row of a multi-product receipt",
    )
    def receipt_groups_delete(
        group_id: str,
        user_id: str = Query(..., min_length=1),
        auth: None = Depends(deps.require_api_token),
        service: ReceiptGroupingService = Depends(deps.get_grouping_service),
    ) -> ReceiptDeleteResult:
        result = service.delete_receipt(user_id, group_id=group_id)
        if not result.success:
            _raise_for_error_kind(result.error_kind, result.error)
        return result

    @application.post("/search", summary="Smart search over a user's receipts")
    def smart_search(
        payload: Optional[dict[str, Any]] = Body(default=None),
        settings: Settings = Depends(get_settings),
        service: SmartSearchService = Depends(deps.get_search_service),
    ) -> JSONResponse:
        payload = payload or {}
        query = payload.get("query")
        user_id = payload.get("userId")
        if not isinstance(query, str) or not query.strip() or not isinstance(user_id, str) or not user_id:
            return _error_response(status.HTTP_400_BAD_REQUEST, "Missing query or userId")
        try:
            raw_limit = payload.get("limit")
            raw_threshold = payload.get("threshold")
            limit = settings.search_limit if raw_limit is None else int(raw_limit)
            threshold = settings.search_threshold if raw_threshold is None else float(raw_threshold)
        except (TypeError, ValueError):
            return _error_response(status.HTTP_400_BAD_REQUEST, "Invalid limit or threshold")

        try:
            response = service.search(query, user_id, limit=limit, threshold=threshold)
        except SearchFailedError as exc:
            logger.error("Smart search failed: %s", exc, extra={"user_id": user_id})
            return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        return JSONResponse(content=response.model_dump(mode="json", by_alias=True, exclude_none=True))

    @application.post("/embeddings", summary="Generate an embedding for receipt content")
    def embeddings_generate(
        payload: Optional[dict[str, Any]] = Body(default=None),
        auth: None = Depends(deps.require_api_token),
        indexer: EmbeddingIndexer = Depends(deps.get_embedding_indexer),
    ) -> JSONResponse:
        payload = payload or {}
        content = payload.get("content")
        receipt_id = payload.get("receiptId")
        if not isinstance(content, str) or not content.strip():
            return _error_response(status.HTTP_400_BAD_REQUEST, "Content is required")
        try:
            vector = indexer.generate_for_content(content, receipt_id)
        except EmbeddingError as exc:
            logger.error("Embedding generation failed: %s", exc)
            return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        except ValueError as exc:
            return _error_response(status.HTTP_404_NOT_FOUND, str(exc))
        return JSONResponse(content={"embedding": vector})

    @application.post(
        "/embeddings/backfill",
        response_model=BackfillResult,
        summary="Embed a batch of receipts that are missing a vector",
    )
    def embeddings_backfill(
        payload: Optional[BackfillRequest] = None,
        auth: None = Depends(deps.require_api_token),
        indexer: EmbeddingIndexer = Depends(deps.get_embedding_indexer),
    ) -> BackfillResult:
        payload = payload or BackfillRequest()
        return indexer.backfill(user_id=payload.user_id, batch_size=payload.batch_size)

    @application.get(
        "/embeddings/status",
        response_model=EmbeddingStatus,
        summary="Embedding coverage for a user or the whole store",
    )
    def embeddings_status(
        user_id: Optional[str] = Query(default=None),
        indexer: EmbeddingIndexer = Depends(deps.get_embedding_indexer),
    ) -> EmbeddingStatus:
        return indexer.status(user_id=user_id)

    @application.get("/metrics", include_in_schema=False)
    def metrics_endpoint() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    return application


class SaveReceiptRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)
    extracted: dict[str, Any]
    image_url: Optional[str] = None
    processing_method: str = Field(default=DEFAULT_PROCESSING_METHOD, max_length=64)
    ocr_confidence: Optional[float] = Field(default=None, ge=0, le=1)
    extracted_text: Optional[str] = None


class DuplicateCheckRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=255)
    extracted: dict[str, Any]


class SignImageRequest(BaseModel):
    path: Optional[str] = None
    url: Optional[str] = None


class BackfillRequest(BaseModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    batch_size: int = Field(default=5, ge=1, le=100, alias="batchSize")

    model_config = ConfigDict(populate_by_name=True)


app = create_app()

__all__ = ["app", "create_app", "run_scheduled_backfill"]
