"""FastAPI application factory and route setup for osslite."""

import email.utils
import json
import logging
import secrets
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError

from osslite import metrics
from osslite.auth import OSSAuthenticator, check_anonymous_access, split_path
from osslite.config import OSSLiteConfig
from osslite.errors import ErrorCode, NotImplementedOSSError, OSSError
from osslite.handlers.base import KeyLocks, derive_owner_id
from osslite.handlers.bucket import BucketHandler
from osslite.handlers.multipart import MultipartHandler
from osslite.handlers.object import ObjectHandler
from osslite.metadata import create_metadata_store
from osslite.storage.backend import StorageBackend
from osslite.storage.local import LocalStorageBackend
from osslite.storage.memory import MemoryStorageBackend
from osslite.xml_utils import render_error, xml_response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-oss-request-id"

# Paths that skip auth and per-request logging
_OPS_PATHS = frozenset({"/health", "/healthz", "/readyz", "/metrics"})

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus collectors in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: OSSLiteConfig) -> FastAPI:
    """Create and configure the osslite FastAPI application.

    The lifespan hook opens the metadata store and storage backend, seeds
    the configured credential and the object/bucket gauges, and closes
    both on shutdown. Every startup is a recovery: the local backend
    removes orphaned temp files when it initializes.

    Args:
        config: The loaded osslite configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        metadata = create_metadata_store(config.metadata)
        await metadata.init_db()
        app.state.metadata = metadata

        storage = _create_storage_backend(config)
        await storage.init()
        app.state.storage = storage

        access_key = config.auth.access_key
        await metadata.put_credential(
            access_key_id=access_key,
            secret_key=config.auth.secret_key,
            owner_id=derive_owner_id(access_key),
            display_name=access_key,
        )
        app.state.authenticator = OSSAuthenticator(
            metadata=metadata,
            clock_skew_seconds=config.auth.clock_skew_seconds,
        )

        await _seed_gauges(metadata)

        logger.info("Metadata store initialized: %s", config.metadata.engine)
        logger.info("Storage backend initialized: %s", config.storage.backend)

        yield

        await storage.close()
        await metadata.close()
        logger.info("Metadata store and storage backend closed")

    app = FastAPI(
        title="osslite OSS API",
        version="0.1.0",
        lifespan=lifespan,
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config
    app.state.object_locks = KeyLocks()

    _register_exception_handlers(app)
    _register_middleware(app, config)

    # /metrics must be registered before the /{bucket} catch-all.
    if config.observability.metrics:
        metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="osslite").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


def _create_storage_backend(config: OSSLiteConfig) -> StorageBackend:
    """Create the storage backend named by ``storage.backend``.

    Raises:
        ValueError: If the backend is unknown.
    """
    backend = config.storage.backend
    if backend == "local":
        return LocalStorageBackend(config.storage.local_root)
    elif backend == "memory":
        return MemoryStorageBackend(max_size_bytes=config.storage.memory_max_size_bytes)
    else:
        raise ValueError(f"Unknown storage backend: {backend}")


async def _seed_gauges(metadata) -> None:
    if metrics.buckets_total is None or metrics.objects_total is None:
        return
    buckets = await metadata.list_buckets()
    metrics.buckets_total.set(len(buckets))
    total = 0
    for bucket in buckets:
        total += await metadata.count_objects(bucket["name"])
    metrics.objects_total.set(total)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def error_response(request: Request, exc: OSSError) -> Response:
    """Render an OSSError as an XML error response.

    HEAD responses carry the status and headers but no body.
    """
    request_id = getattr(request.state, "request_id", "")
    if request.method == "HEAD":
        return Response(status_code=exc.http_status, headers=exc.headers)

    body = render_error(
        code=exc.code,
        message=exc.message,
        request_id=request_id,
        host_id=request.url.hostname or "",
        extra_fields=exc.extra_fields,
    )
    return xml_response(body, status=exc.http_status, headers=exc.headers)


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(OSSError)
    async def oss_error_handler(request: Request, exc: OSSError) -> Response:
        return error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI validation errors to an InvalidArgument XML error."""
        messages = []
        for err in exc.errors():
            loc = " -> ".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", "Invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        combined = "; ".join(messages) or "Invalid request parameters"
        return error_response(request, OSSError(ErrorCode.INVALID_ARGUMENT, combined))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        return error_response(
            request,
            OSSError(
                ErrorCode.INTERNAL_ERROR,
                "We encountered an internal error. Please try again.",
                http_status=500,
            ),
        )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI, config: OSSLiteConfig) -> None:
    """Register middleware on the FastAPI app.

    The last registered middleware runs first, so the execution order is
    common_headers -> auth -> handler and auth failures still carry a
    request id.
    """

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next) -> Response:
        """OSS V1 signature authentication.

        Signed requests are verified and their identity is stored on
        ``request.state.identity``. Unsigned requests are admitted only
        when the target ACL allows anonymous access. FastAPI exception
        handlers do not see exceptions raised here, so errors are
        rendered directly.
        """
        cfg: OSSLiteConfig = app.state.config
        if request.url.path in _OPS_PATHS or not cfg.auth.enabled:
            return await call_next(request)

        metadata = getattr(app.state, "metadata", None)
        if metadata is None:
            return await call_next(request)

        try:
            if "authorization" in request.headers:
                authenticator = getattr(app.state, "authenticator", None)
                if authenticator is None:
                    authenticator = OSSAuthenticator(metadata, cfg.auth.clock_skew_seconds)
                request.state.identity = await authenticator.verify_request(request)
            else:
                bucket, key = split_path(request.scope["path"])
                await check_anonymous_access(
                    metadata,
                    request.method,
                    bucket,
                    key,
                    request.query_params,
                    is_copy="x-oss-copy-source" in request.headers,
                )
        except OSSError as exc:
            return error_response(request, exc)

        return await call_next(request)

    @app.middleware("http")
    async def common_headers_middleware(request: Request, call_next) -> Response:
        """Add the request id, Date and Server headers to every response.

        Also counts the operation outcome and writes one log line per
        request (ops endpoints excluded).
        """
        request_id = secrets.token_hex(12).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["Date"] = email.utils.formatdate(usegmt=True)
        response.headers["Server"] = "osslite"

        operation = getattr(request.state, "operation", None)
        if operation and metrics.oss_operations_total is not None:
            status = "success" if response.status_code < 400 else "error"
            metrics.oss_operations_total.labels(operation=operation, status=status).inc()

        if request.url.path not in _OPS_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Health check helpers
# ---------------------------------------------------------------------------


async def _check_metadata(app: FastAPI) -> dict:
    """Probe the metadata store.

    Runs ``SELECT 1`` on SQLite connections, otherwise lists buckets.
    """
    metadata = getattr(app.state, "metadata", None)
    if metadata is None:
        return {"status": "error", "error": "metadata store not initialized", "latency_ms": 0}
    try:
        start = time.monotonic()
        db = getattr(metadata, "_db", None)
        if db is not None:
            async with db.execute("SELECT 1") as cursor:
                await cursor.fetchone()
        else:
            await metadata.list_buckets()
        latency = round((time.monotonic() - start) * 1000, 1)
        return {"status": "ok", "latency_ms": latency}
    except Exception as exc:
        return {"status": "error", "error": str(exc), "latency_ms": 0}


async def _check_storage(app: FastAPI) -> dict:
    """Probe the storage backend (root directory exists, when it has one)."""
    storage = getattr(app.state, "storage", None)
    if storage is None:
        return {"status": "error", "error": "storage backend not initialized", "latency_ms": 0}
    start = time.monotonic()
    root = getattr(storage, "root", None)
    if root is not None and not Path(root).is_dir():
        return {
            "status": "error",
            "error": "data directory not found",
            "latency_ms": round((time.monotonic() - start) * 1000, 1),
        }
    return {"status": "ok", "latency_ms": round((time.monotonic() - start) * 1000, 1)}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: OSSLiteConfig) -> None:
    """Register the ops endpoints and all OSS routes.

    Each OSS route tags ``request.state.operation`` before dispatching so
    the middleware can count outcomes per operation.
    """
    bucket_handler = BucketHandler(app)
    object_handler = ObjectHandler(app)
    multipart_handler = MultipartHandler(app)

    health_check_enabled = config.observability.health_check

    @app.get("/health")
    async def health_check(request: Request) -> Response:
        """Return health status.

        With health checks enabled, probes metadata and storage and
        reports per-component results; otherwise a static ok.
        """
        if not health_check_enabled:
            return Response(content='{"status":"ok"}', media_type="application/json")

        meta_check = await _check_metadata(app)
        storage_check = await _check_storage(app)
        all_ok = meta_check["status"] == "ok" and storage_check["status"] == "ok"

        body = json.dumps(
            {
                "status": "ok" if all_ok else "degraded",
                "checks": {"metadata": meta_check, "storage": storage_check},
            }
        )
        return Response(
            content=body,
            status_code=200 if all_ok else 503,
            media_type="application/json",
        )

    if health_check_enabled:

        @app.get("/healthz")
        async def healthz() -> Response:
            """Liveness probe."""
            return Response(status_code=200)

        @app.get("/readyz")
        async def readyz() -> Response:
            """Readiness probe: 200 if metadata and storage answer, else 503."""
            meta_check = await _check_metadata(app)
            storage_check = await _check_storage(app)
            all_ok = meta_check["status"] == "ok" and storage_check["status"] == "ok"
            return Response(status_code=200 if all_ok else 503)

    def tag(request: Request, operation: str) -> None:
        request.state.operation = operation

    # Service-level
    @app.get("/")
    async def handle_service_get(request: Request) -> Response:
        """Handle GET / -- ListBuckets."""
        tag(request, "ListBuckets")
        return await bucket_handler.list_buckets(request)

    # Bucket-level routes
    @app.put("/{bucket}")
    async def handle_bucket_put(bucket: str, request: Request) -> Response:
        """Handle PUT /{bucket} -- PutBucketAcl or CreateBucket."""
        if "acl" in request.query_params:
            tag(request, "PutBucketAcl")
            return await bucket_handler.put_bucket_acl(request, bucket)
        tag(request, "CreateBucket")
        return await bucket_handler.create_bucket(request, bucket)

    @app.delete("/{bucket}")
    async def handle_bucket_delete(bucket: str, request: Request) -> Response:
        """Handle DELETE /{bucket} -- DeleteBucket."""
        tag(request, "DeleteBucket")
        return await bucket_handler.delete_bucket(request, bucket)

    @app.get("/{bucket}")
    async def handle_bucket_get(bucket: str, request: Request) -> Response:
        """Handle GET /{bucket}.

        ?acl -> GetBucketAcl
        ?uploads -> ListMultipartUploads
        otherwise -> ListObjects
        """
        if "acl" in request.query_params:
            tag(request, "GetBucketAcl")
            return await bucket_handler.get_bucket_acl(request, bucket)
        if "uploads" in request.query_params:
            tag(request, "ListMultipartUploads")
            return await multipart_handler.list_uploads(request, bucket)
        tag(request, "ListObjects")
        return await object_handler.list_objects(request, bucket)

    # Object-level routes (key can contain slashes via {key:path})
    @app.put("/{bucket}/{key:path}")
    async def handle_object_put(bucket: str, key: str, request: Request) -> Response:
        """Handle PUT /{bucket}/{key}.

        ?uploadId&partNumber -> UploadPart
        ?acl -> PutObjectAcl
        x-oss-copy-source header -> CopyObject
        otherwise -> PutObject
        """
        if "uploadId" in request.query_params and "partNumber" in request.query_params:
            tag(request, "UploadPart")
            return await multipart_handler.upload_part(request, bucket, key)
        if "acl" in request.query_params:
            tag(request, "PutObjectAcl")
            return await object_handler.put_object_acl(request, bucket, key)
        if "x-oss-copy-source" in request.headers:
            tag(request, "CopyObject")
            return await object_handler.copy_object(request, bucket, key)
        tag(request, "PutObject")
        return await object_handler.put_object(request, bucket, key)

    @app.head("/{bucket}/{key:path}")
    async def handle_object_head(bucket: str, key: str, request: Request) -> Response:
        """Handle HEAD /{bucket}/{key} -- HeadObject."""
        tag(request, "HeadObject")
        return await object_handler.head_object(request, bucket, key)

    @app.get("/{bucket}/{key:path}")
    async def handle_object_get(bucket: str, key: str, request: Request) -> Response:
        """Handle GET /{bucket}/{key}.

        ?acl -> GetObjectAcl
        ?uploadId -> ListParts
        otherwise -> GetObject
        """
        if "acl" in request.query_params:
            tag(request, "GetObjectAcl")
            return await object_handler.get_object_acl(request, bucket, key)
        if "uploadId" in request.query_params:
            tag(request, "ListParts")
            return await multipart_handler.list_parts(request, bucket, key)
        tag(request, "GetObject")
        return await object_handler.get_object(request, bucket, key)

    @app.delete("/{bucket}/{key:path}")
    async def handle_object_delete(bucket: str, key: str, request: Request) -> Response:
        """Handle DELETE /{bucket}/{key}.

        ?uploadId -> AbortMultipartUpload
        otherwise -> DeleteObject
        """
        if "uploadId" in request.query_params:
            tag(request, "AbortMultipartUpload")
            return await multipart_handler.abort_multipart_upload(request, bucket, key)
        tag(request, "DeleteObject")
        return await object_handler.delete_object(request, bucket, key)

    @app.post("/{bucket}/{key:path}")
    async def handle_object_post(bucket: str, key: str, request: Request) -> Response:
        """Handle POST /{bucket}/{key}.

        ?append -> AppendObject
        ?uploads -> InitiateMultipartUpload
        ?uploadId -> CompleteMultipartUpload
        """
        if "append" in request.query_params:
            tag(request, "AppendObject")
            return await object_handler.append_object(request, bucket, key)
        if "uploads" in request.query_params:
            tag(request, "InitiateMultipartUpload")
            return await multipart_handler.initiate_multipart_upload(request, bucket, key)
        if "uploadId" in request.query_params:
            tag(request, "CompleteMultipartUpload")
            return await multipart_handler.complete_multipart_upload(request, bucket, key)
        raise NotImplementedOSSError()
