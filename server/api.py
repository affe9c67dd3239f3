"""
Server - HTTP API.

============================================================
PURPOSE
============================================================
aiohttp application exposing the metric store.

MIDDLEWARES (outer -> inner):
1. access log:  method, path, status, duration, size
2. integrity:   gunzip + HashSHA256 check of POST bodies,
                signing and gzip of responses
3. errors:      typed exceptions -> 400 / 404 / 500

============================================================
ROUTES
============================================================
POST /update/{type}/{name}/{value}   URL form update
GET  /value/{type}/{name}            plain-text value
GET  /                               HTML list of all metrics
POST /update/                        single JSON metric
POST /value/                         JSON lookup
POST /updates/                       JSON batch
GET  /ping                           store liveness

============================================================
"""

import asyncio
import functools
import html
import json
import logging
import time
from typing import Any, Callable, Dict, TypeVar

from aiohttp import web

from core.exceptions import (
    IntegrityError,
    MetricNotFoundError,
    MetricValidationError,
    MetricsException,
)
from core.models import (
    Counter,
    Gauge,
    MetricKind,
    MetricValue,
    batch_from_wire,
    batch_to_wire,
    metric_from_wire,
    metric_to_wire,
    parse_value,
)
from storage.repositories.base import MetricRepository
from transport.codec import (
    ACCEPT_ENCODING_HEADER,
    CONTENT_ENCODING_HEADER,
    GZIP_ENCODING,
    SIGNATURE_HEADER,
    IntegrityCodec,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


# Decoded request body stashed by the integrity middleware
BODY_KEY = "metrics_body"

JSON_CONTENT_TYPE = "application/json"
DEFAULT_PING_TIMEOUT = 3.0


# ============================================================
# HELPERS
# ============================================================

def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data),
        status=status,
        content_type=JSON_CONTENT_TYPE,
    )


def format_value(value: MetricValue) -> str:
    """Shortest text form of a value: 42, 3.14, 1e-07."""
    if isinstance(value, float):
        text = repr(value)
        return text[:-2] if text.endswith(".0") else text
    return str(value)


def _require_json(request: web.Request) -> None:
    if request.content_type != JSON_CONTENT_TYPE:
        raise web.HTTPBadRequest(text="Content-Type must be application/json")


def _read_json(request: web.Request) -> Any:
    body = request.get(BODY_KEY, b"")
    try:
        return json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise MetricValidationError("Invalid JSON", cause=e) from e


def _require_name(obj: Any) -> None:
    """The single-metric JSON endpoints answer a missing id with 404."""
    if isinstance(obj, dict) and not obj.get("id"):
        raise web.HTTPNotFound(text="Metric name is required")


# ============================================================
# MIDDLEWARES
# ============================================================

@web.middleware
async def access_log_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    """Log one line per request."""
    started = time.monotonic()
    try:
        response = await handler(request)
    except web.HTTPException as e:
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(f"{request.method} {request.path} -> {e.status} in {elapsed_ms:.1f}ms")
        raise

    elapsed_ms = (time.monotonic() - started) * 1000
    body = getattr(response, "body", None)
    size = len(body) if isinstance(body, (bytes, bytearray)) else 0
    logger.info(
        f"{request.method} {request.path} -> {response.status} "
        f"in {elapsed_ms:.1f}ms, {size} bytes"
    )
    return response


def create_integrity_middleware(codec: IntegrityCodec) -> Callable:
    """
    Build the middleware that unwraps and checks request bodies.

    POST bodies are gunzipped when Content-Encoding says gzip and,
    with a key configured, the HashSHA256 header is checked against
    the decompressed bytes. Responses are signed the same way and
    gzip-compressed when the client accepts it.
    """

    @web.middleware
    async def integrity_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "POST":
            raw = await request.read()
            compressed = GZIP_ENCODING in request.headers.get(CONTENT_ENCODING_HEADER, "").lower()
            try:
                data = codec.decompress(raw) if compressed else raw
                codec.verify(data, request.headers.get(SIGNATURE_HEADER))
            except IntegrityError as e:
                logger.warning(f"Rejected {request.method} {request.path}: {e}")
                raise web.HTTPBadRequest(text=e.message) from e
            request[BODY_KEY] = data

        response = await handler(request)

        if isinstance(response, web.Response):
            body = response.body
            if codec.enabled and isinstance(body, (bytes, bytearray)):
                response.headers[SIGNATURE_HEADER] = codec.sign(bytes(body))
            if GZIP_ENCODING in request.headers.get(ACCEPT_ENCODING_HEADER, "").lower():
                response.enable_compression(web.ContentCoding.gzip)

        return response

    return integrity_middleware


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    """Map typed exceptions to status codes."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except MetricNotFoundError as e:
        return web.Response(text=e.message, status=404)
    except MetricValidationError as e:
        return web.Response(text=e.message, status=400)
    except MetricsException as e:
        logger.error(f"{request.method} {request.path} failed: {e}")
        return web.Response(text=e.message, status=500)
    except Exception as e:
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return web.Response(text="Internal server error", status=500)


# ============================================================
# HANDLERS
# ============================================================

class MetricsAPI:
    """
    Request handlers over a MetricRepository.

    Store calls block (locks, file I/O, database round trips), so
    each one runs in the loop's default executor.
    """

    def __init__(self, repository: MetricRepository, ping_timeout: float = DEFAULT_PING_TIMEOUT):
        self._repository = repository
        self._ping_timeout = ping_timeout

    async def _call(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _read(self, kind: MetricKind, name: str) -> MetricValue:
        if kind is MetricKind.GAUGE:
            return await self._call(self._repository.get_gauge, name)
        return await self._call(self._repository.get_counter, name)

    # --------------------------------------------------------
    # URL FORM
    # --------------------------------------------------------

    async def update_from_path(self, request: web.Request) -> web.Response:
        """
        POST /update/{type}/{name}/{value}
        """
        kind = MetricKind.parse(request.match_info["type"])
        name = request.match_info["name"]
        template = parse_value(kind, request.match_info["value"])

        if isinstance(template, Gauge):
            await self._call(self._repository.update_gauge, name, template.value)
        else:
            await self._call(self._repository.update_counter, name, template.delta)

        return web.Response(text="OK")

    async def value_from_path(self, request: web.Request) -> web.Response:
        """
        GET /value/{type}/{name}
        """
        kind = MetricKind.parse(request.match_info["type"])
        value = await self._read(kind, request.match_info["name"])
        return web.Response(text=format_value(value))

    async def index(self, request: web.Request) -> web.Response:
        """
        GET /
        """
        metrics: Dict[str, MetricValue] = await self._call(self._repository.get_all)
        items = "".join(
            f"<li>{html.escape(name)}: {html.escape(format_value(value))}</li>"
            for name, value in sorted(metrics.items())
        )
        return web.Response(
            text=f"<h1>Metrics</h1>\n<ul>\n{items}</ul>",
            content_type="text/html",
        )

    # --------------------------------------------------------
    # JSON
    # --------------------------------------------------------

    async def update_json(self, request: web.Request) -> web.Response:
        """
        POST /update/

        Applies one metric and answers with the stored value, so a
        counter comes back with its running total.
        """
        _require_json(request)
        obj = _read_json(request)
        _require_name(obj)
        metric = metric_from_wire(obj)

        if isinstance(metric, Gauge):
            await self._call(self._repository.update_gauge, metric.name, metric.value)
            stored = Gauge(metric.name, await self._call(self._repository.get_gauge, metric.name))
        else:
            await self._call(self._repository.update_counter, metric.name, metric.delta)
            stored = Counter(metric.name, await self._call(self._repository.get_counter, metric.name))

        return json_response(metric_to_wire(stored))

    async def value_json(self, request: web.Request) -> web.Response:
        """
        POST /value/
        """
        _require_json(request)
        obj = _read_json(request)
        if not isinstance(obj, dict):
            raise MetricValidationError("Metric must be a JSON object")
        _require_name(obj)

        name = obj["id"]
        if not isinstance(name, str):
            raise MetricValidationError("Metric name must be a string", field="id", actual=name)
        kind = MetricKind.parse(obj.get("type"))
        value = await self._read(kind, name)

        metric = Gauge(name, value) if kind is MetricKind.GAUGE else Counter(name, value)
        return json_response(metric_to_wire(metric))

    async def update_batch(self, request: web.Request) -> web.Response:
        """
        POST /updates/

        Every entry is decoded before the store sees the batch.
        """
        _require_json(request)
        batch = batch_from_wire(_read_json(request))
        await self._call(self._repository.update_batch, batch)
        return json_response(batch_to_wire(batch))

    # --------------------------------------------------------
    # HEALTH
    # --------------------------------------------------------

    async def ping(self, request: web.Request) -> web.Response:
        """
        GET /ping
        """
        try:
            await asyncio.wait_for(self._call(self._repository.ping), timeout=self._ping_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Store ping timed out after {self._ping_timeout:g}s")
            return web.Response(text="Database connection failed", status=500)
        except MetricsException as e:
            logger.error(f"Store ping failed: {e}")
            return web.Response(text="Database connection failed", status=500)
        return web.Response(text="OK")


# ============================================================
# APPLICATION
# ============================================================

def create_app(
    repository: MetricRepository,
    key: str = "",
    ping_timeout: float = DEFAULT_PING_TIMEOUT,
) -> web.Application:
    """
    Build the metrics application.

    Args:
        repository: Metric store serving every route
        key: HMAC key; empty disables signing
        ping_timeout: Seconds allowed for /ping

    Returns:
        Configured aiohttp application
    """
    codec = IntegrityCodec(key)
    api = MetricsAPI(repository, ping_timeout=ping_timeout)

    app = web.Application(
        middlewares=[
            access_log_middleware,
            create_integrity_middleware(codec),
            error_middleware,
        ],
        # Request bodies are gunzipped by the integrity middleware
        handler_args={"auto_decompress": False},
    )

    app.router.add_post("/update/{type}/{name}/{value}", api.update_from_path)
    app.router.add_get("/value/{type}/{name}", api.value_from_path)
    app.router.add_get("/", api.index)
    app.router.add_post("/update/", api.update_json)
    app.router.add_post("/value/", api.value_json)
    app.router.add_post("/updates/", api.update_batch)
    app.router.add_get("/ping", api.ping)

    return app
