"""HTTP API over the exploration engine.

Starlette application serving JSON under ``/api``. Engine calls are
blocking SQLite work, so each one runs in Starlette's threadpool; requests
therefore proceed concurrently up to the store's connection limit. A request
whose client disconnects has its deadline cancelled, which interrupts the
running query.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .config import ExplorerSettings
from .engine import ExplorerEngine
from .errors import ExplorerError
from .models import Deadline

logger = logging.getLogger(__name__)

# Seconds between client-disconnect checks while a query runs
DISCONNECT_POLL_INTERVAL = 0.1


def _int_param(request: Request, name: str) -> Optional[int]:
    """Integer query parameter; absent or non-numeric values yield ``None``."""
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _to_json(result: Any) -> Any:
    if hasattr(result, "to_dict"):
        return result.to_dict()
    if isinstance(result, list):
        return [_to_json(item) for item in result]
    return result


async def _until_disconnect(request: Request, work: "asyncio.Future[Any]", deadline: Deadline) -> Any:
    """Await *work*, cancelling *deadline* if the client goes away first.

    The blocking query notices the cancellation at its next progress check
    and raises :class:`~cpg_explorer.errors.QueryTimeoutError`.
    """
    while True:
        done, _ = await asyncio.wait({work}, timeout=DISCONNECT_POLL_INTERVAL)
        if done:
            return work.result()
        if await request.is_disconnected():
            logger.info("Client disconnected from %s; cancelling query", request.url.path)
            deadline.cancel()
            return await work


def create_app(engine: ExplorerEngine, settings: Optional[ExplorerSettings] = None) -> Starlette:
    """Create the Starlette ASGI application.

    The engine is closed when the application shuts down.
    """
    settings = settings or ExplorerSettings()

    def _deadline() -> Deadline:
        return Deadline(settings.request_timeout or None)

    async def _call(
        request: Request,
        fn: Callable[..., Any],
        *args: Any,
        shape: Callable[[Any], Any] = _to_json,
        **kwargs: Any,
    ) -> JSONResponse:
        deadline = _deadline()
        work = asyncio.ensure_future(
            run_in_threadpool(functools.partial(fn, *args, deadline=deadline, **kwargs))
        )
        try:
            result = await _until_disconnect(request, work, deadline)
        except asyncio.CancelledError:
            deadline.cancel()
            raise
        except ExplorerError as exc:
            if exc.status_code >= 500:
                logger.error("%s failed: %s", fn.__name__, exc)
            return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
        return JSONResponse(shape(result))

    async def health(request):
        return JSONResponse(engine.health())

    async def stats(request):
        return await _call(request, engine.stats)

    async def packages(request):
        return await _call(request, engine.packages)

    async def package_graph(request):
        return await _call(request, engine.package_graph)

    async def package_functions(request):
        return await _call(request, engine.functions_in_package, request.path_params["name"])

    async def call_graph(request):
        function_id = request.path_params.get("id") or request.query_params.get("id", "")
        return await _call(
            request,
            engine.call_graph,
            function_id,
            depth=_int_param(request, "depth"),
            direction=request.query_params.get("direction"),
        )

    async def function_source(request):
        function_id = request.path_params.get("id") or request.query_params.get("id", "")
        return await _call(
            request, engine.source_for_function, function_id, shape=lambda source: {"source": source}
        )

    async def file_source(request):
        file = request.query_params.get("file", "")
        return await _call(
            request, engine.source_for_file, file, shape=lambda source: {"source": source, "file": file}
        )

    async def search(request):
        query = request.query_params.get("q", "")
        if not query.strip():
            return JSONResponse([])
        return await _call(request, engine.search, query, limit=_int_param(request, "limit"))

    async def code_search(request):
        query = request.query_params.get("q", "")
        if not query.strip():
            return JSONResponse([])
        return await _call(request, engine.code_search, query, limit=_int_param(request, "limit"))

    async def hotspots(request):
        return await _call(request, engine.hotspots, limit=_int_param(request, "limit"))

    async def function_metrics(request):
        return await _call(request, engine.function_metrics, request.path_params["id"])

    async def findings(request):
        function_id = request.path_params.get("id") or request.query_params.get("id", "")
        return await _call(request, engine.findings, function_id)

    @asynccontextmanager
    async def lifespan(app):
        logger.info("Graph capabilities: %s", engine.capabilities())
        yield
        logger.info("Shutting down; closing graph store")
        engine.close()

    routes = [
        Route("/api/health", health),
        Route("/api/stats", stats),
        Route("/api/packages", packages),
        Route("/api/packages/graph", package_graph),
        Route("/api/packages/{name:path}/functions", package_functions),
        Route("/api/callgraph", call_graph),
        Route("/api/functions/{id:path}/callgraph", call_graph),
        Route("/api/function/source", function_source),
        Route("/api/functions/{id:path}/source", function_source),
        Route("/api/functions/{id:path}/metrics", function_metrics),
        Route("/api/functions/{id:path}/findings", findings),
        Route("/api/findings", findings),
        Route("/api/source", file_source),
        Route("/api/search", search),
        Route("/api/search/code", code_search),
        Route("/api/hotspots", hotspots),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            allow_credentials=True,
        )
    ]
    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
