"""FastAPI application factory for Covenant."""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from covenant import __version__
from covenant.auth_service import build_auth_service
from covenant.cache import Cache, create_redis_client
from covenant.config import Settings
from covenant.credentials import CredentialStore
from covenant.dispatcher import Dispatcher
from covenant.gates import GateChain
from covenant.logging import (
    bind_correlation_id,
    clear_logging_context,
    configure_logging,
    get_logger,
)
from covenant.metrics import get_metrics
from covenant.registry import ContractRegistry, ServiceDefinition
from covenant.store import CredentialRepository, SQLiteCredentialRepository

logger = get_logger(__name__)

MAX_REQUEST_SIZE = 1024 * 1024

ServiceFactory = Callable[[CredentialStore], ServiceDefinition]


def create_app(
    *,
    settings: Settings | None = None,
    cache: Cache | None = None,
    repository: CredentialRepository | None = None,
    registry: ContractRegistry | None = None,
    services: Sequence[ServiceDefinition | ServiceFactory] = (),
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Runtime settings; read from the environment when omitted.
        cache: Cache facade; a Redis client for ``settings.redis_url`` by default.
        repository: Credential database; SQLite at ``settings.db_path`` by default.
        registry: Contract registry to extend. A fresh one is created by default.
        services: Service definitions to register, or factories that build one
            from the app's :class:`CredentialStore`.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        app.state.repository.close()
        await app.state.cache.close()

    app = FastAPI(
        title="Covenant",
        version=__version__,
        description="Contract-driven API framework with gated RPC and REST dispatch",
        lifespan=lifespan,
    )

    repository = repository or SQLiteCredentialRepository(settings.db_path)
    cache = cache or Cache(create_redis_client(settings.redis_url))
    credentials = CredentialStore(
        cache, repository, session_ttl=settings.session_ttl_seconds
    )
    registry = registry if registry is not None else ContractRegistry()

    if settings.enable_auth_service:
        registry.register_service(build_auth_service(credentials))
    for service in services:
        definition = service if isinstance(service, ServiceDefinition) else service(credentials)
        registry.register_service(definition)

    gate_chain = GateChain(credentials)
    dispatcher = Dispatcher(registry, gate_chain, debug=settings.debug)

    app.state.settings = settings
    app.state.cache = cache
    app.state.repository = repository
    app.state.credentials = credentials
    app.state.registry = registry
    app.state.gate_chain = gate_chain
    app.state.dispatcher = dispatcher

    @app.middleware("http")
    async def request_size_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Reject requests that exceed the maximum allowed size."""
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
            return JSONResponse({"error": "Request body too large"}, status_code=413)
        return await call_next(request)

    @app.middleware("http")
    async def correlation_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Tag every log line of a request with its correlation ID."""
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_logging_context()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    @app.get("/health")
    async def health() -> JSONResponse:
        """Report cache and database reachability."""
        metrics = get_metrics()
        cache_ok = await app.state.cache.health()
        database_ok = app.state.repository.health()
        metrics.health_status.set(1.0 if cache_ok else 0.0, "cache")
        metrics.health_status.set(1.0 if database_ok else 0.0, "database")
        return JSONResponse(
            {
                "status": "ok" if cache_ok and database_ok else "degraded",
                "version": app.version,
                "cache": cache_ok,
                "database": database_ok,
            }
        )

    @app.get("/metrics")
    async def metrics_endpoint() -> PlainTextResponse:
        """Expose Prometheus metrics."""
        return PlainTextResponse(
            get_metrics().collect_all(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    dispatcher.bind(app, settings.api_endpoint)
    logger.info(
        "app_created",
        api_endpoint=settings.rpc_path,
        debug=settings.debug,
        contracts=len(registry),
    )
    return app


app = create_app()
