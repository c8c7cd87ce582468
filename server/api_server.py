"""FastAPI application entry point for docintel."""

import os
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface
from shared.models.errors import (
    BackendUnavailableError,
    DocIntelError,
    DocumentNotFoundError,
    EmbeddingFailedError,
    ExtractionFailedError,
    FileTooLargeError,
    LLMParseFailedError,
    LLMRequestFailedError,
    UnsupportedFormatError,
)
from server.models.responses import HealthResponse
from server.routers.DocumentRouter import router as document_router
from server.routers.GraphRouter import router as graph_router
from server.routers.QueryRouter import router as query_router
from server.routers.TaskRouter import router as task_router
from services.bootstrap import build_services, check_connections, close_clients, load_clients

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")

ClientFactory = Callable[[HelperConfig], Awaitable[dict[str, ClientInterface]]]

# first match wins, subclasses before their parents
_ERROR_STATUS: tuple[tuple[type[DocIntelError], int], ...] = (
    (DocumentNotFoundError, 404),
    (UnsupportedFormatError, 400),
    (FileTooLargeError, 400),
    (ExtractionFailedError, 400),
    (BackendUnavailableError, 503),
    (EmbeddingFailedError, 502),
    (LLMRequestFailedError, 502),
    (LLMParseFailedError, 502),
)


def status_for_error(error: DocIntelError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


async def handle_docintel_error(request: Request, exc: DocIntelError) -> JSONResponse:
    status_code = status_for_error(exc)
    if status_code >= 500:
        logging.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logging.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"success": False, "error": exc.user_message})


def create_app(client_factory: ClientFactory | None = None, helper_config: HelperConfig | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        client_factory (ClientFactory | None): Coroutine returning booted clients keyed by client type.
            Defaults to the engines selected by {TYPE}_ENGINE.
        helper_config (HelperConfig | None): Configuration, read from the environment when omitted.

    Returns:
        FastAPI: The configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # when the app starts
        app.state.logging = logging
        app.state.helper_config = helper_config or HelperConfig(logger=logging)

        clients = await (client_factory or load_clients)(app.state.helper_config)
        await clients["meta"].do_initialize()

        services = build_services(app.state.helper_config, clients)
        services.task_queue.start()

        app.state.clients = clients
        app.state.graph_client = clients["graph"]
        app.state.task_queue = services.task_queue
        app.state.document_service = services.document_service
        app.state.retrieval_engine = services.retrieval_engine
        app.state.entity_resolver = services.entity_resolver
        app.state.topic_modeler = services.topic_modeler
        app.state.similarity_analyzer = services.similarity_analyzer
        app.state.reconciliation_service = services.reconciliation_service

        await check_connections(app.state.helper_config, clients)

        # while the app is running...
        yield

        # when the app shuts down, stop the workers and close all client connections
        logging.info("Shutting down, stopping task queue and closing all clients...")
        await services.task_queue.stop()
        await close_clients(app.state.helper_config, clients)

    app = FastAPI(
        title="docintel",
        description=(
            "Document intelligence service: uploaded PDF, DOCX, DOC and TXT files are chunked, "
            "embedded into a vector store and mined for entities into a knowledge graph. "
            "Semantic search via POST /search, grounded answers via POST /chat."
        ),
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DocIntelError, handle_docintel_error)

    @app.get("/health", tags=["health"])
    async def health(request: Request) -> HealthResponse:
        """Reachability of every backend. Does not require an API key."""
        backends = await check_connections(request.app.state.helper_config, request.app.state.clients)
        return HealthResponse(
            status="ok" if all(backends.values()) else "degraded",
            version=app_version,
            backends=backends,
        )

    app.include_router(document_router)
    app.include_router(query_router)
    app.include_router(graph_router)
    app.include_router(task_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting docintel API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
