from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .container import build_services
from .db import init_models
from .errors import DocChatError, ErrorKind
from .logging_setup import configure_logging
from .routers import chat, documents

logger = structlog.get_logger(logger_name=__name__)

STATUS_BY_KIND = {
    ErrorKind.UNSUPPORTED_FORMAT: 400,
    ErrorKind.EMPTY_FILE: 400,
    ErrorKind.FILE_TOO_LARGE: 413,
    ErrorKind.EXTRACTION_FAILED: 422,
    ErrorKind.EMPTY_CONTENT: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DOCUMENT_NOT_READY: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EMBEDDING_SERVICE: 502,
    ErrorKind.VECTOR_STORE: 502,
    ErrorKind.GENERATION_FAILED: 502,
    ErrorKind.STORAGE: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.INTERNAL: 500,
}

@asynccontextmanager
async def lifespan(app: FastAPI):
    services = getattr(app.state, "services", None)
    owned = services is None
    if owned:
        services = build_services(settings)
        app.state.services = services
    await init_models(services.engine)
    logger.info("app_startup", llm_provider=settings.LLM_PROVIDER)
    yield
    if owned:
        await services.aclose()
    logger.info("app_shutdown")

async def docchat_error_handler(request: Request, exc: DocChatError) -> JSONResponse:
    status = STATUS_BY_KIND.get(exc.kind, 500)
    if status >= 500:
        logger.error("request_failed", path=request.url.path, kind=exc.kind.value, error=exc.message)
    return JSONResponse(status_code=status, content={"error": exc.kind.value, "detail": exc.user_message})

def create_app(services=None) -> FastAPI:
    """Build the API. Pass prebuilt ``services`` to reuse them (tests, scripts)."""
    app = FastAPI(title="DocChat", version="0.2.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services
    app.add_middleware(CORSMiddleware,
        allow_origins=[o.strip() for o in settings.ALLOWED_ORIGINS.split(",")],
        allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
    app.add_exception_handler(DocChatError, docchat_error_handler)

    @app.get("/health")
    async def health(): return {"status": "ok"}

    app.include_router(documents.router, prefix="/v1")
    app.include_router(chat.router, prefix="/v1")
    return app

configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
app = create_app()
