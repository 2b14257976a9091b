import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

load_dotenv()

from .config import load_config  # noqa: E402
from .database import init_db, init_engine  # noqa: E402
from .errors import AppError  # noqa: E402
from .limiter import limiter  # noqa: E402
from .logging_config import configure_logging  # noqa: E402
from .routers import api_router, health  # noqa: E402
from .settings_store import load_settings  # noqa: E402

config = load_config()
configure_logging(config.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_engine(config.database_url)
    init_db()
    settings = load_settings()
    logger.info(
        "DevAI backend started (env=%s, default provider=%s, fallback=%s)",
        config.app_env,
        settings.default_provider,
        settings.fallback_provider,
    )
    yield
    logger.info("DevAI backend shutting down")


app = FastAPI(title="DevAI Agent API", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.code, "detail": exc.message},
    )


app.include_router(health.router)
app.include_router(api_router)


@app.get("/")
def root() -> Dict[str, Any]:
    return {"name": app.title, "version": app.version, "docs": "/docs", "health": "/api/health"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("devai_backend.main:app", host="0.0.0.0", port=8000, reload=True)
