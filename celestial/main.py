"""FastAPI application entrypoint. No business logic; only wiring and error mapping."""

import logging

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from celestial.api.v1 import router as v1_router
from celestial.core.config import settings
from celestial.core.errors import AuthError, OtpCooldownError
from celestial.services.store import StoreError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Celestial Auth API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuthError)
async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
    """Map domain errors to {"detail": message} with the error's status."""
    headers: dict[str, str] = {}
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, OtpCooldownError):
        headers["Retry-After"] = str(exc.wait_seconds)
    if exc.status_code >= 500:
        logger.error("Request failed", extra={"path": request.url.path, "reason": exc.message})
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers or None,
    )


@app.exception_handler(StoreError)
async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("Storage failure", extra={"path": request.url.path, "reason": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Something went wrong"})


app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    """Root route; minimal payload for discovery."""
    return {"message": "Celestial Auth API"}
