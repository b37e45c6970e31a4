import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.config import get_settings
from .core.errors import RateLimitedError, WikiError
from .core.logging import configure_logging
from .api.routes_admin import router as admin_router
from .api.routes_articles import router as articles_router
from .api.routes_moderation import router as moderation_router
from .api.routes_search import router as search_router

configure_logging()
settings = get_settings()
logger = logging.getLogger(__name__)

app = FastAPI(title="WikiHub API")

# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - In non-prod, wide-open CORS is only enabled if CORS_ALLOW_ALL_ORIGINS=True.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production – refusing to start with wide-open CORS."
        )
    origins = [
        o.strip()
        for o in settings.FRONTEND_ORIGIN.split(",")
        if o.strip()
    ]
else:
    if settings.CORS_ALLOW_ALL_ORIGINS:
        origins = ["*"]
    elif settings.FRONTEND_ORIGIN:
        origins = [
            o.strip()
            for o in settings.FRONTEND_ORIGIN.split(",")
            if o.strip()
        ]
    else:
        origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

STATUS_BY_CODE = {
    "not_found": 404,
    "rate_limited": 429,
    "invalid_transition": 409,
    "duplicate_article": 409,
    "sync_already_running": 409,
    "invalid_edit": 422,
}

# Codes whose message is safe to show on public paths
DETAILED_CODES = {"not_found", "rate_limited", "invalid_edit"}


def _is_admin_path(request: Request) -> bool:
    return request.url.path.startswith(f"{settings.API_PREFIX}/admin")


@app.exception_handler(WikiError)
async def wiki_error_handler(request: Request, exc: WikiError):
    status_code = STATUS_BY_CODE.get(exc.code, 503)
    if _is_admin_path(request) or exc.code in DETAILED_CODES:
        detail = str(exc) or exc.public_message
    else:
        detail = exc.public_message

    if status_code == 503:
        logger.error(
            "Request failed",
            extra={"step": exc.code},
            exc_info=exc,
        )

    headers = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "code": exc.code},
        headers=headers,
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(articles_router, prefix=settings.API_PREFIX)
app.include_router(search_router, prefix=settings.API_PREFIX)
app.include_router(moderation_router, prefix=settings.API_PREFIX)
app.include_router(admin_router, prefix=settings.API_PREFIX)
