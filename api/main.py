import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from articles import router as articles_router
from auth import router as auth_router
from billing import router as billing_router
from comments import router as comments_router
from core import db, errors
from drafts import router as drafts_router
from invites import router as invites_router
from organizations import router as organizations_router
from reactions import router as reactions_router
from reports import router as reports_router
from sync import outbox
from sync import router as sync_router
from users import router as users_router
from webhooks import router as webhooks_router

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://127.0.0.1:5173"


def cors_origins() -> list[str]:
    raw = os.environ.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(_: FastAPI):
    # Initialize the DB pool once per process.
    await db.init_pool()

    # Pending search-index writes are retried until they succeed.
    drainer = None
    interval_s = outbox.drain_interval_s()
    if interval_s > 0:
        drainer = asyncio.create_task(outbox.drain_periodically(interval_s))
    try:
        yield
    finally:
        if drainer is not None:
            drainer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await drainer
        await db.close_pool()


app = FastAPI(lifespan=lifespan)

# Allow the frontend dev server to call this API from the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(errors.ApiError)
async def api_error_handler(_: Request, exc: errors.ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("api_error status=%s type=%s detail=%s", exc.status_code, type(exc).__name__, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "errors": exc.errors},
    )


# Drafts and reports first: /articles/drafts/... and /articles/reports must not
# be taken for /articles/{article_id}/...
app.include_router(drafts_router.router, tags=["drafts"])
app.include_router(reports_router.router, tags=["reports"])
app.include_router(articles_router.router, tags=["articles"])
app.include_router(comments_router.router, tags=["comments"])
app.include_router(invites_router.router, tags=["invites"])
app.include_router(organizations_router.router, tags=["organizations"])
app.include_router(users_router.router, tags=["users"])
app.include_router(reactions_router.router, tags=["reactions"])
app.include_router(billing_router.router, tags=["billing"])
app.include_router(auth_router.router, tags=["auth"])
app.include_router(webhooks_router.router, tags=["webhooks"])
app.include_router(sync_router.router, tags=["internal"])


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/")
def root() -> dict:
    return {"message": "nuntium api"}
