"""
Campus Notes — FastAPI application entry-point.

Run with:
    uvicorn campusnotes.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

import campusnotes.models  # noqa: F401  (registers every table on Base.metadata)
from campusnotes.config import settings
from campusnotes.database import Base, engine
from campusnotes.errors import AuthenticationError, CampusNotesError

# ── Import routers ──
from campusnotes.routers import auth, chat, notifications, users

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: create tables on startup ──
@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s started", settings.APP_NAME)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Semester chat rooms and real-time notifications for student note sharing.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=("*",))


# ── Error taxonomy → JSON ──
@app.exception_handler(CampusNotesError)
async def campusnotes_error_handler(request: Request, exc: CampusNotesError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.message},
        headers=headers,
    )


# ── Register API routers ──
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(chat.router)
app.include_router(notifications.router)

if settings.ENVIRONMENT != "production":
    from campusnotes.routers.auth import token_for
    from campusnotes.schemas.user import Token

    @app.get("/auth/dev-token/{user_id}", response_model=Token)
    def dev_token(user_id: int):
        return Token(access_token=token_for(user_id))


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.APP_NAME}
