from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.rate_limit import limiter
from app.db.session import init_models
from app.services.background_tasks import start_background_tasks, stop_background_tasks
from app.services.realtime import PushChannelManager

app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url=f"{settings.API_V1_STR}/docs",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    redoc_url=None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get(f"{settings.API_V1_STR}/health", include_in_schema=False)
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
async def on_startup() -> None:
    await init_models()
    app.state.channels = PushChannelManager(
        release_delay=settings.CHANNEL_RELEASE_DELAY_SECONDS,
        send_timeout=settings.CHANNEL_SEND_TIMEOUT_SECONDS,
    )
    app.state.alarm_tasks = start_background_tasks(app.state.channels)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await stop_background_tasks(getattr(app.state, "alarm_tasks", []))
    channels = getattr(app.state, "channels", None)
    if channels is not None:
        await channels.shutdown()
