from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from httpx import AsyncClient

from realestate.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    flush_tracing,
    get_session_factory,
    get_settings,
    resolve_database_url,
    resolve_redis,
)

from .api.health import router as health_router
from .api.realtime import router as realtime_router
from .api.support_cases import router as support_cases_router
from .broadcaster import LocalRoomBroadcaster, RedisRoomBroadcaster, RoomRegistry
from .errors import register_error_handlers
from .models import Base
from .notifier import InMemoryNotifier, SendGridNotifier
from .side_effects import SideEffectDispatcher

SERVICE_NAME = "Support Case Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./support_cases.db"


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Support Case Service FastAPI application."""

    resolved_settings = settings or get_settings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    redis_client = resolve_redis(resolved_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client: AsyncClient | None = None
        relay: RedisRoomBroadcaster | None = None
        side_effects = SideEffectDispatcher()
        registry = RoomRegistry()
        app.state.session_factory = session_factory
        app.state.room_registry = registry
        app.state.side_effects = side_effects
        app.state.redis = redis_client
        try:
            if resolved_settings.database_create_schema:
                await create_schema(database_url, Base.metadata)
            if redis_client is not None:
                relay = RedisRoomBroadcaster(
                    redis_client,
                    registry,
                    resolved_settings.realtime_channel,
                    retry_delay=resolved_settings.realtime_relay_retry_seconds,
                )
                await relay.start()
                app.state.broadcaster = relay
            else:
                app.state.broadcaster = LocalRoomBroadcaster(registry)
            if resolved_settings.sendgrid_api_key:
                http_client = AsyncClient(timeout=resolved_settings.notification_timeout_seconds)
                app.state.notifier = SendGridNotifier(
                    client=http_client,
                    api_key=resolved_settings.sendgrid_api_key,
                    sender=resolved_settings.notification_sender,
                    recipients=resolved_settings.notification_recipients,
                    base_url=resolved_settings.sendgrid_base_url,
                )
            else:
                app.state.notifier = InMemoryNotifier(resolved_settings.notification_recipients)
            yield
        finally:
            await side_effects.drain()
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.broadcaster = None
            app.state.notifier = None
            app.state.side_effects = None
            app.state.room_registry = None
            app.state.redis = None
            if relay is not None:
                await relay.stop()
            if http_client is not None:
                await http_client.aclose()
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()
            flush_tracing()

    app = build_app(resolved_settings, lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(support_cases_router)
    app.include_router(realtime_router)
    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""

    settings = app.state.settings
    uvicorn.run(app, host=settings.service_host, port=settings.service_port)
