import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ..core.config import Settings
from ..core.engine import ReconciliationEngine
from ..core.errors import FetchError
from ..core.store import AlertStore
from ..services.audio import AudioAlerter, BroadcastAudioOutput, ResourceSoundPlayer
from ..services.backend import AlertBackend, create_http_client
from ..services.notify import ToastNotifier
from ..services.polling import PollSource
from ..services.push import PushSource, PushStreamSubscriber
from ..services.sse import EventBroadcaster, event_stream
from ..utils.security import create_limiter, get_api_key, rate_limit_exceeded_handler

# Load environment variables from .env file at the start
load_dotenv()

# Configure logging for the application
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
)
logger = logging.getLogger(__name__)


class PushResponse(BaseModel):
    """Result of handing a push payload to the engine"""
    success: bool
    message: str
    alert_id: Optional[str] = None


class ReadResponse(BaseModel):
    alert_id: str
    changed: bool
    unread_count: int


def build_engine(settings: Settings, http_client, broadcaster: EventBroadcaster,
                 sound_client: Optional[httpx.AsyncClient] = None) -> ReconciliationEngine:
    """
    Wires the engine and its collaborators from settings.

    `http_client` carries the backend bearer token; sound files are fetched
    with `sound_client`, which must not, since the sound host may be a
    different origin.
    """
    backend = AlertBackend(http_client, settings.station_id, settings.alert_kind)
    player = ResourceSoundPlayer(
        BroadcastAudioOutput(broadcaster),
        client=sound_client,
        base_url=settings.sound_base_url,
        volume=settings.sound_volume,
    )
    return ReconciliationEngine(
        store=AlertStore(),
        poll_source=PollSource(backend),
        push_source=PushSource(),
        alerter=AudioAlerter(player),
        notifier=ToastNotifier(broadcaster),
        poll_interval=settings.poll_interval_seconds,
        refresh_on_push=settings.refresh_on_push,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Builds the engine (unless one was injected), starts polling and the
    optional upstream push subscription, and tears everything down on exit.
    """
    http_client = None
    sound_client = None
    subscriber = None
    engine: ReconciliationEngine = app.state.engine
    if engine is None:
        settings = Settings.from_env()
        logging.getLogger().setLevel(settings.log_level)
        http_client = create_http_client(
            settings.api_base_url, settings.auth_token, settings.request_timeout_seconds
        )
        sound_client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        engine = build_engine(settings, http_client, app.state.broadcaster, sound_client=sound_client)
        app.state.engine = engine
        if settings.push_stream_url:
            subscriber = PushStreamSubscriber(
                settings.push_stream_url, engine.push_source, api_key=settings.push_stream_api_key
            )

    logger.info("Application startup: starting alert engine.")
    await engine.start()
    if subscriber:
        subscriber.start_subscription()
    yield
    logger.info("Application shutdown: stopping alert engine.")
    if subscriber:
        await subscriber.stop()
    await engine.stop()
    if http_client:
        await http_client.aclose()
    if sound_client:
        await sound_client.aclose()


def get_engine(request: Request) -> ReconciliationEngine:
    engine = request.app.state.engine
    if engine is None:
        raise HTTPException(status_code=503, detail="Alert engine not started")
    return engine


def create_app(engine: Optional[ReconciliationEngine] = None,
               broadcaster: Optional[EventBroadcaster] = None) -> FastAPI:
    app = FastAPI(
        title="RapidAid Fire Alert Service",
        description="Merges pushed and polled fire alerts for a station dashboard and streams "
                    "toast and sound notifications via Server-Sent Events (SSE).",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.broadcaster = broadcaster or EventBroadcaster()

    # Rate limiting for push intake and the event stream
    limiter = create_limiter()
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.get("/", summary="Service Status")
    async def root():
        return {"message": "Welcome to the RapidAid Fire Alert Service"}

    @app.get("/health", summary="Engine Status")
    async def health(engine: ReconciliationEngine = Depends(get_engine)):
        return {
            "running": engine.running,
            "loading": engine.loading,
            "alerts": len(engine.store),
            "unreadCount": engine.unread_count,
        }

    @app.get("/api/alerts", summary="Current Alert List")
    async def list_alerts(engine: ReconciliationEngine = Depends(get_engine)):
        return {
            "alerts": [alert.to_dict() for alert in engine.alerts],
            "unreadCount": engine.unread_count,
            "loading": engine.loading,
        }

    @app.post("/api/alerts/refresh", summary="Poll the Backend Now")
    async def refresh_alerts(engine: ReconciliationEngine = Depends(get_engine)):
        inserted = await engine.poll_once()
        return {"inserted": inserted, "unreadCount": engine.unread_count}

    @app.get("/api/alerts/{alert_id}", summary="Single Alert")
    async def get_alert(alert_id: str, engine: ReconciliationEngine = Depends(get_engine)):
        """Returns the dashboard's copy of the alert, asking the backend when it is not known locally."""
        record = engine.store.get(alert_id)
        if record is None:
            try:
                record = await engine.fetch_alert(alert_id)
            except FetchError as e:
                if e.status_code == 404:
                    raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
                raise HTTPException(status_code=502, detail=f"Backend request failed: {e.message}")
        return record.to_dict()

    @app.post("/api/alerts/{alert_id}/read", summary="Mark Alert as Read", response_model=ReadResponse)
    async def mark_alert_read(alert_id: str, engine: ReconciliationEngine = Depends(get_engine)):
        if alert_id not in engine.store:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        changed = engine.mark_as_read(alert_id)
        return ReadResponse(alert_id=alert_id, changed=changed, unread_count=engine.unread_count)

    @app.post("/api/alerts/{alert_id}/acknowledge", summary="Acknowledge Alert", response_model=ReadResponse)
    async def acknowledge_alert(alert_id: str, engine: ReconciliationEngine = Depends(get_engine)):
        """
        Sets the alert's status to acknowledged on the backend and, once the
        backend accepted it, marks it read on the dashboard.
        """
        try:
            changed = await engine.acknowledge(alert_id)
        except FetchError as e:
            logger.error(f"Failed to acknowledge alert {alert_id}: {e.message}")
            raise HTTPException(status_code=502, detail=f"Backend update failed: {e.message}")
        return ReadResponse(alert_id=alert_id, changed=changed, unread_count=engine.unread_count)

    @app.delete("/api/alerts", summary="Clear All Alerts")
    async def clear_alerts(engine: ReconciliationEngine = Depends(get_engine)):
        engine.clear()
        return {"alerts": [], "unreadCount": 0}

    @app.post("/api/push", summary="Push Alert Intake", response_model=PushResponse)
    @limiter.limit("60/minute")
    async def push_alert(request: Request, payload: Dict[str, Any] = Body(...),
                         api_key: str = Depends(get_api_key),
                         engine: ReconciliationEngine = Depends(get_engine)):
        """
        Receives one push-delivered alert payload, e.g.
        `{"data": {"alertId": "a2", "type": "fire", "lat": "6.9", "lng": "79.8"}}`.
        Any of the fields may be missing.
        """
        record = engine.push_source.deliver(payload)
        if record is None:
            raise HTTPException(status_code=503, detail="No push handler registered")
        return PushResponse(success=True, message="Push alert delivered", alert_id=record.id)

    @app.post("/api/sound/test", summary="Play Alert Sound")
    async def test_sound(engine: ReconciliationEngine = Depends(get_engine)):
        played = await engine.play_alert_sound()
        return {"played": played}

    @app.get("/api/events", summary="Dashboard Event Stream")
    @limiter.limit("5/minute")
    async def events(request: Request, api_key: str = Depends(get_api_key)):
        """
        Server-Sent Events stream of `toast` and `sound` events for the
        dashboard. Connected clients are also what plays the alert sound.
        """
        return StreamingResponse(
            event_stream(request, request.app.state.broadcaster),
            media_type="text/event-stream",
        )

    return app


app = create_app()

# To run the service from the project root:
#   uvicorn rapidaid.api.main:app --reload
