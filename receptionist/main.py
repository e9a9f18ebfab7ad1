"""
FastAPI server for the AI receptionist call orchestration engine.

This module initializes the FastAPI application that receives the telephony
provider's call-control webhooks and media streams, and exposes the call state
query, booking and health endpoints. Engine components are built once per
application; the lifespan handler starts the manager's maintenance loop
(dispatch reconciliation, webhook redelivery) and tears everything down, with
in-flight calls drained, on shutdown.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from receptionist.call_manager import CallManager
from receptionist.config.constants import SERVICE_NAME, SERVICE_VERSION
from receptionist.config.logging_config import configure_logging
from receptionist.config.settings import Settings, load_settings
from receptionist.exceptions import AuthenticationError, PayloadError, ThrottledError
from receptionist.handlers.media_handlers import handle_media_stream
from receptionist.handlers.rate_limiter import SlidingWindowRateLimiter
from receptionist.handlers.webhook_handlers import WebhookIngress
from receptionist.models.event_log import ProcessedEventLog
from receptionist.models.webhook_schemas import BookingRequest, WebhookAck


def create_app(settings: Optional[Settings] = None,
               call_manager: Optional[CallManager] = None) -> FastAPI:
    """
    Build the application and its engine components.

    Args:
        settings: Configuration (loaded from the environment when omitted)
        call_manager: Pre-built manager, mainly for tests

    Returns:
        FastAPI: The configured application
    """
    settings = settings or load_settings()
    logger = configure_logging(settings.log_level, settings.log_dir)
    manager = call_manager or CallManager(settings)
    ingress = WebhookIngress(
        settings,
        ProcessedEventLog(settings.event_retention, settings.event_log_max_entries),
        SlidingWindowRateLimiter(settings.rate_limit_max_events, settings.rate_limit_window),
        sink=manager.submit_event,
    )
    if not settings.webhook_secret and not settings.webhook_verify_disabled:
        logger.warning("WEBHOOK_SECRET not set; all webhooks will be rejected")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{SERVICE_NAME} {SERVICE_VERSION} starting")
        manager.start(ingress.redeliver)
        yield
        logger.info("Shutting down, draining in-flight calls")
        await manager.shutdown()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Real-time call orchestration engine for AI-answered phone calls",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.call_manager = manager
    app.state.ingress = ingress

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(request: Request, exc: AuthenticationError):
        logger.warning(f"Rejected webhook from {request.client.host if request.client else '?'}: "
                       f"{exc}")
        return JSONResponse(status_code=401, content={"error": "invalid signature"})

    @app.exception_handler(ThrottledError)
    async def throttled_error_handler(request: Request, exc: ThrottledError):
        logger.warning(str(exc))
        return JSONResponse(
            status_code=429,
            content={"error": "rate limit exceeded"},
            headers={"Retry-After": str(max(1, int(exc.retry_after + 0.999)))},
        )

    @app.exception_handler(PayloadError)
    async def payload_error_handler(request: Request, exc: PayloadError):
        logger.warning(f"Malformed webhook: {exc}")
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.post("/webhooks/telephony", response_model=WebhookAck)
    async def telephony_webhook(request: Request):
        """Call-control webhook. Acknowledged as soon as events are queued."""
        body = await request.body()
        return ingress.handle(body, request.headers)

    @app.post("/webhooks/recording", response_model=WebhookAck)
    async def recording_webhook(request: Request):
        """Recording-ready webhook; attaches the recording URL to an ended call."""
        body = await request.body()
        return ingress.handle_recording(body, request.headers)

    @app.post("/calls/{call_id}/booking")
    async def confirm_booking(call_id: str, request: Request):
        """Signed notification from the conversation layer that an appointment was booked."""
        body = await request.body()
        ingress.verify_request(body, request.headers)
        try:
            details = BookingRequest.model_validate_json(body or b"{}")
        except ValidationError as e:
            raise PayloadError(f"Invalid booking payload: {e.error_count()} validation errors")
        if not manager.confirm_booking(call_id, details.model_dump(exclude_none=True)):
            raise HTTPException(status_code=409, detail="Call unknown or already ended")
        return {"status": "accepted", "call_id": call_id}

    @app.get("/calls/{call_id}")
    async def get_call(call_id: str):
        """Current state projection of a call."""
        call = manager.get_call(call_id)
        if call is None:
            raise HTTPException(status_code=404, detail="Call not found")
        return call.snapshot()

    @app.websocket("/media")
    async def media_stream(websocket: WebSocket):
        """Provider media stream for one call; becomes the caller leg of the audio bridge."""
        await websocket.accept()
        await handle_media_stream(websocket, manager.attach_media)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring system status."""
        return {
            "status": "healthy",
            "ai_backend_configured": bool(settings.ai_backend_url),
            **manager.stats(),
        }

    @app.get("/")
    async def root():
        """Basic information about the service."""
        return {
            "name": SERVICE_NAME,
            "description": "Real-time call orchestration engine for AI-answered phone calls",
            "version": SERVICE_VERSION,
            "endpoints": {
                "/webhooks/telephony": "Telephony call-control webhooks",
                "/webhooks/recording": "Recording-ready webhooks",
                "/calls/{call_id}": "Current call state",
                "/calls/{call_id}/booking": "Appointment booked notification",
                "/media": "Telephony media stream WebSocket",
                "/health": "Health check endpoint",
            },
        }

    return app


app = create_app()
