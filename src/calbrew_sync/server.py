from typing import Any, Dict, Optional, Tuple

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings
from .errors import AppError, auth_error, validation_error
from .event_service import EventService
from .responses import ApiErrorResponse, ApiResponse


log = structlog.get_logger()


def _caller(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """Caller identity and Google access token from the request headers."""
    owner_id = request.headers.get("X-User-Id")
    access_token = None
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        access_token = token.strip()
    return owner_id, access_token


def _respond(envelope: ApiResponse, success_status: int = 200) -> JSONResponse:
    status = envelope.status_code if isinstance(envelope, ApiErrorResponse) else success_status
    return JSONResponse(status_code=status, content=envelope.model_dump(mode="json"))


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise validation_error("Invalid JSON body")
    if not isinstance(body, dict):
        raise validation_error("Request body must be a JSON object")
    return body


def create_app(events: Optional[EventService] = None) -> FastAPI:
    """Build the HTTP app; the event service is created on startup when not given."""
    app = FastAPI(title="Calbrew Sync Server", version=__version__)
    app.state.events = events

    @app.on_event("startup")
    async def on_startup():
        if app.state.events is None:
            from .cli import setup_logging

            settings = Settings()
            settings.ensure_directories()
            setup_logging(settings.log_level, settings.debug, settings.log_format)
            service = EventService(settings)
            service.db_manager.init_db()
            app.state.events = service
        log.info("server_started", database=app.state.events.settings.database_url)

    def service() -> EventService:
        return app.state.events

    @app.get("/health")
    async def health():
        return {"ok": True, "version": __version__}

    @app.get("/events")
    async def list_events(request: Request):
        owner_id, _ = _caller(request)
        return _respond(await service().list_events(owner_id))

    @app.post("/events")
    async def create_event(request: Request):
        owner_id, access_token = _caller(request)
        if not owner_id:
            return _respond(auth_error("Unauthorized").to_response())
        try:
            payload = await _json_body(request)
        except AppError as e:
            return _respond(e.to_response())
        envelope = await service().create_event(owner_id, access_token, payload)
        log.info("event_created", owner=owner_id, success=envelope.success)
        return _respond(envelope, success_status=201)

    @app.put("/events/{event_id}")
    async def update_event(event_id: str, request: Request):
        owner_id, access_token = _caller(request)
        if not owner_id:
            return _respond(auth_error("Unauthorized").to_response())
        try:
            payload = await _json_body(request)
        except AppError as e:
            return _respond(e.to_response())
        return _respond(await service().update_event(owner_id, access_token, event_id, payload))

    @app.delete("/events/{event_id}")
    async def delete_event(event_id: str, request: Request):
        owner_id, access_token = _caller(request)
        envelope = await service().delete_event(owner_id, access_token, event_id)
        log.info("event_deleted", owner=owner_id, event_id=event_id, success=envelope.success)
        return _respond(envelope)

    @app.post("/events/{event_id}/sync")
    async def sync_event(event_id: str, request: Request):
        owner_id, access_token = _caller(request)
        return _respond(await service().sync_event(owner_id, access_token, event_id))

    @app.get("/events/{event_id}/sync-status")
    async def sync_status(event_id: str, request: Request):
        owner_id, _ = _caller(request)
        return _respond(await service().get_sync_status(owner_id, event_id))

    @app.get("/year-progression")
    async def year_progression_summary(request: Request):
        owner_id, _ = _caller(request)
        return _respond(await service().get_year_progression_summary(owner_id))

    @app.post("/year-progression")
    async def process_year_progression(request: Request):
        owner_id, access_token = _caller(request)
        envelope = await service().process_year_progression(owner_id, access_token)
        log.info("year_progression_processed", owner=owner_id, success=envelope.success)
        return _respond(envelope)

    @app.get("/year-progression/{event_id}")
    async def event_progression(event_id: str, request: Request):
        owner_id, _ = _caller(request)
        return _respond(await service().get_event_progression(owner_id, event_id))

    @app.post("/year-progression/{event_id}")
    async def sync_event_years(event_id: str, request: Request):
        owner_id, access_token = _caller(request)
        return _respond(await service().sync_event_years(owner_id, access_token, event_id))

    return app


app = create_app()
