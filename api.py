"""
HTTP API for the scheduling service.

JSON over aiohttp. The caller identifies the session user with the
``X-User-Id`` header; when ``API_TOKEN`` is configured every route except
``/health`` also needs ``Authorization: Bearer <token>``.
"""

import hmac
import json
import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncIterator, Optional

from aiohttp import web
from aiohttp.web import Request, Response
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from config import settings
from db import RealtimeFeed, SupabaseClient, get_db_client
from models.appointment import AppointmentCreate, AppointmentUpdate
from models.events import ChangeType, EventFilter
from models.recurrence import ExceptionType, RecurrencePattern
from models.reminder import ReminderCreate, ReminderType
from scheduling.service import SchedulingService
from utils.constants import (
    APPOINTMENTS_TABLE,
    AVAILABILITY_TABLE,
    BLOCKED_SLOTS_TABLE,
    MAX_REASON_LENGTH,
    MAX_TOUR_NAME_LENGTH,
)
from utils.exceptions import ConflictError, DatabaseError, NotFoundError, ValidationError
from utils.logging_config import setup_logging
from utils.validation import sanitize_text

logger = setup_logging(name=__name__, log_level="INFO", log_file="api.log", log_dir="logs")

MAX_REQUEST_BODY_SIZE = 1024 * 1024  # 1MB

DB_KEY = web.AppKey("db", SupabaseClient)
FEED_KEY = web.AppKey("feed", RealtimeFeed)
STARTED_AT_KEY = web.AppKey("started_at", float)

# Tables a client may follow through /events
_STREAMABLE_TABLES = (APPOINTMENTS_TABLE, AVAILABILITY_TABLE, BLOCKED_SLOTS_TABLE)


# ========== Request Bodies ==========


class SeriesCreateRequest(BaseModel):
    appointment: AppointmentCreate
    pattern: RecurrencePattern
    generate_count: Optional[int] = None


class SeriesExtendRequest(BaseModel):
    count: Optional[int] = None


class SeriesCancelRequest(BaseModel):
    from_date: datetime
    reason: Optional[str] = None


class SeriesEditRequest(BaseModel):
    from_date: datetime
    updates: AppointmentUpdate = Field(default_factory=AppointmentUpdate)
    pattern: Optional[RecurrencePattern] = None
    generate_count: Optional[int] = None


class SeriesExceptionRequest(BaseModel):
    appointment_id: str
    exception_type: ExceptionType
    new_start_time: Optional[datetime] = None
    new_end_time: Optional[datetime] = None
    reason: Optional[str] = None
    updates: Optional[AppointmentUpdate] = None


class AvailabilityCheckRequest(BaseModel):
    provider_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    exclude_appointment_id: Optional[str] = None


class ReminderRequest(BaseModel):
    reminder_type: ReminderType = ReminderType.EMAIL
    minutes_before: int = 24 * 60
    message: Optional[str] = None


# ========== Middleware ==========


def _error(status: int, error: str, message: str, **extra: Any) -> Response:
    return web.json_response(
        {"status": "error", "error": error, "message": message, **extra}, status=status
    )


@web.middleware
async def security_headers_middleware(request: Request, handler):
    """Add security headers to all responses that have not been sent yet."""
    response = await handler(request)

    if not response.prepared:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    return response


@web.middleware
async def auth_middleware(request: Request, handler):
    """Require the bearer token when one is configured."""
    if request.path == "/health" or not settings.api_token:
        return await handler(request)

    expected = f"Bearer {settings.api_token}"
    provided = request.headers.get("Authorization", "")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning(f"Rejected unauthenticated request to {request.path}")
        return _error(401, "unauthorized", "Missing or invalid API token")

    return await handler(request)


@web.middleware
async def error_middleware(request: Request, handler):
    """Map domain exceptions onto HTTP responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (ValidationError, PydanticValidationError) as e:
        logger.warning(f"Invalid request to {request.path}: {e}")
        return _error(400, "validation_failed", str(e))
    except NotFoundError as e:
        return _error(404, "not_found", str(e))
    except ConflictError as e:
        logger.info(f"Conflict on {request.path}: {e.reason}")
        return _error(409, "conflict", str(e), reason=e.reason)
    except DatabaseError as e:
        logger.error(f"Database error on {request.path}: {e}", exc_info=True)
        return _error(500, "database_error", "Database operation failed")
    except Exception as e:
        logger.error(f"Unexpected error on {request.path}: {e}", exc_info=True)
        return _error(500, "internal_error", "Internal server error")


# ========== Helpers ==========


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except json.JSONDecodeError as e:
        raise ValidationError(f"Request body must be valid JSON: {e}") from e


async def _read_body(request: Request, model):
    data = await _read_json(request)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return model.model_validate(data)


def _user_id(request: Request) -> str:
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise web.HTTPUnauthorized(
            text=json.dumps(
                {
                    "status": "error",
                    "error": "unauthorized",
                    "message": "X-User-Id header is required",
                }
            ),
            content_type="application/json",
        )
    return user_id


@asynccontextmanager
async def _session(request: Request) -> AsyncIterator[SchedulingService]:
    """Scheduling service bound to the caller's preferences for one request."""
    service = await SchedulingService.start_session(request.app[DB_KEY], _user_id(request))
    try:
        yield service
    finally:
        await service.end_session()


def _optional_text(value: Optional[str]) -> Optional[str]:
    return sanitize_text(value, MAX_REASON_LENGTH) or None


def _int_query(request: Request, name: str) -> Optional[int]:
    raw = request.query.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"Query parameter {name} must be an integer") from e


# ========== Handlers ==========


async def health_check(request: Request) -> Response:
    """Liveness and configuration summary."""
    uptime_seconds = time.time() - request.app[STARTED_AT_KEY]
    return web.json_response(
        {
            "status": "ok",
            "service": "practice-scheduling",
            "timestamp": time.time(),
            "uptime_hours": round(uptime_seconds / 3600, 2),
            "configuration": {
                "supabase_configured": bool(settings.supabase_url and settings.supabase_key),
                "timezone": settings.timezone,
                "environment": settings.environment,
                "auth_required": bool(settings.api_token),
            },
        }
    )


async def create_series_handler(request: Request) -> Response:
    body = await _read_body(request, SeriesCreateRequest)
    async with _session(request) as service:
        result = await service.create_recurring_series(
            body.appointment, body.pattern, body.generate_count
        )
    return web.json_response(result.to_dict(), status=201)


async def extend_series_handler(request: Request) -> Response:
    body = await _read_body(request, SeriesExtendRequest)
    async with _session(request) as service:
        result = await service.extend_series(request.match_info["series_id"], body.count)
    return web.json_response(result.to_dict())


async def cancel_series_handler(request: Request) -> Response:
    body = await _read_body(request, SeriesCancelRequest)
    async with _session(request) as service:
        outcome = await service.cancel_series_from(
            request.match_info["series_id"],
            body.from_date,
            _optional_text(body.reason),
        )
    return web.json_response(
        {
            "series": outcome.series.model_dump(mode="json"),
            "cancelled": [a.id for a in outcome.cancelled],
            "cancelled_count": len(outcome.cancelled),
        }
    )


async def edit_series_handler(request: Request) -> Response:
    body = await _read_body(request, SeriesEditRequest)
    async with _session(request) as service:
        cancellation, result = await service.edit_series_from(
            request.match_info["series_id"],
            body.from_date,
            body.updates,
            body.pattern,
            body.generate_count,
        )
    return web.json_response(
        {
            "previous_series": cancellation.series.model_dump(mode="json"),
            "cancelled": [a.id for a in cancellation.cancelled],
            **result.to_dict(),
        },
        status=201,
    )


async def series_exception_handler(request: Request) -> Response:
    body = await _read_body(request, SeriesExceptionRequest)
    async with _session(request) as service:
        exception = await service.create_exception(
            request.match_info["series_id"],
            body.appointment_id,
            body.exception_type,
            new_start_time=body.new_start_time,
            new_end_time=body.new_end_time,
            reason=_optional_text(body.reason),
            updates=body.updates,
        )
    return web.json_response(exception.model_dump(mode="json"), status=201)


async def book_appointment_handler(request: Request) -> Response:
    body = await _read_body(request, AppointmentCreate)
    async with _session(request) as service:
        appointment = await service.book_appointment(body)
    return web.json_response(appointment.model_dump(mode="json"), status=201)


async def check_availability_handler(request: Request) -> Response:
    body = await _read_body(request, AvailabilityCheckRequest)
    async with _session(request) as service:
        decision = await service.check_availability(
            body.provider_id,
            body.start_time,
            body.end_time,
            exclude_appointment_id=body.exclude_appointment_id,
        )
    return web.json_response(decision.to_dict())


async def add_reminder_handler(request: Request) -> Response:
    body = await _read_body(request, ReminderRequest)
    async with _session(request) as service:
        reminder = await service.add_reminder(
            ReminderCreate(
                appointment_id=request.match_info["appointment_id"],
                reminder_type=body.reminder_type,
                minutes_before=body.minutes_before,
                message=_optional_text(body.message),
            )
        )
    return web.json_response(reminder.model_dump(mode="json"), status=201)


async def available_slots_handler(request: Request) -> Response:
    raw_date = request.query.get("date")
    if not raw_date:
        raise ValidationError("Query parameter date is required")
    try:
        day = date.fromisoformat(raw_date)
    except ValueError as e:
        raise ValidationError(f"Invalid date: {raw_date}") from e

    provider_id = request.match_info["provider_id"]
    async with _session(request) as service:
        slots = await service.get_available_slots(
            provider_id,
            day,
            duration_minutes=_int_query(request, "duration"),
            buffer_minutes=_int_query(request, "buffer"),
        )
    return web.json_response(
        {
            "provider_id": provider_id,
            "date": day.isoformat(),
            "slots": [slot.model_dump(mode="json") for slot in slots],
        }
    )


async def custom_fields_handler(request: Request) -> Response:
    """
    Replace a patient's custom fields.

    Accepts the upstream ``customField`` array or a key/value object, either
    bare or wrapped in ``{"custom_fields": ...}``.
    """
    data = await _read_json(request)
    if isinstance(data, dict) and "custom_fields" in data:
        data = data["custom_fields"]

    async with _session(request) as service:
        patient = await service.update_patient_custom_fields(
            request.match_info["patient_id"], data
        )
    return web.json_response(patient.model_dump(mode="json"))


async def complete_tour_handler(request: Request) -> Response:
    tour = request.match_info["tour"].strip()
    if not tour or len(tour) > MAX_TOUR_NAME_LENGTH:
        raise ValidationError("Invalid tour name")

    async with _session(request) as service:
        preferences = await service.complete_tour(tour)
    return web.json_response(preferences.model_dump(mode="json"))


async def events_handler(request: Request) -> web.StreamResponse:
    """Server-sent events of database changes, optionally for one provider."""
    table = request.query.get("table", APPOINTMENTS_TABLE)
    if table not in _STREAMABLE_TABLES:
        raise ValidationError(f"Table {table} cannot be streamed")

    raw_event = request.query.get("event", ChangeType.ALL.value).upper()
    try:
        event = ChangeType(raw_event)
    except ValueError as e:
        raise ValidationError(f"Unknown event type: {raw_event}") from e

    provider_id = request.query.get("provider_id")
    event_filter = EventFilter(
        table=table,
        event=event,
        column="provider_id" if provider_id else None,
        value=provider_id,
    )

    subscription = await request.app[FEED_KEY].subscribe(event_filter)
    response = web.StreamResponse(
        headers={"Content-Type": "text/event-stream", "Cache-Control": "no-cache"}
    )

    async with subscription as events:
        await response.prepare(request)
        try:
            async for change in events:
                message = (
                    f"event: {change.type.value.lower()}\n"
                    f"data: {json.dumps(change.to_dict())}\n\n"
                )
                await response.write(message.encode("utf-8"))
        except ConnectionResetError:
            logger.info(f"Event stream client disconnected from {event_filter.topic}")

    return response


# ========== Application ==========


async def _close_feed(app: web.Application) -> None:
    await app[FEED_KEY].close()


def create_app(
    db: Optional[SupabaseClient] = None, feed: Optional[RealtimeFeed] = None
) -> web.Application:
    """
    Create aiohttp application with middleware and routes.

    Args:
        db: database client (defaults to the shared client)
        feed: realtime feed for /events (defaults to a new feed)
    """
    app = web.Application(
        middlewares=[security_headers_middleware, auth_middleware, error_middleware],
        client_max_size=MAX_REQUEST_BODY_SIZE,
    )
    app[DB_KEY] = db if db is not None else get_db_client()
    app[FEED_KEY] = feed if feed is not None else RealtimeFeed()
    app[STARTED_AT_KEY] = time.time()
    app.on_cleanup.append(_close_feed)

    app.router.add_get("/health", health_check)
    app.router.add_post("/series", create_series_handler)
    app.router.add_post("/series/{series_id}/extend", extend_series_handler)
    app.router.add_post("/series/{series_id}/cancel", cancel_series_handler)
    app.router.add_post("/series/{series_id}/edit", edit_series_handler)
    app.router.add_post("/series/{series_id}/exceptions", series_exception_handler)
    app.router.add_post("/appointments", book_appointment_handler)
    app.router.add_post("/appointments/check", check_availability_handler)
    app.router.add_post("/appointments/{appointment_id}/reminders", add_reminder_handler)
    app.router.add_get("/providers/{provider_id}/slots", available_slots_handler)
    app.router.add_put("/patients/{patient_id}/custom-fields", custom_fields_handler)
    app.router.add_put("/preferences/tours/{tour}", complete_tour_handler)
    app.router.add_get("/events", events_handler)

    return app
