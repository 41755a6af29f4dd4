"""FastAPI application for Gather."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from .checkin import CheckInResult, check_in, check_in_by_qr
from .config import settings
from .crud import (
    create_event,
    delete_event,
    list_owned_events,
    list_published_events,
    require_event,
    require_owner,
    update_event,
)
from .dashboard import build_dashboard, export_csv
from .database import SessionLocal
from .errors import GatherError, NotFound
from .ledger import cancel, join_waitlist, register
from .models import Attendee, Event, WaitlistEntry
from .storage import init_db
from .utils import isoformat_or_none

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

USER_HEADER = "x-gather-user"


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("gather")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(title="Gather", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_requester_id(request: Request) -> str | None:
    """Return the signed-in user's id as provided by the session layer."""
    value = (request.headers.get(USER_HEADER) or "").strip()
    return value or None


@app.exception_handler(GatherError)
async def gather_error_handler(request: Request, exc: GatherError):
    return JSONResponse(exc.as_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    lower = raw.lower()
    if "database is locked" in lower:
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


def event_url(event: Event) -> str:
    return f"{settings.public_base_url}/event/{event.slug}"


def _serialize_event(event: Event, *, include_counts: bool = False):
    payload = {
        "id": event.id,
        "slug": event.slug,
        "url": event_url(event),
        "title": event.title,
        "description": event.description,
        "date": event.date,
        "start_time": event.start_time,
        "end_time": event.end_time,
        "location": event.location,
        "capacity": event.capacity,
        "price": event.price,
        "ticket_type": event.ticket_type,
        "cover_image": event.cover_image,
        "host_name": event.host_name,
        "host_email": event.host_email,
        "status": event.status,
        "owner_id": event.owner_id,
        "created_at": event.created_at.isoformat(),
    }
    if include_counts:
        rsvp_count = event.rsvp_count
        payload["rsvp_count"] = rsvp_count
        payload["spots_left"] = max(event.capacity - rsvp_count, 0)
    return payload


def _serialize_attendee(attendee: Attendee, *, include_qr: bool = False):
    payload = {
        "id": attendee.id,
        "event_id": attendee.event_id,
        "name": attendee.name,
        "email": attendee.email,
        "status": attendee.status,
        "checked_in": attendee.checked_in,
        "checked_in_at": isoformat_or_none(attendee.checked_in_at),
        "cancelled": attendee.cancelled,
        "created_at": attendee.created_at.isoformat(),
    }
    if include_qr:
        payload["qr_payload"] = attendee.qr_payload
        payload["qr_code"] = attendee.qr_code
    return payload


def _serialize_waitlist_entry(entry: WaitlistEntry, position: int | None = None):
    payload = {
        "id": entry.id,
        "name": entry.name,
        "email": entry.email,
        "notified": entry.notified,
        "notified_at": isoformat_or_none(entry.notified_at),
        "created_at": entry.created_at.isoformat(),
    }
    if position is not None:
        payload["position"] = position
    return payload


def _check_in_response(result: CheckInResult):
    message = (
        "Already checked in" if result.already_checked_in else "Checked in successfully"
    )
    attendee = result.attendee
    payload = _serialize_attendee(attendee)
    payload["event_title"] = attendee.event.title if attendee.event else None
    return {
        "success": True,
        "message": message,
        "already_checked_in": result.already_checked_in,
        "attendee": payload,
    }


class EventCreatePayload(BaseModel):
    title: str = Field(..., min_length=1)
    date: str = Field(..., min_length=1, description="YYYY-MM-DD")
    start_time: str = Field(..., min_length=1, description="HH:MM")
    end_time: str = Field(..., min_length=1, description="HH:MM")
    location: str = Field(..., min_length=1)
    description: str | None = None
    slug: str | None = None
    capacity: int | None = Field(None, ge=0)
    price: float | None = Field(None, ge=0)
    ticket_type: str | None = None
    cover_image: str | None = None
    host_name: str | None = None
    host_email: str | None = None
    status: str | None = None


class EventUpdatePayload(BaseModel):
    title: str | None = Field(None, min_length=1)
    date: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    location: str | None = None
    description: str | None = None
    capacity: int | None = Field(None, ge=0)
    price: float | None = Field(None, ge=0)
    ticket_type: str | None = None
    cover_image: str | None = None
    host_name: str | None = None
    host_email: str | None = None
    status: str | None = None


class RegistrationPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., min_length=3, max_length=255)


class CancelPayload(BaseModel):
    token: str


class QRCheckInPayload(BaseModel):
    qr_data: str | None = Field(
        None, validation_alias=AliasChoices("qr_data", "qrData")
    )


# -------- Events --------


@app.get("/api/events")
def api_list_events(db: Session = Depends(get_db)):
    return [_serialize_event(e) for e in list_published_events(db)]


@app.get("/api/me/events")
def api_my_events(
    requester_id: str | None = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    if not requester_id:
        raise HTTPException(status_code=401, detail="Sign in to see your events")
    return [
        _serialize_event(e, include_counts=True)
        for e in list_owned_events(db, requester_id)
    ]


@app.post("/api/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    requester_id: str | None = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    data = payload.model_dump()
    try:
        event = create_event(db, owner_id=requester_id, **data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    logger.info("Created event %s (%s)", event.id, event.slug)
    return {"id": event.id, "slug": event.slug}


@app.get("/api/events/{slug}")
def api_get_event(slug: str, db: Session = Depends(get_db)):
    event = require_event(db, slug)
    return _serialize_event(event, include_counts=True)


@app.patch("/api/events/{slug}")
def api_update_event(
    slug: str,
    payload: EventUpdatePayload,
    requester_id: str | None = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    event = require_event(db, slug)
    require_owner(event, requester_id)
    try:
        update_event(db, event, **payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return _serialize_event(event, include_counts=True)


@app.delete("/api/events/{slug}", status_code=204)
def api_delete_event(
    slug: str,
    requester_id: str | None = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    event = require_event(db, slug)
    require_owner(event, requester_id)
    delete_event(db, event)
    db.commit()
    logger.info("Deleted event %s (%s)", event.id, slug)
    return Response(status_code=204)


# -------- Registration --------


@app.post("/api/events/{slug}/register")
def api_register(
    slug: str, payload: RegistrationPayload, db: Session = Depends(get_db)
):
    event = require_event(db, slug)
    try:
        result = register(db, event, name=payload.name, email=payload.email)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    attendee = result.attendee
    return {
        **_serialize_attendee(attendee, include_qr=True),
        "cancel_token": attendee.cancel_token,
        "reactivated": result.reactivated,
        "event": _serialize_event(event),
    }


@app.post("/api/attendees/{attendee_id}/cancel")
def api_cancel(
    attendee_id: str, payload: CancelPayload, db: Session = Depends(get_db)
):
    cancel(db, attendee_id, payload.token)
    return {"ok": True}


@app.post("/api/events/{slug}/waitlist", status_code=201)
def api_join_waitlist(
    slug: str, payload: RegistrationPayload, db: Session = Depends(get_db)
):
    event = require_event(db, slug)
    try:
        result = join_waitlist(db, event, name=payload.name, email=payload.email)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"id": result.entry.id, "position": result.position}


@app.get("/api/attendees/{attendee_id}")
def api_get_attendee(attendee_id: str, db: Session = Depends(get_db)):
    attendee = db.get(Attendee, attendee_id)
    if not attendee:
        raise NotFound("Attendee not found")
    return {
        **_serialize_attendee(attendee, include_qr=True),
        "event": _serialize_event(attendee.event),
    }


# -------- Check-in --------


@app.post("/api/attendees/{attendee_id}/checkin")
def api_check_in(attendee_id: str, db: Session = Depends(get_db)):
    return _check_in_response(check_in(db, attendee_id))


@app.post("/api/checkin/qr")
def api_check_in_qr(payload: QRCheckInPayload, db: Session = Depends(get_db)):
    return _check_in_response(check_in_by_qr(db, payload.qr_data))


# -------- Dashboard --------


@app.get("/api/events/{slug}/dashboard")
def api_dashboard(
    slug: str,
    requester_id: str | None = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    event = require_event(db, slug)
    dashboard = build_dashboard(db, event, requester_id)
    return {
        "event": _serialize_event(event),
        "attendees": [_serialize_attendee(a) for a in dashboard.attendees],
        "total": dashboard.total,
        "checked_in": dashboard.checked_in,
        "waitlist_count": dashboard.waitlist_count,
        "waitlist": [
            _serialize_waitlist_entry(entry, position)
            for position, entry in enumerate(dashboard.waitlist, start=1)
        ],
        "checkin_times": [t.isoformat() for t in dashboard.checkin_times],
    }


@app.get("/api/events/{slug}/export.csv")
def api_export_csv(
    slug: str,
    requester_id: str | None = Depends(get_requester_id),
    db: Session = Depends(get_db),
):
    event = require_event(db, slug)
    csv_text = export_csv(db, event, requester_id)
    filename = f"{event.slug}-attendees.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=csv_text, media_type="text/csv", headers=headers)
