"""FastAPI facade over the booking engine.

Thin HTTP layer: parses requests, resolves the caller from a bearer JWT and
maps engine errors to status codes. All scheduling logic stays in
``slotbook.app.services``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from functools import wraps
from typing import Optional

import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from pydantic import BaseModel

from slotbook.app.core import constants
from slotbook.app.core.cache import build_cache
from slotbook.app.core.collaborators import Identity, LoggingNotifier
from slotbook.app.core.db import make_session_factory
from slotbook.app.core.logger import configure_logging
from slotbook.app.domain.errors import (
    BookingError,
    InsufficientPoints,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    SlotUnavailable,
    TrialAlreadyUsed,
    Unavailable,
)
from slotbook.app.domain.models import Appointment, UserRole
from slotbook.app.services.engine import BookingEngine
from slotbook.app.services.shared_services import ensure_utc, format_time_12h
from slotbook.app.workers.notifications import start_notification_dispatcher
from slotbook.config import EngineSettings

logger = logging.getLogger(__name__)

# JWT settings
JWT_ALGO = "HS256"
JWT_TTL_SECONDS = 3600

_STATUS_BY_ERROR: list[tuple[type[BookingError], int]] = [
    (InvalidArgument, status.HTTP_400_BAD_REQUEST),
    (InsufficientPoints, status.HTTP_402_PAYMENT_REQUIRED),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (SlotUnavailable, status.HTTP_409_CONFLICT),
    (TrialAlreadyUsed, status.HTTP_409_CONFLICT),
    (Unavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
]


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class AvailabilityResponse(BaseModel):
    barber_id: int
    date: str
    timezone: str
    slots: list[str]
    labels: list[str]
    from_cache: bool


class BookingRequest(BaseModel):
    barber_id: int
    date: str  # YYYY-MM-DD, business timezone
    time: str  # HH:MM or H:MM AM/PM
    kind: str = "STANDARD"


class AppointmentOut(BaseModel):
    id: int
    client_id: int
    barber_id: int
    starts_at: str
    ends_at: str
    local_date: str
    local_time: str
    status: str
    kind: str
    price_cents: int
    payment_status: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    hard_delete: bool = False


class StatusRequest(BaseModel):
    status: str


class OkResponse(BaseModel):
    ok: bool = True
    status: Optional[str] = None


class PointsResponse(BaseModel):
    user_id: int
    balance: int


class OpeningOut(BaseModel):
    date: str
    time: str
    label: str
    starts_at: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class JwtIdentityResolver:
    """Resolves bearer tokens issued by the identity service (HS256)."""

    def __init__(self, secret: str, algorithm: str = JWT_ALGO) -> None:
        self.secret = secret
        self.algorithm = algorithm

    def resolve_user(self, token: str) -> Identity:
        try:
            data = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from exc
        try:
            user_id = int(data.get("sub"))
            role = UserRole(str(data.get("role") or UserRole.CLIENT.value).upper())
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from exc
        return Identity(user_id=user_id, role=role)


def issue_jwt(user_id: int, role: UserRole | str, secret: str, ttl_seconds: int = JWT_TTL_SECONDS) -> str:
    role_value = role.value if isinstance(role, UserRole) else str(role).upper()
    payload = {
        "sub": str(user_id),
        "role": role_value,
        "exp": datetime.now(UTC) + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGO)


def get_booking_engine(request: Request) -> BookingEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="engine_not_ready")
    return engine


async def get_current_identity(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Identity:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_authorization")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_authorization_header")
    resolver: JwtIdentityResolver = request.app.state.identity_resolver
    return resolver.resolve_user(token)


# ---------------------------------------------------------------------------
# Error handling helpers
# ---------------------------------------------------------------------------

def _status_for(exc: BookingError) -> int:
    for cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def booking_error_handler(func):
    """Convert engine errors into HTTPException with the error code as detail."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except InsufficientPoints as exc:
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail={"code": exc.code, "required": exc.required, "available": exc.available},
            ) from exc
        except BookingError as exc:
            code = _status_for(exc)
            if code >= 500:
                logger.warning("%s failed: %s", func.__name__, exc.code)
            raise HTTPException(status_code=code, detail=exc.code) from exc

    return wrapper


def _appointment_out(engine: BookingEngine, appt: Appointment) -> AppointmentOut:
    starts_at = ensure_utc(appt.starts_at)
    day, at = engine.converter.to_local(starts_at)
    return AppointmentOut(
        id=appt.id,
        client_id=appt.client_id,
        barber_id=appt.provider_id,
        starts_at=starts_at.isoformat(),
        ends_at=ensure_utc(appt.ends_at).isoformat(),
        local_date=day.isoformat(),
        local_time=at.strftime("%H:%M"),
        status=appt.status.value,
        kind=appt.kind.value,
        price_cents=appt.price_cents,
        payment_status=appt.payment_status.value if appt.payment_status else None,
    )


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

def _build_engine_from_env() -> BookingEngine:
    settings = EngineSettings.from_env()
    cache = build_cache(
        settings.redis_url,
        ttl_seconds=settings.cache_ttl_seconds,
        timeout_seconds=settings.cache_timeout_seconds,
    )
    return BookingEngine(settings, make_session_factory(settings.database_url), cache=cache)


def create_app(engine: BookingEngine | None = None, *, jwt_secret: str | None = None) -> FastAPI:
    secret = jwt_secret if jwt_secret is not None else constants.API_JWT_SECRET

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = None
        if app.state.engine is None:
            configure_logging(constants.LOG_LEVEL_NAME)
            built = _build_engine_from_env()
            dispatcher, stop = await start_notification_dispatcher(
                LoggingNotifier(),
                workers=built.settings.notify_workers,
                queue_size=built.settings.notify_queue_size,
            )
            built.dispatcher = dispatcher
            app.state.engine = built
            logger.info("Booking API ready (timezone=%s)", built.settings.business_timezone)
        try:
            yield
        finally:
            if stop is not None:
                await stop()

    app = FastAPI(title="Slotbook API", version="0.1.0", lifespan=lifespan)
    app.state.engine = engine
    app.state.identity_resolver = JwtIdentityResolver(secret)

    @app.get("/api/availability", response_model=AvailabilityResponse)
    @booking_error_handler
    async def get_availability(
        barber_id: int = Query(..., alias="barberId"),
        date: str = Query(...),
        plan: Optional[str] = Query(default=None),
        engine: BookingEngine = Depends(get_booking_engine),
    ) -> AvailabilityResponse:
        result = await engine.get_available_slots(barber_id, date, plan)
        return AvailabilityResponse(
            barber_id=barber_id,
            date=date,
            timezone=engine.settings.business_timezone,
            slots=[s.strftime("%H:%M") for s in result.slots],
            labels=[format_time_12h(s) for s in result.slots],
            from_cache=result.from_cache,
        )

    @app.post("/api/bookings", response_model=AppointmentOut)
    @booking_error_handler
    async def create_booking(
        payload: BookingRequest,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
        identity: Identity = Depends(get_current_identity),
        engine: BookingEngine = Depends(get_booking_engine),
    ) -> AppointmentOut:
        appt = await engine.book(
            client_id=identity.user_id,
            provider_id=payload.barber_id,
            day=payload.date,
            at=payload.time,
            kind=payload.kind,
            idempotency_key=idempotency_key,
        )
        return _appointment_out(engine, appt)

    @app.post("/api/appointments/{appointment_id}/cancel", response_model=OkResponse)
    @booking_error_handler
    async def cancel_appointment(
        appointment_id: int,
        payload: CancelRequest | None = None,
        identity: Identity = Depends(get_current_identity),
        engine: BookingEngine = Depends(get_booking_engine),
    ) -> OkResponse:
        payload = payload or CancelRequest()
        await engine.cancel(appointment_id, identity, reason=payload.reason, hard_delete=payload.hard_delete)
        return OkResponse(ok=True, status="DELETED" if payload.hard_delete else "CANCELED")

    @app.patch("/api/appointments/{appointment_id}/status", response_model=OkResponse)
    @booking_error_handler
    async def update_appointment_status(
        appointment_id: int,
        payload: StatusRequest,
        identity: Identity = Depends(get_current_identity),
        engine: BookingEngine = Depends(get_booking_engine),
    ) -> OkResponse:
        appt = await engine.update_status(appointment_id, identity, payload.status)
        return OkResponse(ok=True, status=appt.status.value if appt is not None else "CANCELED")

    @app.get("/api/me/points", response_model=PointsResponse)
    @booking_error_handler
    async def my_points(
        identity: Identity = Depends(get_current_identity),
        engine: BookingEngine = Depends(get_booking_engine),
    ) -> PointsResponse:
        return PointsResponse(user_id=identity.user_id, balance=await engine.get_points_balance(identity.user_id))

    @app.get("/api/barbers/{barber_id}/next-openings", response_model=list[OpeningOut])
    @booking_error_handler
    async def next_openings(
        barber_id: int,
        limit: int = Query(default=3, ge=1, le=20),
        engine: BookingEngine = Depends(get_booking_engine),
    ) -> list[OpeningOut]:
        openings = await engine.next_openings(barber_id, limit=limit)
        return [
            OpeningOut(
                date=o.local_date.isoformat(),
                time=o.local_time.strftime("%H:%M"),
                label=format_time_12h(o.local_time),
                starts_at=o.starts_at.isoformat(),
            )
            for o in openings
        ]

    return app


app = create_app()
