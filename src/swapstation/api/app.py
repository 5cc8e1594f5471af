"""HTTP API for bookings, redemption and battery operations.

Each endpoint runs one transaction. Notifications produced by an operation
are delivered as a background task once the transaction has committed.
"""

import random
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

import structlog
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

from swapstation import __version__
from swapstation.api.schemas import (
    BatteryResponse,
    BookingCreate,
    BookingResponse,
    CreditGrant,
    CreditResponse,
    ErrorResponse,
    ForceCancelRequest,
    MaintenanceResult,
    SwapTransactionResponse,
)
from swapstation.config.settings import Settings, get_settings
from swapstation.db.engine import create_engine, create_tables, get_session
from swapstation.db.models.enums import BatteryStatus, UserRole
from swapstation.services.battery_store import BatteryStore
from swapstation.services.bookings import BookingManager
from swapstation.services.identity import Identity
from swapstation.services.ledger import CreditLedger
from swapstation.services.notifications import Notifier, Outbox, build_notifier
from swapstation.services.swaps import SwapEngine
from swapstation.utils.exceptions import NotFoundError, SwapStationError

logger = structlog.get_logger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


@dataclass
class AppContext:
    """Collaborators shared by all requests."""

    settings: Settings
    engine: Engine
    notifier: Notifier
    clock: Callable[[], datetime] = datetime.now
    rng: random.Random | None = None


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_identity(
    x_user_id: int | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Identity:
    """Read the caller identity forwarded by the authentication gateway."""
    if x_user_id is None or not x_user_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity")
    try:
        role = UserRole(x_user_role.upper())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role: {x_user_role}"
        ) from None
    return Identity(user_id=x_user_id, role=role)


async def swapstation_error_handler(request: Request, exc: SwapStationError) -> JSONResponse:
    """Map domain errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error_code=exc.error_code, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": exc.error_code, "message": exc.message, "details": exc.details},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTPException in the same shape as domain errors."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
    }
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code_map.get(exc.status_code, "ERR_HTTP"),
            "message": exc.detail,
            "details": {},
        },
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error_code": "ERR_REQUEST_VALIDATION",
            "message": "Request validation error",
            "details": {"errors": exc.errors()},
        },
    )


def create_app(
    settings: Settings | None = None,
    engine: Engine | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = datetime.now,
    rng: random.Random | None = None,
) -> FastAPI:
    """Build the API application.

    Args:
        settings: Application settings (loaded from the environment if omitted).
        engine: SQLAlchemy engine (created from settings if omitted).
        notifier: Notification channel (built from settings if omitted).
        clock: Source of the current time.
        rng: Random source for codes and simulated discharge.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    engine = engine or create_engine(settings)
    context = AppContext(
        settings=settings,
        engine=engine,
        notifier=notifier or build_notifier(settings),
        clock=clock,
        rng=rng,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_tables(engine)
        logger.info("API started", database_url=settings.database_url)
        yield

    app = FastAPI(
        title="Swap Station",
        version=__version__,
        description="Battery swap reservation and exchange API",
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_exception_handler(SwapStationError, swapstation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    def dispatch(ctx: AppContext, outbox: Outbox, background: BackgroundTasks) -> None:
        if len(outbox):
            background.add_task(outbox.flush, ctx.notifier)

    @app.get("/health", tags=["Health"])
    def health() -> dict:
        return {"status": "ok", "version": __version__}

    @app.post(
        "/bookings",
        response_model=BookingResponse,
        status_code=status.HTTP_201_CREATED,
        responses=ERROR_RESPONSES,
        tags=["Bookings"],
    )
    def create_booking(
        body: BookingCreate,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> BookingResponse:
        """Request a battery exchange at a station (driver)."""
        with get_session(ctx.engine) as session:
            manager = BookingManager(session, ctx.settings, ctx.clock, ctx.rng)
            booking = manager.create(identity, body.vehicle_id, body.station_id)
            return BookingResponse.model_validate(booking)

    @app.get("/bookings/{booking_id}", response_model=BookingResponse, responses=ERROR_RESPONSES, tags=["Bookings"])
    def get_booking(
        booking_id: int,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> BookingResponse:
        with get_session(ctx.engine) as session:
            booking = BookingManager(session, ctx.settings, ctx.clock).get(booking_id, identity)
            return BookingResponse.model_validate(booking)

    @app.get(
        "/drivers/{driver_id}/bookings",
        response_model=list[BookingResponse],
        responses=ERROR_RESPONSES,
        tags=["Bookings"],
    )
    def list_driver_bookings(
        driver_id: int,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> list[BookingResponse]:
        with get_session(ctx.engine) as session:
            bookings = BookingManager(session, ctx.settings, ctx.clock).list_for_driver(driver_id, identity)
            return [BookingResponse.model_validate(b) for b in bookings]

    @app.post(
        "/bookings/{booking_id}/confirm",
        response_model=BookingResponse,
        responses={**ERROR_RESPONSES, 500: {"model": ErrorResponse}},
        tags=["Bookings"],
    )
    def confirm_booking(
        booking_id: int,
        background: BackgroundTasks,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> BookingResponse:
        """Confirm a booking, reserve a battery and issue its code (staff)."""
        outbox = Outbox()
        with get_session(ctx.engine) as session:
            manager = BookingManager(session, ctx.settings, ctx.clock, ctx.rng, outbox=outbox)
            booking = manager.confirm(booking_id, identity)
            response = BookingResponse.model_validate(booking)
        dispatch(ctx, outbox, background)
        return response

    @app.patch(
        "/bookings/{booking_id}/cancel",
        response_model=BookingResponse,
        responses=ERROR_RESPONSES,
        tags=["Bookings"],
    )
    def cancel_booking(
        booking_id: int,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> BookingResponse:
        """Cancel a booking that is still PENDING."""
        with get_session(ctx.engine) as session:
            booking = BookingManager(session, ctx.settings, ctx.clock).cancel(booking_id, identity)
            return BookingResponse.model_validate(booking)

    @app.post(
        "/bookings/{booking_id}/force-cancel",
        response_model=BookingResponse,
        responses=ERROR_RESPONSES,
        tags=["Bookings"],
    )
    def force_cancel_booking(
        booking_id: int,
        background: BackgroundTasks,
        body: ForceCancelRequest | None = None,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> BookingResponse:
        """Cancel a PENDING or CONFIRMED booking and free its battery (staff)."""
        outbox = Outbox()
        with get_session(ctx.engine) as session:
            manager = BookingManager(session, ctx.settings, ctx.clock, outbox=outbox)
            booking = manager.force_cancel(booking_id, identity, body.reason if body else None)
            response = BookingResponse.model_validate(booking)
        dispatch(ctx, outbox, background)
        return response

    @app.post(
        "/swap/redeem",
        response_model=SwapTransactionResponse,
        responses=ERROR_RESPONSES,
        tags=["Swap"],
    )
    def redeem(
        code: str = Query(..., min_length=6, max_length=6),
        ctx: AppContext = Depends(get_context),
    ) -> SwapTransactionResponse:
        """Redeem a confirmation code and execute the exchange (public)."""
        with get_session(ctx.engine) as session:
            transaction = SwapEngine(session, ctx.settings, ctx.clock, ctx.rng).redeem(code)
            return SwapTransactionResponse.model_validate(transaction)

    @app.get(
        "/vehicles/{vehicle_id}/swaps",
        response_model=list[SwapTransactionResponse],
        responses=ERROR_RESPONSES,
        tags=["Swap"],
    )
    def vehicle_swaps(
        vehicle_id: int,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> list[SwapTransactionResponse]:
        with get_session(ctx.engine) as session:
            swaps = SwapEngine(session, ctx.settings, ctx.clock)
            if not identity.is_staff:
                vehicle = swaps.vehicles.require(vehicle_id)
                if vehicle.driver_id != identity.user_id:
                    raise NotFoundError("Vehicle", vehicle_id)
            return [SwapTransactionResponse.model_validate(t) for t in swaps.history_for_vehicle(vehicle_id)]

    @app.get("/batteries", response_model=list[BatteryResponse], responses=ERROR_RESPONSES, tags=["Batteries"])
    def list_batteries(
        status_filter: BatteryStatus | None = Query(default=None, alias="status"),
        station_id: int | None = None,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> list[BatteryResponse]:
        identity.require_staff()
        with get_session(ctx.engine) as session:
            store = BatteryStore(session, ctx.settings, ctx.clock)
            if status_filter is not None:
                units = store.batteries.list_by_status(status_filter, station_id=station_id)
            else:
                units = [
                    u
                    for u in store.batteries.get_all()
                    if station_id is None or u.current_station_id == station_id
                ]
            return [BatteryResponse.model_validate(u) for u in units]

    @app.get(
        "/batteries/{battery_id}/swaps",
        response_model=list[SwapTransactionResponse],
        responses=ERROR_RESPONSES,
        tags=["Batteries"],
    )
    def battery_swaps(
        battery_id: int,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> list[SwapTransactionResponse]:
        identity.require_staff()
        with get_session(ctx.engine) as session:
            history = SwapEngine(session, ctx.settings, ctx.clock).history_for_battery(battery_id)
            return [SwapTransactionResponse.model_validate(t) for t in history]

    @app.post(
        "/batteries/{battery_id}/maintenance",
        response_model=BatteryResponse,
        responses=ERROR_RESPONSES,
        tags=["Batteries"],
    )
    def complete_maintenance(
        battery_id: int,
        body: MaintenanceResult,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> BatteryResponse:
        """Record a maintenance result and return the unit to service if healthy (staff)."""
        with get_session(ctx.engine) as session:
            store = BatteryStore(session, ctx.settings, ctx.clock)
            unit = store.complete_maintenance(battery_id, body.state_of_health, identity)
            return BatteryResponse.model_validate(unit)

    @app.get(
        "/drivers/{driver_id}/credit",
        response_model=CreditResponse,
        responses=ERROR_RESPONSES,
        tags=["Credits"],
    )
    def get_credit(
        driver_id: int,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> CreditResponse:
        if not identity.is_staff and identity.user_id != driver_id:
            raise NotFoundError("Subscription credit for driver", driver_id)
        with get_session(ctx.engine) as session:
            credit = CreditLedger(session, ctx.clock).get_active(driver_id)
            if credit is None:
                raise NotFoundError("Subscription credit for driver", driver_id)
            return CreditResponse.model_validate(credit)

    @app.post(
        "/drivers/{driver_id}/credits",
        response_model=CreditResponse,
        status_code=status.HTTP_201_CREATED,
        responses=ERROR_RESPONSES,
        tags=["Credits"],
    )
    def grant_credit(
        driver_id: int,
        body: CreditGrant,
        ctx: AppContext = Depends(get_context),
        identity: Identity = Depends(get_identity),
    ) -> CreditResponse:
        """Open a credit after a package purchase (called by the payment collaborator)."""
        identity.require_staff()
        with get_session(ctx.engine) as session:
            credit = CreditLedger(session, ctx.clock).grant(
                driver_id, body.package_id, body.swaps, body.duration_days
            )
            return CreditResponse.model_validate(credit)

    return app
