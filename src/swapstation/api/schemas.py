"""Request and response schemas for the HTTP API."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from swapstation.db.models.enums import BatteryStatus, BookingStatus, CreditStatus, SwapStatus


class BookingCreate(BaseModel):
    """Body of a booking request."""

    vehicle_id: int
    station_id: int


class ForceCancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=255)


class MaintenanceResult(BaseModel):
    """Operator's maintenance outcome."""

    state_of_health: float


class CreditGrant(BaseModel):
    """Credit bought through a service package."""

    package_id: int
    swaps: int = Field(gt=0)
    duration_days: int = Field(gt=0)


class BookingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    driver_id: int
    vehicle_id: int
    station_id: int
    status: BookingStatus
    confirmation_code: str | None
    reserved_battery_id: int | None
    reservation_expiry: datetime | None
    confirmed_by_id: int | None
    confirmed_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None


class BatteryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    serial_number: str
    model: str
    battery_type: str
    charge_level: float
    state_of_health: float
    status: BatteryStatus
    current_station_id: int | None
    mounted_vehicle_id: int | None
    reserved_for_booking_id: int | None
    reservation_expiry: datetime | None
    usage_count: int


class SwapTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    driver_id: int
    vehicle_id: int
    station_id: int
    staff_id: int | None
    booking_id: int | None
    swap_out_battery_id: int
    swap_out_battery_model: str | None
    swap_out_battery_charge_level: float | None
    swap_out_battery_health: float | None
    swap_in_battery_id: int | None
    swap_in_battery_model: str | None
    swap_in_battery_charge_level: float | None
    swap_in_battery_health: float | None
    start_time: datetime
    end_time: datetime | None
    status: SwapStatus


class CreditResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    driver_id: int
    package_id: int
    start_date: date
    end_date: date
    status: CreditStatus
    remaining_swaps: int


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    details: dict = {}
