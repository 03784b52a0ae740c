from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from prebooker.domain.entities.prebooking import BookingIntent, PreBooking


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BookingIntentSchema(_CamelModel):
    day: str = Field(pattern=r"^\d{8}$")
    slot_id: str = Field(alias="id", min_length=1)
    family_id: str = Field(default="", alias="familyId")
    insist: bool = False
    class_name: str | None = Field(default=None, alias="className")

    def to_intent(self, class_time_utc: datetime | None = None) -> BookingIntent:
        return BookingIntent(
            day=self.day,
            slot_id=self.slot_id,
            family_id=self.family_id,
            insist=self.insist,
            class_name=self.class_name,
            class_time_utc=class_time_utc.isoformat() if class_time_utc else None,
        )


class AttemptBookingRequestSchema(_CamelModel):
    venue_ref: str = Field(alias="venueRef", min_length=1)
    booking: BookingIntentSchema
    class_time_utc: datetime | None = Field(default=None, alias="classTimeUTC")
    class_local_time: str | None = Field(default=None, alias="classLocalTime", pattern=r"^\d{1,2}:\d{2}$")


class CreatePreBookingRequestSchema(AttemptBookingRequestSchema):
    rejection_message: str = Field(alias="rejectionMessage", min_length=1)


class ExecutionTimingSchema(_CamelModel):
    fire_latency_ms: float | None = Field(default=None, serialization_alias="fireLatencyMs")
    wait_variance_ms: float | None = Field(default=None, serialization_alias="waitVarianceMs")
    prep_ms: float | None = Field(default=None, serialization_alias="prepMs")
    upstream_ms: float | None = Field(default=None, serialization_alias="upstreamMs")


class PreBookingResultSchema(_CamelModel):
    success: bool
    executed_at: datetime = Field(serialization_alias="executedAt")
    booking_id: str | None = Field(default=None, serialization_alias="bookingId")
    message: str | None = None
    status_code: int | None = Field(default=None, serialization_alias="bookState")
    already_booked_manually: bool = Field(default=False, serialization_alias="alreadyBookedManually")
    timing: ExecutionTimingSchema | None = None


class PreBookingSchema(_CamelModel):
    id: str
    venue_ref: str = Field(serialization_alias="venueRef")
    booking_data: dict[str, Any] = Field(serialization_alias="bookingData")
    available_at: datetime = Field(serialization_alias="availableAt")
    status: str
    result: PreBookingResultSchema | None = None
    error_message: str | None = Field(default=None, serialization_alias="errorMessage")
    created_at: datetime = Field(serialization_alias="createdAt")
    executed_at: datetime | None = Field(default=None, serialization_alias="executedAt")

    @classmethod
    def from_entity(cls, prebooking: PreBooking) -> "PreBookingSchema":
        result = None
        if prebooking.result is not None:
            r = prebooking.result
            result = PreBookingResultSchema(
                success=r.success,
                executed_at=r.executed_at,
                booking_id=r.booking_id,
                message=r.message,
                status_code=r.status_code,
                already_booked_manually=r.already_booked_manually,
                timing=ExecutionTimingSchema(
                    fire_latency_ms=r.timing.fire_latency_ms,
                    wait_variance_ms=r.timing.wait_variance_ms,
                    prep_ms=r.timing.prep_ms,
                    upstream_ms=r.timing.upstream_ms,
                ),
            )
        return cls(
            id=prebooking.id,
            venue_ref=prebooking.venue_ref,
            booking_data=prebooking.booking_intent.to_dict(),
            available_at=prebooking.available_at,
            status=prebooking.status.value,
            result=result,
            error_message=prebooking.error_message,
            created_at=prebooking.created_at,
            executed_at=prebooking.executed_at,
        )


class PreBookingListResponseSchema(BaseModel):
    success: bool = True
    prebookings: list[PreBookingSchema]


class AttemptBookingResponseSchema(_CamelModel):
    success: bool
    message: str
    book_state: int | None = Field(default=None, serialization_alias="bookState")
    booking_id: str | None = Field(default=None, serialization_alias="bookingId")
    already_booked_manually: bool = Field(default=False, serialization_alias="alreadyBookedManually")
    error: str | None = None
    prebooking: PreBookingSchema | None = None


class CancelResponseSchema(BaseModel):
    success: bool = True
    message: str = "Prebooking canceled successfully"
