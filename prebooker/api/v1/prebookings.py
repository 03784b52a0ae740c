from fastapi import APIRouter, Depends, Header, HTTPException, Query

from prebooker.api.v1.schemas import (
    AttemptBookingRequestSchema,
    AttemptBookingResponseSchema,
    CancelResponseSchema,
    CreatePreBookingRequestSchema,
    PreBookingListResponseSchema,
    PreBookingSchema,
)
from prebooker.application.exceptions import (
    PreBookingInFlightError,
    PreBookingLimitError,
    PreBookingNotFoundError,
    SessionExpiredError,
    SessionMissingError,
)
from prebooker.application.use_cases.attempt_booking import AttemptBookingUseCase
from prebooker.application.use_cases.prebooking_lifecycle import PreBookingLifecycleUseCase
from prebooker.core.config import settings
from prebooker.wiring.dependencies import get_attempt_booking_use_case, get_lifecycle_use_case

router = APIRouter()


def require_user_ref(x_user_ref: str | None = Header(None)) -> str:
    if not x_user_ref or not x_user_ref.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Ref header")
    return x_user_ref.strip()


def _limit_detail(e: PreBookingLimitError) -> dict:
    return {
        "error": "max_prebookings_reached",
        "message": str(e),
        "currentPrebookings": e.current,
        "maxPrebookings": e.maximum,
    }


@router.post("/bookings", response_model=AttemptBookingResponseSchema, response_model_exclude_none=True)
async def attempt_booking(
    req: AttemptBookingRequestSchema,
    user_ref: str = Depends(require_user_ref),
    uc: AttemptBookingUseCase = Depends(get_attempt_booking_use_case),
):
    try:
        result = await uc.attempt(
            user_ref=user_ref,
            venue_ref=req.venue_ref,
            intent=req.booking.to_intent(req.class_time_utc),
            class_instant_utc=req.class_time_utc,
            class_local_time=req.class_local_time,
            timezone=settings.timezone_for_venue(req.venue_ref),
            is_admin=settings.is_admin(user_ref),
        )
    except (SessionMissingError, SessionExpiredError) as e:
        raise HTTPException(status_code=401, detail=str(e))
    except PreBookingLimitError as e:
        raise HTTPException(status_code=400, detail=_limit_detail(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    outcome = result.outcome
    return AttemptBookingResponseSchema(
        success=outcome.success,
        message=outcome.message,
        book_state=outcome.status_code,
        booking_id=outcome.booking_id,
        already_booked_manually=outcome.already_booked_manually,
        error="early_booking" if result.early_booking else None,
        prebooking=PreBookingSchema.from_entity(result.prebooking) if result.prebooking else None,
    )


@router.post("/prebookings", response_model=PreBookingSchema, status_code=201)
async def create_prebooking(
    req: CreatePreBookingRequestSchema,
    user_ref: str = Depends(require_user_ref),
    uc: PreBookingLifecycleUseCase = Depends(get_lifecycle_use_case),
):
    try:
        prebooking = await uc.create_from_rejection(
            user_ref=user_ref,
            venue_ref=req.venue_ref,
            intent=req.booking.to_intent(req.class_time_utc),
            rejection_message=req.rejection_message,
            class_instant_utc=req.class_time_utc,
            class_local_time=req.class_local_time,
            timezone=settings.timezone_for_venue(req.venue_ref),
            is_admin=settings.is_admin(user_ref),
        )
    except PreBookingLimitError as e:
        raise HTTPException(status_code=400, detail=_limit_detail(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return PreBookingSchema.from_entity(prebooking)


@router.get("/prebookings", response_model=PreBookingListResponseSchema)
async def list_prebookings(
    venue_ref: str | None = Query(None, alias="venueRef"),
    user_ref: str = Depends(require_user_ref),
    uc: PreBookingLifecycleUseCase = Depends(get_lifecycle_use_case),
):
    prebookings = await uc.list_for_user(user_ref, venue_ref)
    return PreBookingListResponseSchema(prebookings=[PreBookingSchema.from_entity(p) for p in prebookings])


@router.delete("/prebookings/{prebooking_id}", response_model=CancelResponseSchema)
async def cancel_prebooking(
    prebooking_id: str,
    user_ref: str = Depends(require_user_ref),
    uc: PreBookingLifecycleUseCase = Depends(get_lifecycle_use_case),
):
    try:
        await uc.cancel(user_ref, prebooking_id)
    except PreBookingNotFoundError:
        raise HTTPException(status_code=404, detail="Prebooking not found")
    except PreBookingInFlightError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return CancelResponseSchema()
