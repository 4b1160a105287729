from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..database import get_db
from ..dependencies import (
    CallerIdentity,
    get_current_caller,
    get_orchestrator,
    rate_limit,
    require_role,
)
from ..orchestrator import BookingOrchestrator, CancellationResult

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _cancellation_response(message: str, result: CancellationResult) -> schemas.CancellationRead:
    return schemas.CancellationRead(
        message=message,
        booking_id=result.booking_id,
        status=result.status,
        refund_amount=result.settlement.refund_amount if result.settlement else None,
        refund_issued=result.refund_issued,
    )


@router.post("/", response_model=schemas.BookingCreated, status_code=status.HTTP_201_CREATED)
def request_booking(
        booking: schemas.BookingCreate,
        caller: Annotated[CallerIdentity, Depends(require_role("player"))],
        orchestrator: BookingOrchestrator = Depends(get_orchestrator),
        limit: None = Depends(rate_limit(times=30, minutes=1))
):
    """
    Reserve a slot for the authenticated player and open a payment order for it.
    """
    result = orchestrator.request_booking(slot_id=booking.slot_id, requester_id=caller.user_id)
    order = result.order
    return schemas.BookingCreated(
        booking_id=result.booking_id,
        order_handle=schemas.OrderHandle(
            order_id=order.order_id,
            amount=order.amount,
            currency=order.currency,
            key_id=order.key_id,
        ),
    )


@router.get("/", response_model=List[schemas.BookingRead])
def read_user_bookings(
        caller: Annotated[CallerIdentity, Depends(get_current_caller)],
        db: Session = Depends(get_db),
        status_filter: Optional[str] = Query(None, alias="status"),
        skip: int = 0,
        limit: int = 100,
):
    """
    Get all bookings requested by the authenticated user.
    """
    return crud.get_bookings_by_user(db=db, user_id=caller.user_id, status=status_filter, skip=skip, limit=limit)


@router.get("/owner", response_model=List[schemas.BookingRead])
def read_owner_bookings(
        caller: Annotated[CallerIdentity, Depends(require_role("owner"))],
        db: Session = Depends(get_db),
        status_filter: Optional[str] = Query(None, alias="status"),
        skip: int = 0,
        limit: int = 100,
):
    """
    Get bookings on slots owned by the authenticated facility owner.
    """
    return crud.get_bookings_for_owner(db=db, owner_id=caller.user_id, status=status_filter, skip=skip, limit=limit)


@router.post("/{booking_id}/cancel", response_model=schemas.CancellationRead)
def cancel_booking(
        booking_id: int,
        caller: Annotated[CallerIdentity, Depends(require_role("player"))],
        orchestrator: BookingOrchestrator = Depends(get_orchestrator),
        limit: None = Depends(rate_limit(times=10, minutes=1))
):
    result = orchestrator.cancel_by_player(booking_id=booking_id, requester_id=caller.user_id)
    return _cancellation_response("Booking cancelled successfully", result)


@router.post("/{booking_id}/abandon", response_model=schemas.CancellationRead)
def abandon_booking(
        booking_id: int,
        caller: Annotated[CallerIdentity, Depends(require_role("player"))],
        orchestrator: BookingOrchestrator = Depends(get_orchestrator),
        limit: None = Depends(rate_limit(times=10, minutes=1))
):
    result = orchestrator.abandon_booking(booking_id=booking_id, requester_id=caller.user_id)
    return _cancellation_response("Unpaid booking released", result)


@router.post("/{booking_id}/owner-cancel", response_model=schemas.CancellationRead)
def owner_cancel_booking(
        booking_id: int,
        caller: Annotated[CallerIdentity, Depends(require_role("owner"))],
        orchestrator: BookingOrchestrator = Depends(get_orchestrator),
        limit: None = Depends(rate_limit(times=10, minutes=1))
):
    result = orchestrator.cancel_by_owner(booking_id=booking_id, owner_id=caller.user_id)
    return _cancellation_response("Booking cancelled by owner", result)
