from typing import Annotated

from fastapi import APIRouter, Depends

from .. import schemas
from ..dependencies import CallerIdentity, get_current_caller, get_orchestrator, rate_limit
from ..orchestrator import BookingOrchestrator

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/verify", response_model=schemas.PaymentVerified)
def verify_payment(
        body: schemas.PaymentVerify,
        caller: Annotated[CallerIdentity, Depends(get_current_caller)],
        orchestrator: BookingOrchestrator = Depends(get_orchestrator),
        limit: None = Depends(rate_limit(times=30, minutes=1))
):
    """
    Confirm a booking from the gateway's signed payment callback.
    Safe to retry: a payment that is already captured is acknowledged again.
    """
    payment = orchestrator.verify_payment(
        order_id=body.order_id,
        payment_id=body.payment_id,
        signature=body.signature,
        payer_id=caller.user_id,
    )
    return schemas.PaymentVerified(ok=True, booking_id=payment.booking_id, status=payment.status)
