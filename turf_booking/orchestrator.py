"""
Booking lifecycle: request -> pending -> confirmed -> cancelled.

Every status change is a conditional UPDATE on the expected prior status, so a
verification racing a cancellation can only ever have one winner. The slot
claim is committed on its own before anything else happens; every later
failure in ``request_booking`` releases it again. Cancellation refunds are
sent to the gateway only after the cancellation has committed.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, Optional, Type

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models
from .availability import AvailabilityGuard
from .errors import (
    BookingAlreadyCancelled,
    BookingError,
    BookingNotFoundOrAlreadyCancelled,
    InvalidSignature,
    InvalidTransition,
    NotAuthorizedOrBookingNotFound,
    PayerMismatch,
    PaymentAlreadyCaptured,
    PaymentGatewayError,
    PaymentGatewayNotConfigured,
    PaymentNotFound,
    SlotNotAvailable,
    SlotNotFound,
)
from .ledger import SettlementLedger
from .models import BookingStatus, PayeeType, PaymentStatus
from .payment_gateway import GatewayOrder, PaymentGateway
from .policy import CancellationSettlement, SettlementPolicy, ZERO, to_money

logger = logging.getLogger("turf_booking")

BOOKING_CONFIRMED = "BOOKING_CONFIRMED"
BOOKING_CANCELLED = "BOOKING_CANCELLED"


@dataclass
class BookingRequestResult:
    booking_id: int
    order: GatewayOrder


@dataclass
class CancellationResult:
    booking_id: int
    status: str
    settlement: Optional[CancellationSettlement] = None
    refund_issued: bool = False


class BookingOrchestrator:
    def __init__(
            self,
            db: Session,
            gateway: Optional[PaymentGateway],
            policy: SettlementPolicy,
            platform_payee_id: str,
            currency: str = "INR",
            atomic_ledger: bool = True,
    ):
        self.db = db
        self.gateway = gateway
        self.policy = policy
        self.platform_payee_id = platform_payee_id
        self.currency = currency
        self.guard = AvailabilityGuard(db)
        self.ledger = SettlementLedger(db, atomic_increment=atomic_ledger)

    # --- Booking ---

    def request_booking(self, slot_id: int, requester_id: str) -> BookingRequestResult:
        """
        Claims the slot, records a pending booking and payment, and opens a
        gateway order for the slot price.
        """
        if self.gateway is None:
            raise PaymentGatewayNotConfigured()

        slot = crud.get_slot_for_booking(self.db, slot_id)
        if slot is None:
            raise SlotNotFound()
        payee_id = slot.owner_id
        amount = to_money(slot.price)

        try:
            claimed = self.guard.claim(slot_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        if not claimed:
            raise SlotNotAvailable()

        try:
            booking = models.Booking(slot_id=slot_id, user_id=requester_id, status=BookingStatus.PENDING)
            self.db.add(booking)
            self.db.flush()

            payment = models.Payment(
                booking_id=booking.id,
                payer_id=requester_id,
                payee_id=payee_id,
                amount=amount,
                currency=self.currency,
                status=PaymentStatus.PENDING,
            )
            self.db.add(payment)
            self.db.flush()

            order = self.gateway.create_order(amount, self.currency, receipt_ref=str(booking.id))
            payment.external_order_id = order.order_id
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._release_after_failure(slot_id)
            raise

        logger.info(f"Booking {booking.id} pending for slot {slot_id}, order {order.order_id}.")
        return BookingRequestResult(booking_id=booking.id, order=order)

    def _release_after_failure(self, slot_id: int) -> None:
        try:
            self.guard.release(slot_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to release slot {slot_id} after a failed booking request: {e}")

    # --- Payment ---

    def verify_payment(
            self, order_id: str, payment_id: str, signature: str, payer_id: Optional[str] = None
    ) -> models.Payment:
        """
        Confirms the booking behind ``order_id`` once the gateway signature checks out.

        Re-verifying a payment already captured with the same ``payment_id`` is
        a no-op that returns the stored payment.
        """
        if self.gateway is None:
            raise PaymentGatewayNotConfigured()

        if not self.gateway.verify_signature(order_id, payment_id, signature):
            logger.warning(f"Signature mismatch for order {order_id}, payment {payment_id}.")
            raise InvalidSignature()

        payment = crud.get_payment_by_order_id(self.db, order_id)
        if payment is None:
            raise PaymentNotFound()
        if payer_id is not None and payment.payer_id != payer_id:
            raise PayerMismatch()

        if payment.status != PaymentStatus.PENDING:
            return self._resolve_repeat_verification(payment, payment_id)

        split = self.policy.split(payment.amount)
        try:
            if not self._transition_booking(payment.booking_id, (BookingStatus.PENDING,), BookingStatus.CONFIRMED):
                raise InvalidTransition("Booking is no longer awaiting payment")

            captured = self.db.execute(
                update(models.Payment)
                .where(models.Payment.id == payment.id, models.Payment.status == PaymentStatus.PENDING)
                .values(
                    status=PaymentStatus.PAID,
                    external_payment_id=payment_id,
                    platform_cut=split.platform_cut,
                    owner_cut=split.owner_cut,
                    updated_at=models.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if captured.rowcount != 1:
                raise InvalidTransition("Payment is no longer pending")

            self.ledger.credit(self.platform_payee_id, PayeeType.PLATFORM, split.platform_cut)
            self.ledger.credit(payment.payee_id, PayeeType.OWNER, split.owner_cut)

            booking = crud.get_booking(self.db, payment.booking_id)
            crud.create_booking_event_in_outbox(
                self.db, BOOKING_CONFIRMED, self._event_payload(booking, payment, BookingStatus.CONFIRMED)
            )
            self.db.commit()
        except InvalidTransition:
            self.db.rollback()
            # A duplicate delivery may have won the race
            payment = crud.get_payment_by_order_id(self.db, order_id)
            if payment is not None and payment.status == PaymentStatus.PAID:
                return self._resolve_repeat_verification(payment, payment_id)
            logger.error(
                f"Payment {payment_id} for order {order_id} arrived after its booking left 'pending'. "
                f"Needs manual refund."
            )
            raise
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(payment)
        logger.info(
            f"Payment {payment_id} captured for booking {payment.booking_id}: "
            f"platform {split.platform_cut}, owner {split.owner_cut}."
        )
        return payment

    def _resolve_repeat_verification(self, payment: models.Payment, payment_id: str) -> models.Payment:
        if payment.status == PaymentStatus.PAID:
            if payment.external_payment_id == payment_id:
                logger.info(f"Payment {payment_id} already captured, nothing to do.")
                return payment
            raise PaymentAlreadyCaptured()
        raise InvalidTransition("Payment was already refunded")

    # --- Cancellation ---

    def cancel_by_player(self, booking_id: int, requester_id: str) -> CancellationResult:
        """
        Player backs out of a confirmed booking. Everything above the penalty is
        refunded, the refunded share of the cuts is reversed, and the penalty is
        credited to the owner and the platform.
        """
        booking = crud.get_booking(self.db, booking_id)
        if booking is None or booking.user_id != requester_id or booking.status != BookingStatus.CONFIRMED:
            raise BookingNotFoundOrAlreadyCancelled()

        return self._cancel(
            booking,
            expected=(BookingStatus.CONFIRMED,),
            new_status=BookingStatus.CANCELLED_BY_USER,
            settle=self.policy.player_cancellation,
            lost_race=BookingNotFoundOrAlreadyCancelled,
        )

    def cancel_by_owner(self, booking_id: int, owner_id: str) -> CancellationResult:
        """Owner withdraws a booking on their own slot. Full refund, no penalty."""
        booking = crud.get_booking_for_owner(self.db, booking_id, owner_id)
        if booking is None:
            raise NotAuthorizedOrBookingNotFound()
        if booking.status not in BookingStatus.ACTIVE:
            raise BookingAlreadyCancelled()

        return self._cancel(
            booking,
            expected=BookingStatus.ACTIVE,
            new_status=BookingStatus.CANCELLED_BY_OWNER,
            settle=self.policy.owner_cancellation,
            lost_race=BookingAlreadyCancelled,
        )

    def abandon_booking(self, booking_id: int, requester_id: str) -> CancellationResult:
        """Player drops a booking they never paid for, freeing the slot."""
        booking = crud.get_booking(self.db, booking_id)
        if booking is None or booking.user_id != requester_id or booking.status != BookingStatus.PENDING:
            raise BookingNotFoundOrAlreadyCancelled()

        return self._cancel(
            booking,
            expected=(BookingStatus.PENDING,),
            new_status=BookingStatus.CANCELLED_BY_USER,
            settle=None,
            lost_race=BookingNotFoundOrAlreadyCancelled,
        )

    def _cancel(
            self,
            booking: models.Booking,
            expected: Iterable[str],
            new_status: str,
            settle: Optional[Callable[..., CancellationSettlement]],
            lost_race: Type[BookingError],
    ) -> CancellationResult:
        result = CancellationResult(booking_id=booking.id, status=new_status)
        slot_id = booking.slot_id
        refund_payment = None
        try:
            if not self._transition_booking(booking.id, expected, new_status):
                raise lost_race()

            payment = crud.get_payment_for_booking(self.db, booking.id)
            if settle is not None and payment is not None and payment.status == PaymentStatus.PAID:
                settlement = settle(payment.amount, payment.platform_cut, payment.owner_cut)
                result.settlement = settlement
                self._settle_refund(payment, settlement)
                refund_payment = payment

            self.guard.release(slot_id)
            crud.create_booking_event_in_outbox(
                self.db, BOOKING_CANCELLED, self._event_payload(booking, payment, new_status)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Booking {result.booking_id} -> {new_status}, slot {slot_id} released.")

        # The gateway is only reached once the cancellation is committed.
        if refund_payment is not None:
            result.refund_issued = self._issue_refund(refund_payment, result.settlement.refund_amount)
        return result

    def _settle_refund(self, payment: models.Payment, settlement: CancellationSettlement) -> None:
        refunded = self.db.execute(
            update(models.Payment)
            .where(models.Payment.id == payment.id, models.Payment.status == PaymentStatus.PAID)
            .values(
                status=PaymentStatus.REFUNDED,
                refunded_amount=settlement.refund_amount,
                updated_at=models.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if refunded.rowcount != 1:
            raise InvalidTransition("Payment was already refunded")

        self._post(payment.payee_id, PayeeType.OWNER, -settlement.owner_reversal)
        self._post(self.platform_payee_id, PayeeType.PLATFORM, -settlement.platform_reversal)
        self._post(payment.payee_id, PayeeType.OWNER, settlement.owner_penalty)
        self._post(self.platform_payee_id, PayeeType.PLATFORM, settlement.platform_penalty)

    def _issue_refund(self, payment: models.Payment, amount: Decimal) -> bool:
        """
        Runs after the cancellation has committed. Refund failures never undo
        it; anything not refunded here is logged for manual reconciliation.
        """
        if amount <= ZERO:
            logger.info(f"Refund for payment {payment.id} is zero, skipping gateway.")
            return False
        if self.gateway is None:
            logger.warning(
                f"Payment gateway not configured. Refund of {amount} for payment {payment.id} "
                f"needs manual reconciliation."
            )
            return False
        if not payment.external_payment_id:
            logger.warning(f"Payment {payment.id} has no external payment id, cannot refund {amount}.")
            return False
        try:
            refund_id = self.gateway.refund(payment.external_payment_id, amount)
        except PaymentGatewayError as e:
            logger.error(
                f"Refund of {amount} for payment {payment.id} ({payment.external_payment_id}) failed: {e}. "
                f"Needs manual reconciliation."
            )
            return False
        logger.info(f"Refunded {amount} for payment {payment.id}, refund {refund_id}.")
        try:
            payment.external_refund_id = refund_id
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Refund {refund_id} for payment {payment.id} was issued but not recorded: {e}")
        return True

    def _post(self, payee_id: str, payee_type: str, delta: Decimal) -> None:
        if delta != ZERO:
            self.ledger.credit(payee_id, payee_type, delta)

    # --- Helpers ---

    def _transition_booking(self, booking_id: int, expected: Iterable[str], new_status: str) -> bool:
        result = self.db.execute(
            update(models.Booking)
            .where(models.Booking.id == booking_id, models.Booking.status.in_(tuple(expected)))
            .values(status=new_status, updated_at=models.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _event_payload(self, booking: models.Booking, payment: Optional[models.Payment], status: str) -> dict:
        payload = {
            "booking_id": booking.id,
            "slot_id": booking.slot_id,
            "player_id": booking.user_id,
            "status": status,
        }
        if payment is not None:
            payload["owner_id"] = payment.payee_id
            payload["amount"] = str(payment.amount)
        return payload
