import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("turf_booking")


class AvailabilityGuard:
    """
    The only writer of ``Slot.is_available``.

    Neither method commits; the caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def claim(self, slot_id: int) -> bool:
        """
        Flips the slot to unavailable if, and only if, it is currently available.

        A single conditional UPDATE, so two concurrent claimers can never both
        see rowcount 1. Returns False if the slot was already taken.
        """
        stmt = (
            update(models.Slot)
            .where(models.Slot.id == slot_id, models.Slot.is_available.is_(True))
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        claimed = result.rowcount == 1
        if not claimed:
            logger.info(f"Claim rejected for slot {slot_id}: already unavailable.")
        return claimed

    def release(self, slot_id: int) -> None:
        """Marks the slot available again. Idempotent."""
        stmt = (
            update(models.Slot)
            .where(models.Slot.id == slot_id)
            .values(is_available=True)
            .execution_options(synchronize_session=False)
        )
        self.db.execute(stmt)
        logger.info(f"Released slot {slot_id}.")
