import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from . import models
from .policy import to_money

logger = logging.getLogger("turf_booking")

# Dialects whose INSERT supports ON CONFLICT DO UPDATE
_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SettlementLedger:
    """
    Running earnings per (payee_id, payee_type).

    ``credit`` takes signed deltas: positive for earnings, negative for
    reversals. Does not commit.
    """

    def __init__(self, db: Session, atomic_increment: bool = True):
        self.db = db
        self.atomic_increment = atomic_increment

    def supports_atomic_increment(self) -> bool:
        if not self.atomic_increment:
            return False
        return self.db.get_bind().dialect.name in _UPSERT_DIALECTS

    def credit(self, payee_id: str, payee_type: str, delta) -> None:
        delta = to_money(delta)
        if self.supports_atomic_increment():
            self._increment(payee_id, payee_type, delta)
        else:
            logger.info(f"Ledger using read-modify-write for {payee_type}:{payee_id}.")
            self._read_modify_write(payee_id, payee_type, delta)

    def balance(self, payee_id: str, payee_type: str) -> Decimal:
        total = self.db.scalar(
            select(models.LedgerEntry.total).where(
                models.LedgerEntry.payee_id == payee_id,
                models.LedgerEntry.payee_type == payee_type,
            )
        )
        return to_money(total or 0)

    def _increment(self, payee_id: str, payee_type: str, delta: Decimal) -> None:
        insert = _UPSERT_DIALECTS[self.db.get_bind().dialect.name]
        now = models.utcnow()
        stmt = insert(models.LedgerEntry).values(
            payee_id=payee_id,
            payee_type=payee_type,
            total=delta,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["payee_id", "payee_type"],
            set_={
                "total": models.LedgerEntry.total + stmt.excluded.total,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        # The upsert bypasses the identity map, so write pending changes first
        # and reload anything cached afterwards.
        self.db.flush()
        self.db.execute(stmt)
        self.db.expire_all()

    def _read_modify_write(self, payee_id: str, payee_type: str, delta: Decimal) -> None:
        entry = self.db.execute(
            select(models.LedgerEntry)
            .where(
                models.LedgerEntry.payee_id == payee_id,
                models.LedgerEntry.payee_type == payee_type,
            )
            .with_for_update()
        ).scalar_one_or_none()

        if entry is None:
            self.db.add(models.LedgerEntry(payee_id=payee_id, payee_type=payee_type, total=delta))
        else:
            entry.total = to_money(entry.total) + delta
            entry.updated_at = models.utcnow()
        self.db.flush()
