"""
Revenue split and cancellation arithmetic.

All amounts are ``Decimal`` and rounded half-up to two places. The policy has
no storage access, the orchestrator applies its results.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .config import Settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PaymentSplit:
    platform_cut: Decimal
    owner_cut: Decimal


@dataclass(frozen=True)
class CancellationSettlement:
    """Money movements for one cancellation.

    ``owner_delta`` and ``platform_delta`` are the net ledger changes: the
    reversal of previously credited cuts plus any penalty retained.
    """
    refund_amount: Decimal
    owner_reversal: Decimal
    platform_reversal: Decimal
    owner_penalty: Decimal = ZERO
    platform_penalty: Decimal = ZERO

    @property
    def owner_delta(self) -> Decimal:
        return self.owner_penalty - self.owner_reversal

    @property
    def platform_delta(self) -> Decimal:
        return self.platform_penalty - self.platform_reversal


@dataclass(frozen=True)
class SettlementPolicy:
    platform_cut_rate: Decimal = Decimal("0.10")
    penalty: Decimal = Decimal("50")
    penalty_owner_share: Decimal = Decimal("40")
    penalty_platform_share: Decimal = Decimal("10")

    def __post_init__(self):
        if not (0 <= self.platform_cut_rate <= 1):
            raise ValueError("platform_cut_rate must be between 0 and 1")
        if self.penalty < 0:
            raise ValueError("penalty must not be negative")
        if self.penalty_owner_share + self.penalty_platform_share != self.penalty:
            raise ValueError("penalty shares must add up to the penalty")

    @classmethod
    def from_settings(cls, settings: Settings) -> "SettlementPolicy":
        return cls(
            platform_cut_rate=Decimal(settings.PLATFORM_CUT_RATE),
            penalty=Decimal(settings.CANCELLATION_PENALTY),
            penalty_owner_share=Decimal(settings.PENALTY_OWNER_SHARE),
            penalty_platform_share=Decimal(settings.PENALTY_PLATFORM_SHARE),
        )

    def split(self, amount) -> PaymentSplit:
        # Rounding is absorbed by the owner cut so the two always add up to amount.
        amount = to_money(amount)
        platform_cut = to_money(amount * self.platform_cut_rate)
        return PaymentSplit(platform_cut=platform_cut, owner_cut=amount - platform_cut)

    def player_cancellation(self, amount, platform_cut, owner_cut) -> CancellationSettlement:
        """Refund everything above the penalty and reverse the refunded share of the cuts."""
        amount = to_money(amount)
        refund_amount = max(ZERO, amount - to_money(self.penalty))
        if amount > 0:
            refunded_portion = refund_amount / amount
        else:
            refunded_portion = Decimal(0)
        return CancellationSettlement(
            refund_amount=refund_amount,
            owner_reversal=to_money(Decimal(owner_cut) * refunded_portion),
            platform_reversal=to_money(Decimal(platform_cut) * refunded_portion),
            owner_penalty=to_money(self.penalty_owner_share),
            platform_penalty=to_money(self.penalty_platform_share),
        )

    def owner_cancellation(self, amount, platform_cut, owner_cut) -> CancellationSettlement:
        """Full refund and full reversal, no penalty."""
        return CancellationSettlement(
            refund_amount=to_money(amount),
            owner_reversal=to_money(owner_cut),
            platform_reversal=to_money(platform_cut),
        )
