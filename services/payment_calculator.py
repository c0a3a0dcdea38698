# Payment Calculator
# Split of a proposal's compensation into upfront / completion / bonus amounts.
# Pure: no database or network access.

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Dict, Any

from config.app_config import (
    TAX_RATE, PLATFORM_COMMISSION_RATE,
    DEFAULT_UPFRONT_PERCENTAGE, DEFAULT_COMPLETION_PERCENTAGE, DEFAULT_BONUS_PERCENTAGE
)
from services.errors import PaymentStructureError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _dec(value: Any) -> Decimal:
    # float config values go through str so 0.18 stays 0.18
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass(frozen=True)
class PaymentStructure:
    upfront: int = DEFAULT_UPFRONT_PERCENTAGE
    completion: int = DEFAULT_COMPLETION_PERCENTAGE
    bonus: int = DEFAULT_BONUS_PERCENTAGE

    @classmethod
    def from_campaign(cls, raw: Optional[Dict[str, Any]]) -> "PaymentStructure":
        """Build from a campaign's payment_structure JSON, falling back to defaults."""
        if not raw:
            return cls()
        try:
            structure = cls(
                upfront=int(raw.get("upfront", DEFAULT_UPFRONT_PERCENTAGE)),
                completion=int(raw.get("completion", DEFAULT_COMPLETION_PERCENTAGE)),
                bonus=int(raw.get("bonus", DEFAULT_BONUS_PERCENTAGE) or 0),
            )
        except (TypeError, ValueError) as e:
            raise PaymentStructureError(f"Payment structure percentages must be integers: {e}")
        structure.validate()
        return structure

    def validate(self) -> None:
        for name in ("upfront", "completion", "bonus"):
            value = getattr(self, name)
            if value < 0 or value > 100:
                raise PaymentStructureError(f"{name} percentage must be between 0 and 100")
        if self.upfront + self.completion != 100:
            raise PaymentStructureError("Upfront and completion percentages must add up to 100")

    @property
    def has_bonus(self) -> bool:
        return self.bonus > 0


@dataclass(frozen=True)
class PaymentSplit:
    compensation: Decimal
    tax_amount: Decimal
    total_with_tax: Decimal
    upfront_amount: Decimal
    completion_amount: Decimal
    bonus_amount: Decimal

    def amount_for(self, payment_type: str) -> Decimal:
        return {
            "upfront": self.upfront_amount,
            "completion": self.completion_amount,
            "bonus": self.bonus_amount,
        }[payment_type]


def calculate_split(
    compensation: Any,
    structure: Optional[PaymentStructure] = None,
    tax_rate: Any = TAX_RATE,
) -> PaymentSplit:
    """
    Split a compensation value into tax-inclusive payment amounts.

    compensation=10000 with the default 50/50 structure gives
    upfront = completion = 5900.00 and tax = 1800.00.
    Each part is rounded half-up on its own, so upfront + completion can
    differ from the rounded total by one minor unit.
    """
    structure = structure or PaymentStructure()
    structure.validate()

    compensation = _dec(compensation)
    if compensation < 0:
        raise PaymentStructureError("Compensation cannot be negative")
    rate = _dec(tax_rate)

    total = compensation * (1 + rate)
    total_rounded = _money(total)
    upfront = _money(total * structure.upfront / HUNDRED)
    completion = _money(total * structure.completion / HUNDRED)
    bonus = _money(total * structure.bonus / HUNDRED)

    return PaymentSplit(
        compensation=_money(compensation),
        tax_amount=_money(compensation * rate),
        total_with_tax=total_rounded,
        upfront_amount=upfront,
        completion_amount=completion,
        bonus_amount=bonus,
    )


def platform_fee_for(amount: Decimal, commission_rate: Any = PLATFORM_COMMISSION_RATE) -> Decimal:
    """Commission withheld from one payment; the creator receives amount - fee."""
    return _money(_dec(amount) * _dec(commission_rate))
