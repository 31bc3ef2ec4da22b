"""
Tax policy -- per-line VAT computation.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Tax is computed per line and quantized once per line; totals are sums
      of already-rounded line taxes, so a recompute over the same rows is
      always byte-identical.
    - A tax-exempt bundle carries zero tax on every line.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

DEFAULT_TAX_RATE = Decimal("0.10")
DEFAULT_QUANTUM = Decimal("0.01")


@dataclass(frozen=True)
class TaxPolicy:
    """
    Flat-rate tax with fixed quantization.

    Contract:
        ``tax_for(amount)`` returns ``quantize(amount * rate)`` using the
        configured quantum and rounding mode.  Negative amounts are taxed
        symmetrically (the sign is applied after rounding the magnitude).

    Guarantees:
        - rate is within [0, 1].
        - quantum is a positive power of ten.
    """

    rate: Decimal = DEFAULT_TAX_RATE
    quantum: Decimal = DEFAULT_QUANTUM
    rounding: str = ROUND_HALF_UP

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.rate <= Decimal("1")):
            raise ValueError(f"Tax rate must be between 0 and 1, got {self.rate}")
        if self.quantum <= 0:
            raise ValueError(f"Tax quantum must be positive, got {self.quantum}")

    def quantize(self, amount: Decimal) -> Decimal:
        return amount.quantize(self.quantum, rounding=self.rounding)

    def tax_for(self, amount: Decimal, exempt: bool = False) -> Decimal:
        if exempt:
            return self.quantize(Decimal("0"))
        magnitude = self.quantize(abs(amount) * self.rate)
        return -magnitude if amount < 0 else magnitude

    @classmethod
    def from_percent(cls, percent: Decimal | int | str, **kwargs) -> "TaxPolicy":
        """Build a policy from a percentage such as ``10``."""
        return cls(rate=Decimal(str(percent)) / Decimal("100"), **kwargs)
