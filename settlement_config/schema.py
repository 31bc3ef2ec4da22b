"""
SettlementConfig schema.

Frozen dataclasses that YAML configuration sets are parsed into.  Every
section validates itself in ``__post_init__`` so an invalid set fails at
load time, never halfway through a request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP, Decimal

from settlement_kernel.domain.tax import TaxPolicy

_ROUNDING_MODES = {
    "ROUND_HALF_UP": ROUND_HALF_UP,
    "ROUND_HALF_EVEN": ROUND_HALF_EVEN,
    "ROUND_DOWN": ROUND_DOWN,
    "ROUND_UP": ROUND_UP,
}


@dataclass(frozen=True)
class TaxConfig:
    """VAT applied per line; ``rate_percent`` of 10 means 10%."""

    rate_percent: Decimal = Decimal("10")
    quantum: Decimal = Decimal("0.01")
    rounding: str = "ROUND_HALF_UP"

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.rate_percent <= Decimal("100")):
            raise ValueError(f"tax.rate_percent out of range: {self.rate_percent}")
        if self.quantum <= 0:
            raise ValueError(f"tax.quantum must be positive: {self.quantum}")
        if self.rounding not in _ROUNDING_MODES:
            raise ValueError(
                f"tax.rounding must be one of {sorted(_ROUNDING_MODES)}, "
                f"got {self.rounding!r}"
            )

    def to_policy(self) -> TaxPolicy:
        return TaxPolicy.from_percent(
            self.rate_percent,
            quantum=self.quantum,
            rounding=_ROUNDING_MODES[self.rounding],
        )


@dataclass(frozen=True)
class InvoiceConfig:
    """
    Invoice numbering.

    With ``auto_number`` off, issuing a bundle requires the caller to
    supply an invoice number.
    """

    auto_number: bool = False
    prefix: str = "INV-"
    width: int = 6

    def __post_init__(self) -> None:
        if self.width < 1 or self.width > 20:
            raise ValueError(f"invoice.width out of range: {self.width}")
        if len(self.prefix) + self.width > 50:
            raise ValueError("invoice prefix plus width exceeds 50 characters")

    def format(self, value: int) -> str:
        return f"{self.prefix}{value:0{self.width}d}"


@dataclass(frozen=True)
class DatabaseConfig:
    url: str | None = None
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    transaction_timeout_seconds: float | None = 30.0

    def __post_init__(self) -> None:
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1: {self.pool_size}")
        if (
            self.transaction_timeout_seconds is not None
            and self.transaction_timeout_seconds <= 0
        ):
            raise ValueError("database.transaction_timeout_seconds must be positive")


@dataclass(frozen=True)
class ListingConfig:
    default_page_size: int = 20
    max_page_size: int = 100

    def __post_init__(self) -> None:
        if self.default_page_size < 1:
            raise ValueError("listing.default_page_size must be >= 1")
        if self.max_page_size < self.default_page_size:
            raise ValueError("listing.max_page_size must be >= default_page_size")


@dataclass(frozen=True)
class SettlementConfig:
    """The complete runtime configuration of the settlement engine."""

    name: str
    version: int
    tax: TaxConfig = field(default_factory=TaxConfig)
    invoice: InvoiceConfig = field(default_factory=InvoiceConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    listing: ListingConfig = field(default_factory=ListingConfig)
    checksum: str = ""

    @property
    def tax_policy(self) -> TaxPolicy:
        return self.tax.to_policy()
