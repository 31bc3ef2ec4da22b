"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``settlement_config.schema`` dataclasses.  The single public entry point
for runtime config is ``settlement_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  parsed YAML (before environment overrides) for change detection.
* ``SETTLEMENT_DATABASE_URL`` is the only environment variable read, and
  it is read here and nowhere else.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema's ``__post_init__``.
"""

from __future__ import annotations

import hashlib
import json
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping

import yaml

from settlement_config.schema import (
    DatabaseConfig,
    InvoiceConfig,
    ListingConfig,
    SettlementConfig,
    TaxConfig,
)

DATABASE_URL_ENV = "SETTLEMENT_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _decimal(value: Any, key: str) -> Decimal:
    # YAML floats would carry binary noise; go through str.
    try:
        return Decimal(str(value))
    except ArithmeticError as exc:
        raise ValueError(f"{key} is not a decimal: {value!r}") from exc


def parse_tax(data: Mapping[str, Any]) -> TaxConfig:
    defaults = TaxConfig()
    return TaxConfig(
        rate_percent=_decimal(data.get("rate_percent", defaults.rate_percent), "tax.rate_percent"),
        quantum=_decimal(data.get("quantum", defaults.quantum), "tax.quantum"),
        rounding=data.get("rounding", defaults.rounding),
    )


def parse_invoice(data: Mapping[str, Any]) -> InvoiceConfig:
    defaults = InvoiceConfig()
    return InvoiceConfig(
        auto_number=bool(data.get("auto_number", defaults.auto_number)),
        prefix=str(data.get("prefix", defaults.prefix)),
        width=int(data.get("width", defaults.width)),
    )


def parse_database(
    data: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> DatabaseConfig:
    defaults = DatabaseConfig()
    env = os.environ if environ is None else environ
    timeout = data.get("transaction_timeout_seconds", defaults.transaction_timeout_seconds)
    return DatabaseConfig(
        url=env.get(DATABASE_URL_ENV) or data.get("url"),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        transaction_timeout_seconds=float(timeout) if timeout is not None else None,
    )


def parse_listing(data: Mapping[str, Any]) -> ListingConfig:
    defaults = ListingConfig()
    return ListingConfig(
        default_page_size=int(data.get("default_page_size", defaults.default_page_size)),
        max_page_size=int(data.get("max_page_size", defaults.max_page_size)),
    )


def parse_config(
    data: Mapping[str, Any], environ: Mapping[str, str] | None = None
) -> SettlementConfig:
    """
    Parse a whole configuration set.

    Raises:
        KeyError: if ``name`` or ``version`` is missing.
        ValueError: if any section fails validation.
    """
    return SettlementConfig(
        name=data["name"],
        version=int(data["version"]),
        tax=parse_tax(data.get("tax") or {}),
        invoice=parse_invoice(data.get("invoice") or {}),
        database=parse_database(data.get("database") or {}, environ),
        listing=parse_listing(data.get("listing") or {}),
        checksum=compute_checksum(dict(data)),
    )


def load_config_file(
    path: Path, environ: Mapping[str, str] | None = None
) -> SettlementConfig:
    return parse_config(load_yaml_file(path), environ)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
