"""
settlement_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration sits beside ``settlement_kernel``; the kernel never
    imports from here.  ``settlement_api`` reads the config once at start-up
    and hands the relevant pieces (tax policy, invoice numbering, listing
    limits) to the services.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``ValueError`` -- schema validation failure.

Audit relevance:
    Every successful call emits a ``settlement_config_loaded`` log entry
    with the set name, version and checksum, which ties a running process
    to the exact tax and numbering rules it applied.
"""

from __future__ import annotations

from pathlib import Path

from settlement_config.loader import load_config_file
from settlement_config.schema import (
    DatabaseConfig,
    InvoiceConfig,
    ListingConfig,
    SettlementConfig,
    TaxConfig,
)
from settlement_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    name: str = "default",
    config_dir: Path | None = None,
) -> SettlementConfig:
    """The ONLY public configuration entrypoint.

    Args:
        name: Configuration set name; resolves to ``<config_dir>/<name>.yaml``.
        config_dir: Override path to the configuration sets directory.
            Defaults to settlement_config/sets/.

    Raises:
        FileNotFoundError: If the set does not exist.
        ValueError: If validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    config = load_config_file(path)

    _logger.info(
        "settlement_config_loaded",
        extra={
            "config_name": config.name,
            "config_version": config.version,
            "checksum": config.checksum,
            "tax_rate_percent": str(config.tax.rate_percent),
            "invoice_auto_number": config.invoice.auto_number,
        },
    )
    return config


__all__ = [
    "get_active_config",
    "SettlementConfig",
    "TaxConfig",
    "InvoiceConfig",
    "DatabaseConfig",
    "ListingConfig",
]
