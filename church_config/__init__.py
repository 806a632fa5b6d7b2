"""
church_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``LedgerConfig``.

Architecture position:
    Configuration -- YAML-driven, validated on load.  The ledger kernel
    never imports from this package at runtime; PostingService receives a
    LedgerConfig from its caller.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- validation failed; the message lists every problem.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LEDGER_CONFIG_TRACE`` log entry with the organization, currency,
    posting policy and checksum.  The checksum is also written into the
    audit payload when the chart is loaded.
"""

from __future__ import annotations

import logging
from pathlib import Path

from church_config.loader import load_yaml_file, parse_config, validate_config
from church_config.schema import AccountDef, LedgerConfig, PostingPolicy, SystemAccounts

_logger = logging.getLogger("church_ledger.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

__all__ = [
    "AccountDef",
    "DEFAULT_CONFIG_PATH",
    "LedgerConfig",
    "PostingPolicy",
    "SystemAccounts",
    "get_active_config",
]


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Non-goals:
        - Does NOT cache; callers hold the returned config for as long as
          they need it.

    Args:
        path: YAML file to load.  Defaults to ``sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(config_path))

    errors = validate_config(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "config_path": str(config_path),
            "organization": config.organization,
            "currency": config.currency,
            "minor_unit_exponent": config.minor_unit_exponent,
            "auto_vivify_accounts": config.posting_policy.auto_vivify_accounts,
            "account_count": len(config.chart),
            "checksum": config.checksum,
        },
    )
    return config
