"""
Configuration Loader (``church_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``church_config.schema`` dataclasses.  Callers outside this package use
``church_config.get_active_config()`` instead.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for required fields.
* ``validate_config`` reports every problem at once.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any

import yaml

from church_config.schema import AccountDef, LedgerConfig, PostingPolicy, SystemAccounts

ACCOUNT_TYPES = ("asset", "liability", "equity", "income", "expense")

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

# Accounts the posting rules need, with the type each must have.
_SYSTEM_ACCOUNT_TYPES = {
    "cash": "asset",
    "accounts_payable": "liability",
    "accounts_receivable": "asset",
    "service_revenue": "income",
    "salaries_expense": "expense",
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_account(data: dict[str, Any]) -> AccountDef:
    """Parse an AccountDef from a dict."""
    return AccountDef(
        code=str(data["code"]),
        name=str(data["name"]),
        account_type=str(data["type"]).lower(),
    )


def parse_posting_policy(data: dict[str, Any] | None) -> PostingPolicy:
    data = data or {}
    return PostingPolicy(
        auto_vivify_accounts=bool(data.get("auto_vivify_accounts", False)),
    )


def parse_system_accounts(data: dict[str, Any] | None) -> SystemAccounts:
    """Parse SystemAccounts; omitted names keep their defaults."""
    data = data or {}
    known = SystemAccounts.__dataclass_fields__
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown system_accounts keys: {', '.join(unknown)}")
    return SystemAccounts(**{key: str(value) for key, value in data.items()})


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a full LedgerConfig from the top-level YAML dict.

    Postconditions:
        - ``checksum`` is computed over ``data`` exactly as loaded.
    """
    return LedgerConfig(
        organization=str(data["organization"]),
        currency=str(data["currency"]),
        minor_unit_exponent=int(data.get("minor_unit_exponent", 2)),
        posting_policy=parse_posting_policy(data.get("posting_policy")),
        system_accounts=parse_system_accounts(data.get("system_accounts")),
        chart=tuple(parse_account(item) for item in data.get("chart_of_accounts") or ()),
        checksum=compute_checksum(data),
    )


def validate_config(config: LedgerConfig) -> list[str]:
    """
    Return every structural problem found in ``config`` (empty when valid).

    Checks currency code shape, the minor-unit exponent, account types,
    duplicate codes and names, and that every system account is in the
    chart with the type the posting rules expect.
    """
    errors: list[str] = []

    if not _CURRENCY_RE.match(config.currency):
        errors.append(f"currency must be a 3-letter ISO code, got {config.currency!r}")
    if not 0 <= config.minor_unit_exponent <= 4:
        errors.append(
            f"minor_unit_exponent must be between 0 and 4, got {config.minor_unit_exponent}"
        )

    seen_codes: set[str] = set()
    seen_names: dict[str, AccountDef] = {}
    for definition in config.chart:
        if definition.account_type not in ACCOUNT_TYPES:
            errors.append(
                f"account {definition.code}: unknown type {definition.account_type!r}"
            )
        if definition.code in seen_codes:
            errors.append(f"duplicate account code {definition.code}")
        seen_codes.add(definition.code)
        key = " ".join(definition.name.split()).casefold()
        if key in seen_names:
            errors.append(f"duplicate account name {definition.name!r}")
        seen_names[key] = definition

    for attr, expected_type in _SYSTEM_ACCOUNT_TYPES.items():
        name = getattr(config.system_accounts, attr)
        definition = seen_names.get(" ".join(name.split()).casefold())
        if definition is None:
            if not config.posting_policy.auto_vivify_accounts:
                errors.append(f"system account {attr} ({name!r}) is not in the chart")
        elif definition.account_type != expected_type:
            errors.append(
                f"system account {attr} ({name!r}) must be {expected_type}, "
                f"chart says {definition.account_type}"
            )

    return errors


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
