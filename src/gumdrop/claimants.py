"""
gumdrop/claimants.py

Claimant list parsing, normalization and persistence.

The claimant list is either a JSON array of objects or CSV with a header
row. Index assignment by file order is part of the on-disk contract: a list
re-parsed on resend must yield the same indices.

Usage:
    from gumdrop.claimants import parse_claimants

    records = parse_claimants(text, ClaimIntegration.TRANSFER)
"""

import csv
import io
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from solders.pubkey import Pubkey

from .config import ClaimIntegration
from .errors import ConfigurationError, EmptyClaimantList, ValidationError

logger = logging.getLogger("gumdrop.claimants")

MAX_U32 = 0xFFFFFFFF
MAX_U64 = 0xFFFFFFFFFFFFFFFF

# Accepted spellings for each field
_FIELD_ALIASES = {
    "identity": ("identity", "address", "wallet"),
    "delivery_locator": ("url", "deliveryLocator", "delivery_locator"),
}


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class ClaimantRecord:
    """One intended recipient and its claim secrets."""
    index: int
    identity: Pubkey
    amount: int
    edition: Optional[int] = None
    handle: Optional[str] = None
    delivery_locator: Optional[str] = None
    pin: Optional[int] = None
    proof: Optional[List[bytes]] = None
    seed: Optional[Pubkey] = None

    def attach_secret(self, pin: int, seed: Pubkey) -> None:
        """Set the pin and seed reference. Both are write-once."""
        if self.pin is not None:
            raise ValidationError(f"Claimant {self.index} already has a pin")
        self.pin = pin
        self.seed = seed

    def attach_locator(self, url: str) -> None:
        """Set the claim URL. Write-once."""
        if self.delivery_locator is not None:
            raise ValidationError(f"Claimant {self.index} already has a delivery locator")
        self.delivery_locator = url

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "index": self.index,
            "identity": str(self.identity),
            "amount": self.amount,
        }
        if self.edition is not None:
            data["edition"] = self.edition
        if self.handle is not None:
            data["handle"] = self.handle
        if self.delivery_locator is not None:
            data["url"] = self.delivery_locator
        if self.pin is not None:
            data["pin"] = self.pin
        return data


# ============================================================================
# PARSING
# ============================================================================

def parse_claimants(
    text: str,
    integration: ClaimIntegration,
) -> List[ClaimantRecord]:
    """
    Parse a raw claimant list into validated records.

    Args:
        text: JSON array or CSV (with header) claimant list
        integration: Selected claim integration, decides required fields

    Returns:
        Records ordered by index

    Raises:
        EmptyClaimantList: If the list has no entries
        ValidationError: On missing fields, bad addresses or duplicate indices
    """
    rows = _read_rows(text)
    if not rows:
        raise EmptyClaimantList()

    records = [_parse_row(row, position, integration) for position, row in enumerate(rows)]

    seen: Dict[int, int] = {}
    for position, record in enumerate(records):
        if record.index in seen:
            raise ValidationError(
                f"Duplicate index {record.index} at entries {seen[record.index]} and {position}"
            )
        seen[record.index] = position

    if set(seen) != set(range(len(records))):
        raise ValidationError(
            f"Claimant indices must be dense 0..{len(records) - 1}"
        )

    records.sort(key=lambda r: r.index)
    logger.debug(f"Parsed {len(records)} claimants for {integration.value}")
    return records


def _read_rows(text: str) -> List[Dict[str, Any]]:
    stripped = text.strip()
    if not stripped:
        return []

    if stripped[0] in "[{":
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Could not parse claimant list as JSON: {e}")
        if isinstance(data, dict):
            data = data.get("claimants", [])
        if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
            raise ValidationError("Claimant list must be a JSON array of objects")
        return data

    reader = csv.DictReader(io.StringIO(stripped))
    return [
        {k.strip(): v.strip() for k, v in row.items() if k is not None and v not in (None, "")}
        for row in reader
    ]


def _lookup(row: Dict[str, Any], field: str) -> Any:
    for name in _FIELD_ALIASES.get(field, (field,)):
        if row.get(name) not in (None, ""):
            return row[name]
    return None


def _parse_int(value: Any, name: str, position: int, minimum: int, maximum: int) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Entry {position}: '{name}' must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Entry {position}: '{name}' must be an integer, got {value!r}")
    if isinstance(value, float) and number != value:
        raise ValidationError(f"Entry {position}: '{name}' must be an integer, got {value!r}")
    if not minimum <= number <= maximum:
        raise ValidationError(f"Entry {position}: '{name}' out of range: {number}")
    return number


def _parse_row(
    row: Dict[str, Any],
    position: int,
    integration: ClaimIntegration,
) -> ClaimantRecord:
    raw_identity = _lookup(row, "identity")
    if raw_identity is None:
        raise ValidationError(f"Entry {position}: missing 'identity'")
    try:
        identity = Pubkey.from_string(str(raw_identity).strip())
    except Exception:
        raise ValidationError(f"Entry {position}: invalid address {raw_identity!r}")

    raw_amount = row.get("amount")
    raw_edition = row.get("edition")

    if integration == ClaimIntegration.EDITION:
        if raw_edition in (None, ""):
            raise ValidationError(f"Entry {position}: missing 'edition' for edition claims")
        edition: Optional[int] = _parse_int(raw_edition, "edition", position, 1, MAX_U64)
        amount = 1 if raw_amount in (None, "") else _parse_int(raw_amount, "amount", position, 1, MAX_U64)
    else:
        if raw_amount in (None, ""):
            raise ValidationError(f"Entry {position}: missing 'amount' for {integration.value} claims")
        amount = _parse_int(raw_amount, "amount", position, 1, MAX_U64)
        edition = None

    raw_index = row.get("index")
    index = position if raw_index in (None, "") else _parse_int(raw_index, "index", position, 0, MAX_U32)

    raw_pin = row.get("pin")
    pin = None if raw_pin in (None, "") else _parse_int(raw_pin, "pin", position, 0, MAX_U32)

    handle = row.get("handle")
    locator = _lookup(row, "delivery_locator")

    return ClaimantRecord(
        index=index,
        identity=identity,
        amount=amount,
        edition=edition,
        handle=str(handle) if handle not in (None, "") else None,
        delivery_locator=str(locator) if locator is not None else None,
        pin=pin,
    )


# ============================================================================
# PERSISTENCE
# ============================================================================

def dump_claimants(records: List[ClaimantRecord]) -> str:
    """Serialize records, with their pins and URLs, as a JSON claimant list."""
    ordered = sorted(records, key=lambda r: r.index)
    return json.dumps([r.to_dict() for r in ordered], indent=2)


def check_state_path(path: Optional[str]) -> None:
    """
    Refuse a state path that cannot receive claimant state.

    Pins only exist in memory until they are saved, so this runs before
    anything is submitted.

    Raises:
        ConfigurationError: If no path is given, a file already exists there,
            or its directory is missing or not writable
    """
    if not path:
        raise ConfigurationError("A state file is required to record claimant pins")
    if os.path.exists(path):
        raise ConfigurationError(f"State file {path} already exists; refusing to overwrite it")
    directory = os.path.dirname(os.path.abspath(path))
    if not os.path.isdir(directory):
        raise ConfigurationError(f"State file directory {directory} does not exist")
    if not os.access(directory, os.W_OK):
        raise ConfigurationError(f"State file directory {directory} is not writable")


def save_claimants(records: List[ClaimantRecord], path: str) -> None:
    """Write claimant state to disk so a later resend can reuse it."""
    with open(path, "w") as f:
        f.write(dump_claimants(records))
    logger.info(f"Saved state for {len(records)} claimants to {path}")


def total_allocation(records: List[ClaimantRecord]) -> int:
    """Sum of all claimant amounts."""
    return sum(r.amount for r in records)
