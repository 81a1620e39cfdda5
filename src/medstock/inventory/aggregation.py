"""Aggregation View Builder - group usage/device pairs into inventory rows."""

import re
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from medstock.fhir.resources import barcode_of, display_name_of, manufacturer_of, size_of
from medstock.inventory.models import GroupedInventoryRow, UsagePair

_PARTIAL_DATE_RE = re.compile(r"^(\d{4})(?:-(0[1-9]|1[0-2]))?$")


def parse_instant(value: Any) -> datetime | None:
    """Parse a FHIR instant/dateTime; None when absent or unparseable.

    Partial dates (``YYYY``, ``YYYY-MM``) mean the first day of the period.
    Naive values are taken as UTC so every parsed value compares.
    """
    if not isinstance(value, str) or not value:
        return None
    partial = _PARTIAL_DATE_RE.match(value)
    try:
        if partial:
            year, month = partial.groups()
            return datetime(int(year), int(month or 1), 1, tzinfo=UTC)
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def group_key(device: dict[str, Any] | None) -> str:
    """Barcode when present, otherwise ``name|size|manufacturer``; case-folded."""
    barcode = barcode_of(device)
    if barcode:
        return barcode.casefold()
    return f"{display_name_of(device)}|{size_of(device)}|{manufacturer_of(device)}".casefold()


def _timestamps(pair: UsagePair) -> list[datetime]:
    usage = pair.usage or {}
    device = pair.device or {}
    candidates = [
        usage.get("timingDateTime"),
        (usage.get("timingPeriod") or {}).get("start"),
        (usage.get("meta") or {}).get("lastUpdated"),
        (device.get("meta") or {}).get("lastUpdated"),
    ]
    return [ts for ts in map(parse_instant, candidates) if ts is not None]


def group_pairs(pairs: Iterable[UsagePair]) -> list[GroupedInventoryRow]:
    """
    Collapse pairs sharing a device identity into one row each.

    Rows are ordered by most recent activity, newest first; rows without any
    timestamp come last in first-seen order.
    """
    rows: dict[str, GroupedInventoryRow] = {}

    for pair in pairs:
        key = group_key(pair.device)
        row = rows.get(key)
        if row is None:
            row = rows[key] = GroupedInventoryRow(key=key, device=pair.device)
        elif row.device is None:
            row.device = pair.device

        row.count += 1
        row.usages.append(pair.usage)
        for ts in _timestamps(pair):
            if row.when is None or ts > row.when:
                row.when = ts

    return sorted(
        rows.values(),
        key=lambda row: (row.when is None, -row.when.timestamp() if row.when else 0.0),
    )
