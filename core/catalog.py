# =============================================================================
# core/catalog.py  —  Building the deterministic device catalog
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Aggregates scanned diagnostics attributes into one DeviceEntry per
#   deviceId, applies the caller's filters, and orders everything so the
#   same diagnostics tree always produces the same catalog.
#
#   Two modes share the same pipeline:
#     "index"   → each device lists its signals (id, unit, provenance)
#     "values"  → each device lists its current values (ValueRecords)
#
#   FILTERS (all optional, combinable):
#     types     canonical types, case-insensitive
#     devices   deviceId globs          e.g. "solar_charger:*"
#     include   signalId globs          e.g. "dbus:/Dc/*"
#     since_ts  values mode only; keeps values with ts strictly greater
#
#   ORDERING:
#     devices  by (type, instance, name or "")
#     children by signalId
# =============================================================================

import re
from collections import OrderedDict
from typing import Any, Iterable, Optional

from core.diagnostics import (
    attribute_instance,
    canonical_device_type,
    coerce_value,
    derive_device_name,
    explicit_device_name,
    is_number,
    make_device_id,
    scan_attributes,
    signal_id_from_path,
    unit_from_format,
    value_source,
)
from core.models import Catalog, DeviceEntry, SignalEntry, ValueEntry

MODES = ("index", "values")


def glob_to_regex(glob: str) -> re.Pattern:
    """Translate "*"/"?" globs into an anchored, case-insensitive pattern."""
    parts = []
    for ch in glob:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def compile_globs(globs: Optional[Iterable[str]]) -> Optional[list[re.Pattern]]:
    """None (no filtering) for a missing or empty glob list."""
    if not globs:
        return None
    return [glob_to_regex(g) for g in globs]


def _matches_any(patterns: Optional[list[re.Pattern]], text: str) -> bool:
    return patterns is None or any(p.fullmatch(text) for p in patterns)


def _group_by_device(attrs: list[dict]) -> "OrderedDict[str, list[dict]]":
    groups: "OrderedDict[str, list[dict]]" = OrderedDict()
    for attr in attrs:
        device_id = make_device_id(canonical_device_type(attr), attribute_instance(attr))
        groups.setdefault(device_id, []).append(attr)
    return groups


def resolve_device_name(records: list[dict]) -> Optional[str]:
    """Explicit deviceName/customName wins over the derived label."""
    return explicit_device_name(records) or derive_device_name(records)


def build_catalog(
    tree: Any,
    mode: str = "index",
    types: Optional[Iterable[str]] = None,
    devices: Optional[Iterable[str]] = None,
    include: Optional[Iterable[str]] = None,
    since_ts: Optional[float] = None,
) -> Catalog:
    """Scan a diagnostics tree and build the filtered, ordered catalog.

    Args:
        tree: The raw diagnostics response (any JSON value).
        mode: "index" for signal listings, "values" for current values.
        types: Canonical types to keep (case-insensitive).
        devices: deviceId globs to keep.
        include: signalId globs to keep.
        since_ts: Values mode only; keep values newer than this timestamp.

    Returns:
        A Catalog whose devices each hold at least one signal/value.
    """
    if mode not in MODES:
        raise ValueError(f"unknown catalog mode: {mode!r}")

    type_set = {t.lower() for t in types} if types else None
    device_globs = compile_globs(devices)
    include_globs = compile_globs(include)

    groups = _group_by_device(scan_attributes(tree))
    catalog = Catalog()

    for device_id, records in groups.items():
        device_type = canonical_device_type(records[0])
        if type_set is not None and device_type not in type_set:
            continue
        if not _matches_any(device_globs, device_id):
            continue

        signals: list[SignalEntry] = []
        values: list[ValueEntry] = []
        for attr in records:
            signal_id = signal_id_from_path(attr.get("dbusPath"))
            if signal_id is None or not _matches_any(include_globs, signal_id):
                continue

            if mode == "index":
                ts = attr.get("timestamp")
                last_ts = ts if is_number(ts) else None
                signals.append(SignalEntry(
                    signal_id=signal_id,
                    unit=unit_from_format(attr.get("formatWithUnit")) or attr.get("unit") or None,
                    source=value_source(attr),
                    last_ts=last_ts,
                ))
                if last_ts and last_ts > catalog.max_ts:
                    catalog.max_ts = last_ts
            else:
                record = coerce_value(attr)
                ts = record.ts or 0
                if since_ts and not ts > since_ts:
                    continue
                values.append(ValueEntry(signal_id=signal_id, record=record))
                if ts > catalog.max_ts:
                    catalog.max_ts = ts

        if not signals and not values:
            continue

        entry = DeviceEntry(
            device_id=device_id,
            type=device_type,
            instance=attribute_instance(records[0]),
            name=resolve_device_name(records),
        )
        if mode == "index":
            entry.signals = sorted(signals, key=lambda s: s.signal_id)
        else:
            entry.values = sorted(values, key=lambda v: v.signal_id)
        catalog.devices.append(entry)

    catalog.devices.sort(key=DeviceEntry.sort_key)
    return catalog


def build_inventory(
    tree: Any,
    types: Optional[Iterable[str]] = None,
    devices: Optional[Iterable[str]] = None,
) -> list[DeviceEntry]:
    """List every device (no signals) with optional type/deviceId filters."""
    type_set = {t.lower() for t in types} if types else None
    device_globs = compile_globs(devices)

    inventory = []
    for device_id, records in _group_by_device(scan_attributes(tree)).items():
        device_type = canonical_device_type(records[0])
        if type_set is not None and device_type not in type_set:
            continue
        if not _matches_any(device_globs, device_id):
            continue
        inventory.append(DeviceEntry(
            device_id=device_id,
            type=device_type,
            instance=attribute_instance(records[0]),
            name=resolve_device_name(records),
        ))
    inventory.sort(key=DeviceEntry.sort_key)
    return inventory
