# =============================================================================
# core/diagnostics.py  —  Scanning & canonicalizing the diagnostics tree
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   The VRM "diagnostics" endpoint returns a loosely structured tree.  Somewhere
#   inside it are attribute objects like:
#
#       {"dbusServiceType": "solarcharger", "instance": 1,
#        "dbusPath": "/Dc/0/Voltage", "rawValue": 13.2,
#        "formatWithUnit": "13.2 V", "timestamp": 1718000000, "code": "ScV"}
#
#   This module turns that tree into stable identities:
#
#       scan_attributes()      tree        → [attribute dict, ...]
#       canonical_device_type  attribute   → "solar_charger"
#       make_device_id         type, inst  → "solar_charger:1"
#       signal_id_from_path    dbusPath    → "dbus:/Dc/0/Voltage"
#       coerce_value           attribute   → ValueRecord (scalar | state)
#       derive_device_name     attributes  → best human label or None
#
#   Everything here is a pure function of its input.
# =============================================================================

import re
from typing import Any, Iterable, Optional

from core.models import ValueRecord

# -----------------------------------------------------------------------------
# Service-type dictionary (matched case-insensitively)
# -----------------------------------------------------------------------------
_SERVICE_TYPE_MAP: dict[str, str] = {
    "vebus": "vebus",
    "battery": "battery_monitor",
    "bms": "battery_monitor",
    "solarcharger": "solar_charger",
    "solar_charger": "solar_charger",
    "solar": "solar_charger",
    "temperature": "temp_sensor",
    "tempsensor": "temp_sensor",
    "temperature_sensor": "temp_sensor",
    "alternator": "alternator",
    "system": "system",
    "supervisor": "system",
    "settings": "system",
}

# Name-resolver scoring inputs
_NAME_DESCRIPTION_RX = re.compile(
    r"(custom\s*name|^name$|product\s*name|device\s*name)", re.IGNORECASE
)
_NAME_HINTS = (
    "skylla", "charger", "mppt", "multiplus",
    "inverter", "battery", "sensor", "alternator",
)


_NUMERIC_RX = re.compile(r"\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?\s*")
_INTEGER_RX = re.compile(r"\s*[-+]?\d+\s*")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def as_number(value: Any) -> Optional[float]:
    """Return a number for numbers and numeric strings, else None."""
    if is_number(value):
        return value
    if isinstance(value, str) and _NUMERIC_RX.fullmatch(value):
        return int(value) if _INTEGER_RX.fullmatch(value) else float(value)
    return None


# =============================================================================
# Tree Scanner
# =============================================================================
def scan_attributes(tree: Any) -> list[dict]:
    """Collect every object carrying a string dbusPath that starts with "/".

    Uses an explicit stack instead of recursion so a deeply nested tree
    cannot exhaust the interpreter stack.  Objects are collected in
    pre-order (parents before their children, siblings in document order).
    """
    found: list[dict] = []
    stack = [tree]
    while stack:
        node = stack.pop()
        if isinstance(node, list):
            children = node
        elif isinstance(node, dict):
            path = node.get("dbusPath")
            if isinstance(path, str) and path.startswith("/"):
                found.append(node)
            children = list(node.values())
        else:
            continue
        # Reversed so the first child is popped first.
        stack.extend(c for c in reversed(children) if isinstance(c, (dict, list)))
    return found


# =============================================================================
# Canonicalization
# =============================================================================
def canonical_type_from_label(label: Any) -> Optional[str]:
    """Map a free-text "Device" label onto a canonical type, or None."""
    lc = str(label or "").lower()
    if "ve.bus" in lc or lc == "vebus":
        return "vebus"
    if "solar charger" in lc:
        return "solar_charger"
    if "battery monitor" in lc:
        return "battery_monitor"
    if "temperature" in lc:
        return "temp_sensor"
    if "alternator" in lc:
        return "alternator"
    if "charger" in lc:
        return "charger"
    if lc == "system":
        return "system"
    return None


def canonical_device_type(attr: dict) -> str:
    """Canonical device type from dbusServiceType, idDeviceType or Device.

    Depends on those three fields only.
    """
    service = attr.get("dbusServiceType")
    service_lc = service.lower() if isinstance(service, str) else ""
    if service_lc in _SERVICE_TYPE_MAP:
        return _SERVICE_TYPE_MAP[service_lc]

    id_device_type = attr.get("idDeviceType")
    if is_number(id_device_type):
        if isinstance(id_device_type, float) and id_device_type.is_integer():
            id_device_type = int(id_device_type)
        return f"type_{id_device_type}"

    label = attr.get("Device")
    if isinstance(label, str):
        mapped = canonical_type_from_label(label)
        if mapped:
            return mapped
    return "unknown"


def attribute_instance(attr: dict) -> Any:
    instance = attr.get("instance")
    return 0 if instance is None else instance


def make_device_id(device_type: str, instance: Any) -> str:
    return f"{device_type}:{0 if instance is None else instance}"


def signal_id_from_path(dbus_path: Optional[str]) -> Optional[str]:
    if not dbus_path:
        return None
    return f"dbus:{dbus_path}"


def device_id_for(attr: dict) -> str:
    return make_device_id(canonical_device_type(attr), attribute_instance(attr))


# =============================================================================
# Value coercion
# =============================================================================
def unit_from_format(format_with_unit: Any) -> Optional[str]:
    """Last token of e.g. "13.2 V"; tokens starting with "%" are dropped."""
    if not isinstance(format_with_unit, str) or not format_with_unit:
        return None
    parts = format_with_unit.split()
    if len(parts) < 2:
        return None
    unit = parts[-1]
    if unit.startswith("%"):
        return None
    return unit


def value_source(attr: dict) -> dict[str, Any]:
    source: dict[str, Any] = {"dbusPath": attr.get("dbusPath")}
    if attr.get("code"):
        source["vrmCode"] = attr["code"]
    return source


def _text_alternative(attr: dict) -> Optional[str]:
    for key in ("formattedValue", "textValue"):
        text = attr.get(key)
        if isinstance(text, str) and text.strip():
            return text
    return None


def coerce_value(attr: dict) -> ValueRecord:
    """Coerce one attribute into a scalar or a state ValueRecord."""
    ts = attr.get("timestamp") if is_number(attr.get("timestamp")) else None
    unit = unit_from_format(attr.get("formatWithUnit")) or attr.get("unit") or None
    source = value_source(attr)

    num = as_number(attr.get("rawValue"))
    if num is None:
        num = as_number(attr.get("value"))

    text = _text_alternative(attr)

    if num is None:
        if text is not None:
            value = text
        elif attr.get("rawValue") is not None:
            value = attr["rawValue"]
        else:
            value = attr.get("value")
        return ValueRecord(kind="scalar", value=value, unit=unit, ts=ts, source=source)

    if text is not None and as_number(text) is None:
        return ValueRecord(kind="state", value=num, text=text, ts=ts, source=source)

    return ValueRecord(kind="scalar", value=num, unit=unit, ts=ts, source=source)


# =============================================================================
# Device Name Resolver
# =============================================================================
def score_name_candidate(description: str, value: str) -> int:
    score = 0
    if _NAME_DESCRIPTION_RX.search(description):
        score += 3
    lc = value.lower()
    if any(hint in lc for hint in _NAME_HINTS):
        score += 2
    if re.search(r"\s", value):
        score += 1
    if len(value) >= 4:
        score += 1
    return score


def derive_device_name(attrs: Iterable[dict]) -> Optional[str]:
    """Pick the most name-like formatted/text value among a device's records.

    Highest score wins; equal scores fall back to the smallest string.
    """
    best: Optional[tuple[int, str]] = None
    for attr in attrs:
        value = _text_alternative(attr)
        if value is None:
            continue
        description = attr.get("description")
        score = score_name_candidate(description if isinstance(description, str) else "", value)
        if best is None or score > best[0] or (score == best[0] and value < best[1]):
            best = (score, value)
    return best[1] if best else None


def explicit_device_name(attrs: Iterable[dict]) -> Optional[str]:
    """First non-empty deviceName, then customName, across the records."""
    attrs = list(attrs)
    for key in ("deviceName", "customName"):
        for attr in attrs:
            name = attr.get(key)
            if isinstance(name, str) and name:
                return name
    return None
