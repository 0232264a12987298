# =============================================================================
# core/endpoints.py  —  Thin wrappers over single VRM endpoints
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Each function here maps one tool onto one VRM endpoint, adding only the
#   small amount of policy the tool documents:
#
#   get_system_overview    /system-overview           pass-through
#   get_diagnostics        /diagnostics               pass-through
#   get_battery_summary    /widgets/BatterySummary    tagged source="vrm"
#   fetch_widget           /widgets/<name>            404 → notAvailable
#   probe_widgets          /widgets/<name> × N        never raises
#   get_gps                /widgets/GPS               falls back to diagnostics
#   get_alarms             /alarms                    falls back to diagnostics
#   get_energy_stats       /stats                     widens window when empty
#   get_historical_values  /stats?type=custom         dbus:… → attribute codes
#
#   Every function takes a `client` exposing get_json(path) and
#   installation_path(suffix, params); tests pass a fake.
# =============================================================================

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional
from urllib.parse import quote

from core.diagnostics import (
    as_number,
    attribute_instance,
    canonical_device_type,
    coerce_value,
    is_number,
    make_device_id,
    scan_attributes,
)
from core.errors import SignalResolutionError, VrmRequestError
from core.models import SCHEMA_VERSION, instance_sort_key

DEFAULT_PROBE_WIDGETS = ["BatterySummary", "GPS", "Overview"]

_GPS_PATHS = {
    "/Position/Latitude": "lat",
    "/Position/Longitude": "lng",
    "/Position/Altitude": "altitude",
    "/Speed": "speed",
    "/Course": "course",
}
# These GPS fields accept a text value when no number is available.
_GPS_TEXT_FIELDS = {"altitude", "course"}

_NO_ALARM_RX = re.compile(r"^\s*(ok|no alarm)\s*$", re.IGNORECASE)

_DAY_S = 24 * 3600


def now_ts() -> int:
    return int(time.time())


def capture(client, ts: Optional[float] = None) -> dict:
    return {"siteId": client.site_id, "ts": ts or now_ts()}


# =============================================================================
# Pass-through endpoints
# =============================================================================
def get_system_overview(client) -> Any:
    return client.get_json(client.installation_path("system-overview"))


def get_diagnostics(client) -> Any:
    return client.get_json(client.installation_path("diagnostics"))


def get_battery_summary(client, instance: Optional[int] = None) -> dict:
    data = client.get_json(
        client.installation_path("widgets/BatterySummary", {"instance": instance})
    )
    return {"source": "vrm", **_as_dict(data)}


def fetch_widget(client, widget: str, instance: Optional[int] = None) -> dict:
    """Fetch a widget by name; a 404 becomes a notAvailable marker."""
    path = client.installation_path(f"widgets/{_quote(widget)}", {"instance": instance})
    try:
        data = client.get_json(path)
    except VrmRequestError as e:
        if e.not_found:
            return {
                "source": "vrm",
                "success": False,
                "notAvailable": True,
                "widget": widget,
                "message": "Widget not available for this site.",
            }
        raise
    return {"source": "vrm", **_as_dict(data)}


def probe_widgets(client, widgets: Optional[list[str]] = None) -> dict:
    """Check which widgets the site serves.  Never raises for a widget."""
    candidates = list(widgets) if widgets else list(DEFAULT_PROBE_WIDGETS)

    def probe(widget: str) -> dict:
        try:
            data = client.get_json(client.installation_path(f"widgets/{_quote(widget)}"))
        except VrmRequestError as e:
            return {
                "widget": widget,
                "available": False,
                "reason": "not_found" if e.not_found else "error",
            }
        success = data.get("success") if isinstance(data, dict) else None
        return {"widget": widget, "available": True, "sample": {"success": success}}

    with ThreadPoolExecutor(max_workers=max(1, min(4, len(candidates)))) as pool:
        results = list(pool.map(probe, candidates))
    return {"ok": True, "widgets": results}


# =============================================================================
# GPS (with diagnostics fallback)
# =============================================================================
def gps_from_diagnostics(tree: Any) -> dict:
    out: dict[str, Any] = {"source": "diagnostics", "data": {}}
    latest_ts = 0
    for attr in scan_attributes(tree):
        key = _GPS_PATHS.get(attr["dbusPath"])
        if key is None:
            continue
        raw = attr.get("rawValue")
        num = as_number(raw if raw is not None else attr.get("value"))
        text = attr.get("formattedValue") or attr.get("textValue") or None
        if num is not None:
            out["data"][key] = num
        elif key in _GPS_TEXT_FIELDS and text:
            out["data"][key] = text
        else:
            continue
        ts = attr.get("timestamp")
        if is_number(ts) and ts > latest_ts:
            latest_ts = ts
    if latest_ts:
        out["ts"] = latest_ts
    return out


def get_gps(client, instance: Optional[int] = None) -> dict:
    path = client.installation_path("widgets/GPS", {"instance": instance})
    try:
        data = client.get_json(path)
    except VrmRequestError as e:
        logging.warning("GPS widget unavailable (%s); scanning diagnostics", e)
        return gps_from_diagnostics(get_diagnostics(client))
    return {"source": "vrm", **_as_dict(data)}


# =============================================================================
# Alarms (with diagnostics fallback)
# =============================================================================
def _is_active_alarm(value: Any, text: Optional[str]) -> bool:
    if is_number(value):
        return value != 0
    if isinstance(value, str):
        return not _NO_ALARM_RX.match(value)
    if isinstance(text, str):
        return not _NO_ALARM_RX.match(text)
    return False


def alarms_from_diagnostics(tree: Any) -> list[dict]:
    """Active /Alarms/ signals, ordered by (type, instance, signalId)."""
    active = []
    for attr in scan_attributes(tree):
        path = attr["dbusPath"]
        if not re.search(r"/Alarms/", path, re.IGNORECASE):
            continue
        record = coerce_value(attr)
        if not _is_active_alarm(record.value, record.text):
            continue
        device_type = canonical_device_type(attr)
        instance = attribute_instance(attr)
        active.append({
            "deviceId": make_device_id(device_type, instance),
            "type": device_type,
            "instance": instance,
            "signalId": f"dbus:{path}",
            **record.to_dict(),
        })
    active.sort(key=lambda a: (a["type"], instance_sort_key(a["instance"]), a["signalId"]))
    return active


def get_alarms(client, since_ts: Optional[int] = None) -> dict:
    path = client.installation_path("alarms", {"since": since_ts})
    try:
        data = client.get_json(path)
    except VrmRequestError as e:
        logging.warning("Alarms endpoint failed (%s); scanning diagnostics", e)
        alarms = alarms_from_diagnostics(get_diagnostics(client))
        return {
            "ok": True,
            "schemaVersion": SCHEMA_VERSION,
            "capture": capture(client),
            "count": len(alarms),
            "alarms": alarms,
            "source": "diagnostics",
        }
    return {"source": "vrm", **_as_dict(data)}


# =============================================================================
# Stats
# =============================================================================
def _stats_empty(result: Any) -> bool:
    if not result:
        return True
    if not isinstance(result, dict):
        return False
    records, totals = result.get("records"), result.get("totals")
    return isinstance(records, list) and not records and isinstance(totals, list) and not totals


def get_energy_stats(
    client,
    kind: Optional[str] = None,
    start_ts: Optional[int] = None,
    end_ts: Optional[int] = None,
    interval: Optional[str] = None,
    show_instances: bool = True,
    auto_fallback: bool = True,
) -> Any:
    """Solar or consumption totals, widening the window once when empty.

    Defaults: interval "days" over the last 7 days ("hours": last day).
    If still empty and the caller did not choose a kind, the other kind is
    tried over the wider window.
    """
    interval = interval or "days"
    end_ts = end_ts or now_ts()
    default_window = 7 * _DAY_S if interval == "days" else _DAY_S
    start_ts = start_ts or end_ts - default_window
    chosen_kind = kind or "solar"

    def fetch(kind_arg: str, start_arg: int) -> Any:
        params = [
            ("type", kind_arg),
            ("interval", interval),
            ("start", start_arg),
            ("end", end_ts),
        ]
        if show_instances:
            params.append(("show_instance", True))
        return client.get_json(client.installation_path("stats", params))

    result = fetch(chosen_kind, start_ts)
    if _stats_empty(result) and auto_fallback:
        wider_start = end_ts - (30 * _DAY_S if interval == "days" else 7 * _DAY_S)
        result = fetch(chosen_kind, wider_start)
        if _stats_empty(result) and not kind:
            other = "consumption" if chosen_kind == "solar" else "solar"
            result = fetch(other, wider_start)
    return result


def attribute_codes_for(signals: list[str], tree: Any = None) -> list[str]:
    """Plain codes pass through; "dbus:/path" signals are looked up in the
    diagnostics tree by their code/vrmCode field."""
    codes: list[str] = []

    def add(code: str) -> None:
        if code not in codes:
            codes.append(code)

    wanted_paths = set()
    for signal in signals:
        if not isinstance(signal, str):
            continue
        if signal.startswith("dbus:"):
            path = signal[len("dbus:"):]
            if path.startswith("/"):
                wanted_paths.add(path)
        elif signal.strip():
            add(signal.strip())

    if wanted_paths and tree is not None:
        for attr in scan_attributes(tree):
            code = attr.get("code") or attr.get("vrmCode")
            if attr["dbusPath"] in wanted_paths and isinstance(code, str) and code:
                add(code)
    return codes


def get_historical_values(
    client,
    signals: list[str],
    start_ts: int,
    end_ts: int,
    resolution: Optional[str] = None,
) -> Any:
    """Custom time series for VRM codes and dbus signals.

    Raises:
        SignalResolutionError: when no attribute code can be derived.
    """
    needs_diagnostics = any(isinstance(s, str) and s.startswith("dbus:") for s in signals)
    tree = get_diagnostics(client) if needs_diagnostics else None
    codes = attribute_codes_for(signals, tree)
    if not codes:
        raise SignalResolutionError(signals)

    params: list[tuple[str, Any]] = [
        ("type", "custom"),
        ("show_instance", True),
        ("start", start_ts),
        ("end", end_ts),
    ]
    if resolution:
        params.append(("interval", resolution))
    params.extend(("attributeCodes[]", code) for code in codes)
    return client.get_json(client.installation_path("stats", params))


# =============================================================================
# Helpers
# =============================================================================
def _as_dict(data: Any) -> dict:
    return data if isinstance(data, dict) else {"data": data}


def _quote(segment: str) -> str:
    return quote(str(segment), safe="")
