# =============================================================================
# tools/mcp_server.py  —  FastMCP Tool Server (ALL VRM tools in one place)
# =============================================================================
#
# WHAT THIS FILE DOES:
#   Defines every MCP tool the agent can call.  Each tool is a thin wrapper
#   around core/ functions: it reads the settings, builds a VrmClient, calls
#   the core, and shapes the response.
#
# HOW IT WORKS (the flow):
#   1. The agent calls a tool by name via MCP (e.g. "diagnostics_values")
#   2. FastMCP routes the call to the decorated function below
#   3. The function fetches diagnostics, runs the catalog/chunking/selector
#      pipeline from core/, and returns the result
#   4. Failures from core/ (VrmError) become MCP tool errors carrying a code
#      and a JSON data payload
#
# CHUNKED TOOLS:
#   diagnostics_index and diagnostics_values can return a lot of data, so
#   they answer with one or more envelopes, each sent as its own text block.
#   The text of each block is exactly the serialization whose size is stamped
#   in the envelope's chunk.bytes.
#
# STATE:
#   None.  Every call re-reads the environment, re-fetches from VRM, and
#   rebuilds the catalog and alias table from scratch.
#
# RUNNING THIS SERVER:
#   python -m tools.mcp_server        (stdio transport; the agent spawns it)
# =============================================================================

import json
import logging
import sys
from typing import Any, Callable, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import TextContent

from core import endpoints
from core.catalog import build_catalog, build_inventory
from core.chunking import chunk_envelopes, serialize
from core.config import Settings, load_settings
from core.errors import VrmError
from core.models import SCHEMA_VERSION
from core.selectors import backfill_names, resolve_with_enrichment
from core.vrm_client import VrmClient

# =============================================================================
# Logging Setup
# =============================================================================
# Logs go to STDERR: STDOUT is the MCP transport, and anything else written
# there would corrupt the JSON-RPC stream.
#
#   CYAN   → incoming tool calls with parameters
#   YELLOW → intermediate status
#   GREEN  → responses (summarized for chunked tools)
# =============================================================================
_CYAN = "\033[36m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_RESET = "\033[0m"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [VRM MCP] %(levelname)s %(message)s",
    datefmt="%H:%M:%S",
    stream=sys.stderr,
)

load_dotenv()


def _log_request(tool_name: str, **params) -> None:
    """Log an incoming tool call with its parameters in CYAN."""
    param_str = ", ".join(f"{k}={v!r}" for k, v in params.items() if v is not None)
    logging.info(f"{_CYAN}{tool_name} called with: {param_str}{_RESET}")


def _log_status(message: str) -> None:
    """Log an intermediate status message in YELLOW."""
    logging.info(f"{_YELLOW}  → {message}{_RESET}")


def _log_response(tool_name: str, result: Any) -> Any:
    """Log the tool response as compact JSON in GREEN, then return it."""
    logging.info(f"{_GREEN}  ← {tool_name} response: {serialize(result)}{_RESET}")
    return result


def _log_envelopes(tool_name: str, envelopes: list[dict]) -> list[TextContent]:
    """Log a one-line summary per envelope and wrap each as a text block."""
    blocks = []
    for env in envelopes:
        chunk = env["chunk"]
        logging.info(
            f"{_GREEN}  ← {tool_name} chunk {chunk['index'] + 1}/{chunk['of']}: "
            f"{len(env.get('devices', []))} devices, {chunk['bytes']} bytes{_RESET}"
        )
        blocks.append(TextContent(type="text", text=serialize(env)))
    return blocks


def _run(tool_name: str, work: Callable[[VrmClient], Any]) -> Any:
    """Build a client from fresh settings, run `work`, map VrmError to ToolError."""
    try:
        client = VrmClient(load_settings())
        return work(client)
    except VrmError as e:
        logging.error(f"{_RED}  ✗ {tool_name} failed: {e.message}{_RESET}")
        raise ToolError(
            json.dumps({"code": e.code, "message": e.message, "data": e.data})
        ) from e


def _envelope_factory(client: VrmClient, captured_ts: float) -> Callable[[int, int], dict]:
    capture = endpoints.capture(client, captured_ts)

    def make_envelope(index: int, total: int) -> dict:
        return {
            "ok": True,
            "schemaVersion": SCHEMA_VERSION,
            "capture": dict(capture),
            "chunk": {"index": index, "of": total, "bytes": 0},
        }

    return make_envelope


def _chunk_budget(settings: Settings, max_chunk_bytes: Optional[int]) -> int:
    return max_chunk_bytes if max_chunk_bytes else settings.max_chunk_bytes


def _diagnostics_envelopes(
    client: VrmClient,
    mode: str,
    include: Optional[list[str]] = None,
    devices: Optional[list[str]] = None,
    types: Optional[list[str]] = None,
    since_ts: Optional[int] = None,
    max_chunk_bytes: Optional[int] = None,
) -> list[dict]:
    """Fetch diagnostics, build the catalog in `mode` and chunk it."""
    tree = endpoints.get_diagnostics(client)
    catalog = build_catalog(
        tree, mode=mode, types=types, devices=devices,
        include=include, since_ts=since_ts,
    )
    _log_status(f"Catalog: {len(catalog.devices)} devices")
    return chunk_envelopes(
        [d.to_dict() for d in catalog.devices],
        _envelope_factory(client, catalog.max_ts),
        _chunk_budget(client.settings, max_chunk_bytes),
    )


# =============================================================================
# Create the FastMCP server instance
# =============================================================================
mcp = FastMCP("vrm-energy-monitor")


# =============================================================================
# TOOL: get_system_overview
# =============================================================================
@mcp.tool()
def get_system_overview() -> dict:
    """High-level site snapshot from the VRM system overview.

    WHEN TO CALL THIS: First, to understand which devices are connected
    (product names, custom names, device classes) and their key states.

    Returns:
        The VRM system-overview response unchanged.
    """
    _log_request("get_system_overview")
    result = _run("get_system_overview", endpoints.get_system_overview)
    return _log_response("get_system_overview", result)


# =============================================================================
# TOOL: battery_summary
# =============================================================================
@mcp.tool()
def battery_summary(instance: Optional[int] = None) -> dict:
    """Battery summary via the VRM BatterySummary widget.

    Returns SoC, voltage, current, power, time-to-go and alarm flags.

    Args:
        instance: Battery monitor instance (optional).
    """
    _log_request("battery_summary", instance=instance)
    result = _run("battery_summary", lambda c: endpoints.get_battery_summary(c, instance))
    return _log_response("battery_summary", result)


# =============================================================================
# TOOL: diagnostics_index  (chunked)
# =============================================================================
@mcp.tool()
def diagnostics_index(
    include: Optional[list[str]] = None,
    devices: Optional[list[str]] = None,
    types: Optional[list[str]] = None,
    max_chunk_bytes: Optional[int] = None,
) -> list[TextContent]:
    """Discover devices and their dbus signals from diagnostics (chunked).

    WHEN TO CALL THIS: Before diagnostics_values or historical_values, to
    learn which deviceIds and signalIds exist.

    Args:
        include: signalId globs, e.g. ["dbus:/Dc/*"].
        devices: deviceId globs, e.g. ["solar_charger:*"].
        types: Canonical types, e.g. ["battery_monitor", "vebus"].
        max_chunk_bytes: Per-envelope byte budget (minimum 8192).

    Returns:
        One or more envelopes:
        {ok, schemaVersion, capture{siteId, ts}, chunk{index, of, bytes},
         devices[{deviceId, type, instance, name?, signals[{signalId, unit,
         source, lastTs?}]}]}
    """
    _log_request("diagnostics_index", include=include, devices=devices,
                 types=types, max_chunk_bytes=max_chunk_bytes)
    envelopes = _run(
        "diagnostics_index",
        lambda c: _diagnostics_envelopes(
            c, "index", include=include, devices=devices, types=types,
            max_chunk_bytes=max_chunk_bytes,
        ),
    )
    return _log_envelopes("diagnostics_index", envelopes)


# =============================================================================
# TOOL: diagnostics_values  (chunked)
# =============================================================================
@mcp.tool()
def diagnostics_values(
    include: Optional[list[str]] = None,
    devices: Optional[list[str]] = None,
    types: Optional[list[str]] = None,
    since_ts: Optional[int] = None,
    max_chunk_bytes: Optional[int] = None,
) -> list[TextContent]:
    """Current values for diagnostics signals (chunked, deterministic order).

    Args:
        include: signalId globs, e.g. ["dbus:/Dc/0/*"].
        devices: deviceId globs.
        types: Canonical types.
        since_ts: Only values with a timestamp newer than this (unix seconds).
        max_chunk_bytes: Per-envelope byte budget (minimum 8192).

    Returns:
        One or more envelopes whose devices carry values[]: either
        {signalId, value, unit, ts, source} or
        {signalId, state{value, text}, ts, source}.
    """
    _log_request("diagnostics_values", include=include, devices=devices,
                 types=types, since_ts=since_ts, max_chunk_bytes=max_chunk_bytes)
    envelopes = _run(
        "diagnostics_values",
        lambda c: _diagnostics_envelopes(
            c, "values", include=include, devices=devices, types=types,
            since_ts=since_ts, max_chunk_bytes=max_chunk_bytes,
        ),
    )
    return _log_envelopes("diagnostics_values", envelopes)


# =============================================================================
# TOOL: device_inventory
# =============================================================================
def _inventory(client: VrmClient, types=None, devices=None) -> dict:
    inventory = build_inventory(endpoints.get_diagnostics(client), types=types, devices=devices)
    return {
        "ok": True,
        "schemaVersion": SCHEMA_VERSION,
        "capture": endpoints.capture(client),
        "devices": [d.to_dict() for d in inventory],
    }


@mcp.tool()
def device_inventory(
    types: Optional[list[str]] = None,
    devices: Optional[list[str]] = None,
) -> dict:
    """List devices discovered from diagnostics (type, instance, name).

    Good for picking selectors before calling resolve_device_selectors.

    Args:
        types: Canonical types to keep.
        devices: deviceId globs to keep.
    """
    _log_request("device_inventory", types=types, devices=devices)
    result = _run("device_inventory", lambda c: _inventory(c, types, devices))
    _log_status(f"{len(result['devices'])} devices")
    return _log_response("device_inventory", result)


# =============================================================================
# TOOL: alarms
# =============================================================================
@mcp.tool()
def alarms(since_ts: Optional[int] = None) -> dict:
    """Active alarms for the installation.

    Falls back to scanning diagnostics /Alarms/* signals when the VRM
    alarms endpoint is unavailable (source: "diagnostics").

    Args:
        since_ts: Only alarms since this unix timestamp.
    """
    _log_request("alarms", since_ts=since_ts)
    result = _run("alarms", lambda c: endpoints.get_alarms(c, since_ts))
    return _log_response("alarms", result)


# =============================================================================
# TOOL: historical_values
# =============================================================================
@mcp.tool()
def historical_values(
    signals: list[str],
    start_ts: int,
    end_ts: int,
    resolution: Optional[str] = None,
) -> Any:
    """Time series via VRM /stats type=custom.

    Accepts VRM attribute codes (e.g. "PVP", "PVV") and dbus signals
    ("dbus:/Dc/0/Voltage"), which are mapped to codes through diagnostics.

    Args:
        signals: Attribute codes and/or dbus signalIds.
        start_ts: Window start (unix seconds).
        end_ts: Window end (unix seconds).
        resolution: Interval such as "15mins", "hours", "days".
    """
    _log_request("historical_values", signals=signals, start_ts=start_ts,
                 end_ts=end_ts, resolution=resolution)
    result = _run(
        "historical_values",
        lambda c: endpoints.get_historical_values(c, signals, start_ts, end_ts, resolution),
    )
    return _log_response("historical_values", result)


# =============================================================================
# TOOL: energy_stats_quick
# =============================================================================
@mcp.tool()
def energy_stats_quick(
    kind: Optional[str] = None,
    start_ts: Optional[int] = None,
    end_ts: Optional[int] = None,
    interval: Optional[str] = None,
    show_instances: bool = True,
    auto_fallback: bool = True,
) -> Any:
    """Solar or consumption summaries over VRM /stats.

    Defaults: interval "days", last 7 days, per-instance breakdown.  When
    the window is empty it is widened once; without an explicit kind the
    other kind is tried too.

    Args:
        kind: "solar" or "consumption".
        start_ts: Window start (unix seconds).
        end_ts: Window end (unix seconds), default now.
        interval: "hours" or "days".
        show_instances: Break totals down per device instance.
        auto_fallback: Widen the window when no data comes back.
    """
    _log_request("energy_stats_quick", kind=kind, start_ts=start_ts, end_ts=end_ts,
                 interval=interval, show_instances=show_instances,
                 auto_fallback=auto_fallback)
    if kind not in (None, "solar", "consumption"):
        raise ToolError(f"kind must be 'solar' or 'consumption', got {kind!r}")
    if interval not in (None, "hours", "days"):
        raise ToolError(f"interval must be 'hours' or 'days', got {interval!r}")
    result = _run(
        "energy_stats_quick",
        lambda c: endpoints.get_energy_stats(
            c, kind, start_ts, end_ts, interval, show_instances, auto_fallback
        ),
    )
    return _log_response("energy_stats_quick", result)


# =============================================================================
# TOOL: gps
# =============================================================================
@mcp.tool()
def gps(instance: Optional[int] = None) -> dict:
    """Last-known GPS position (lat, lon, speed, course, altitude).

    Falls back to diagnostics GPS signals when the widget is unavailable.

    Args:
        instance: GPS instance (optional).
    """
    _log_request("gps", instance=instance)
    result = _run("gps", lambda c: endpoints.get_gps(c, instance))
    return _log_response("gps", result)


# =============================================================================
# TOOL: resolve_device_selectors
# =============================================================================
def _resolve_selectors(client: VrmClient, selectors: list[str]) -> dict:
    tree = endpoints.get_diagnostics(client)
    catalog = build_catalog(tree, mode="index").devices
    for entry in catalog:
        entry.signals = None

    try:
        backfill_names(catalog, build_inventory(endpoints.get_diagnostics(client)))
    except VrmError as e:
        _log_status(f"Name backfill skipped: {e.message}")

    resolved, unmatched, outcome = resolve_with_enrichment(
        selectors,
        catalog,
        fetch_overview=lambda: endpoints.get_system_overview(client),
        probe_widgets=lambda widgets: endpoints.probe_widgets(client, widgets),
    )
    if outcome.degraded:
        _log_status(f"Alias enrichment degraded: {'; '.join(outcome.errors)}")
    _log_status(f"{len(selectors) - len(unmatched)}/{len(selectors)} selectors matched")
    return {
        "ok": True,
        "schemaVersion": SCHEMA_VERSION,
        "capture": endpoints.capture(client),
        "resolved": [r.to_dict() for r in resolved],
        "unmatched": unmatched,
    }


@mcp.tool()
def resolve_device_selectors(selectors: list[str]) -> dict:
    """Resolve selectors (ids, names, globs, aliases) to deviceIds.

    Priority: exact deviceId → exact name → glob (id/name) →
    substring/aliases → product-class aliases.  Aliases are enriched from
    the system overview; "gps:0" and "gateway:0" appear when the site has
    them.

    Args:
        selectors: e.g. ["battery_monitor:2", "House Bank", "mppt", "smart*"].

    Returns:
        {ok, schemaVersion, capture, resolved[{selector, matches[{deviceId,
         type, instance, name?}]}], unmatched[selector]}
    """
    _log_request("resolve_device_selectors", selectors=selectors)
    result = _run("resolve_device_selectors", lambda c: _resolve_selectors(c, selectors))
    return _log_response("resolve_device_selectors", result)


# =============================================================================
# TOOL: widget_fetch
# =============================================================================
@mcp.tool()
def widget_fetch(widget: str, instance: Optional[int] = None) -> dict:
    """Fetch a VRM widget by name (e.g. BatterySummary, GPS).

    Returns notAvailable=true when the site does not serve the widget.

    Args:
        widget: Widget name.
        instance: Device instance (optional).
    """
    _log_request("widget_fetch", widget=widget, instance=instance)
    if not widget:
        raise ToolError("widget must be a non-empty string")
    result = _run("widget_fetch", lambda c: endpoints.fetch_widget(c, widget, instance))
    return _log_response("widget_fetch", result)


# =============================================================================
# TOOL: widget_list_available
# =============================================================================
@mcp.tool()
def widget_list_available(widgets: Optional[list[str]] = None) -> dict:
    """Probe which VRM widgets the site serves.

    Args:
        widgets: Widget names; defaults to BatterySummary, GPS, Overview.

    Returns:
        {ok, widgets[{widget, available, sample? | reason?}]}
    """
    _log_request("widget_list_available", widgets=widgets)
    result = _run("widget_list_available", lambda c: endpoints.probe_widgets(c, widgets))
    return _log_response("widget_list_available", result)


# =============================================================================
# Server entry point
# =============================================================================
def main() -> None:
    logging.info("Starting vrm-energy-monitor MCP server on stdio")
    mcp.run()


if __name__ == "__main__":
    main()
