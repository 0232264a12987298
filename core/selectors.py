# =============================================================================
# core/selectors.py  —  Resolving free-form selectors to devices
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   The agent refers to devices the way a person would: "battery_monitor:2",
#   "House Bank", "smartsolar*", "mppt", "inverter".  This module turns each
#   such selector into a list of catalog entries.
#
# MATCHING TIERS (first tier with any match wins):
#
#   1. exact id        "battery_monitor:2"
#   2. exact name      "house bank" / "housebank" / "HOUSE-BANK"
#   3. glob            "smart*"  (a glob that matches nothing stops here)
#   4. substring/alias "solar"   (name containment, or type alias keywords)
#   5. class alias     "inverter" → every vebus device
#
#   Matches are always returned ordered by (type, instance, name).
#
# ALIAS LEARNING:
#   Before resolving, enrich_aliases() fetches the site overview and the GPS
#   widget probe concurrently and learns extra aliases and virtual devices
#   (gps:0, gateway:0) from them.  The alias table is an explicit value that
#   is copied, extended and handed to the matcher; nothing is stored between
#   calls.  Any failure there only marks the outcome as degraded.
# =============================================================================

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Optional

from core.catalog import glob_to_regex
from core.models import (
    AliasTable,
    DeviceEntry,
    EnrichmentOutcome,
    SelectorResolution,
)

# -----------------------------------------------------------------------------
# Static alias seed
# -----------------------------------------------------------------------------
_STATIC_TYPE_ALIASES: dict[str, list[str]] = {
    "solar_charger": ["mppt", "solar charger", "solar", "charger"],
    "vebus": ["vebus", "inverter", "multiplus"],
    "type_106": ["skylla", "dc charger", "charger"],
    "charger": ["skylla", "dc charger", "charger"],
    "battery_monitor": ["battery", "bms", "battery monitor"],
    "temp_sensor": ["temperature", "temp", "sensor", "temperature sensor"],
    "alternator": ["alternator"],
}

_STATIC_CLASS_ALIASES: dict[str, list[str]] = {
    "mppt": ["solar_charger"],
    "multiplus": ["vebus"],
    "inverter": ["vebus"],
    "skylla": ["type_106", "charger"],
}

# -----------------------------------------------------------------------------
# Overview product/class → canonical type (checked in order)
# -----------------------------------------------------------------------------
_OVERVIEW_TYPE_RULES: list[tuple[str, Optional[str], Optional[str]]] = [
    # (type, product-name pattern, device-class pattern)
    ("solar_charger", r"smartsolar|mppt", None),
    ("vebus", r"quattro|multiplus|ve\.bus|vebus", r"device-ve-bus"),
    ("battery_monitor", r"lynx|bms", None),
    ("temp_sensor", r"ruuvi|temperature", r"temperature"),
    ("alternator", r"wakespeed|ws500|alternator", None),
    ("charger", r"skylla", None),
    ("gateway", r"cerbo\s*gx|gateway", r"device-gateway"),
]

# Brand/model tokens learned as extra aliases when the product name matches
_BRAND_TOKENS: list[tuple[re.Pattern, list[str]]] = [
    (re.compile(r"cerbo\s*gx", re.IGNORECASE), ["cerbo", "cerbo gx", "gateway"]),
    (re.compile(r"quattro", re.IGNORECASE), ["quattro"]),
    (re.compile(r"smartsolar", re.IGNORECASE), ["smartsolar"]),
    (re.compile(r"lynx", re.IGNORECASE), ["lynx"]),
    (re.compile(r"wakespeed|ws500", re.IGNORECASE), ["wakespeed", "ws500"]),
]

_GATEWAY_ALIASES = ["gateway", "cerbo", "cerbo gx"]
GPS_WIDGET = "GPS"


def default_alias_table() -> AliasTable:
    """A fresh alias table seeded with the static aliases."""
    return AliasTable(
        type_aliases={k: list(v) for k, v in _STATIC_TYPE_ALIASES.items()},
        class_aliases={k: list(v) for k, v in _STATIC_CLASS_ALIASES.items()},
    )


# =============================================================================
# Name normalizations
# =============================================================================
def lower(s: Any) -> str:
    return str(s or "").lower()


def collapse_spaces(s: Any) -> str:
    return re.sub(r"\s+", "", lower(s))


def strip_punctuation(s: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "", lower(s))


def stable_order(entries: Iterable[DeviceEntry]) -> list[DeviceEntry]:
    return sorted(entries, key=DeviceEntry.sort_key)


# =============================================================================
# Catalog preparation
# =============================================================================
def backfill_names(
    catalog: list[DeviceEntry],
    inventory: Iterable[DeviceEntry],
) -> list[DeviceEntry]:
    """Fill missing catalog names from a secondary inventory listing."""
    names = {d.device_id: d.name for d in inventory}
    for entry in catalog:
        if not entry.name and names.get(entry.device_id):
            entry.name = names[entry.device_id]
    return catalog


# =============================================================================
# Alias learning
# =============================================================================
def guess_overview_type(device: dict) -> Optional[str]:
    """Guess a canonical type for a system-overview device record."""
    product = lower(device.get("productName") or device.get("name"))
    klass = lower(device.get("class"))
    for device_type, product_rx, class_rx in _OVERVIEW_TYPE_RULES:
        if product_rx and re.search(product_rx, product):
            return device_type
        if class_rx and re.search(class_rx, klass):
            return device_type
    return None


def _is_gateway(device: dict) -> bool:
    return bool(
        re.search(r"cerbo\s*gx", str(device.get("productName")), re.IGNORECASE)
        or re.search(r"device-gateway", str(device.get("class")))
    )


def overview_devices(overview: Any) -> list[dict]:
    records = overview.get("records") if isinstance(overview, dict) else None
    devices = records.get("devices") if isinstance(records, dict) else None
    if not isinstance(devices, list):
        return []
    return [d for d in devices if isinstance(d, dict)]


def learn_from_overview(aliases: AliasTable, overview: Any) -> Optional[DeviceEntry]:
    """Append product/custom-name and brand aliases; return a gateway device
    when the overview lists one."""
    devices = overview_devices(overview)
    for device in devices:
        device_type = guess_overview_type(device)
        if not device_type:
            continue
        aliases.learn(device_type, device.get("productName"))
        aliases.learn(device_type, device.get("customName"))
        product = str(device.get("productName") or "")
        for pattern, tokens in _BRAND_TOKENS:
            if pattern.search(product):
                for token in tokens:
                    aliases.learn(device_type, token)

    gateway = next((d for d in devices if _is_gateway(d)), None)
    if gateway is None:
        return None
    for alias in _GATEWAY_ALIASES:
        aliases.learn("gateway", alias)
    return DeviceEntry(
        device_id="gateway:0",
        type="gateway",
        instance=0,
        name=gateway.get("productName") or gateway.get("name") or "Gateway",
        virtual=True,
    )


def gps_available(probe: Any) -> bool:
    widgets = probe.get("widgets") if isinstance(probe, dict) else None
    if not isinstance(widgets, list):
        return False
    return any(
        isinstance(w, dict) and str(w.get("widget")).upper() == GPS_WIDGET and w.get("available")
        for w in widgets
    )


def learn_from_probe(aliases: AliasTable, probe: Any) -> Optional[DeviceEntry]:
    if not gps_available(probe):
        return None
    aliases.learn("gps", "gps")
    return DeviceEntry(device_id="gps:0", type="gps", instance=0, name="GPS", virtual=True)


def enrich_aliases(
    base: AliasTable,
    fetch_overview: Optional[Callable[[], Any]] = None,
    probe_widgets: Optional[Callable[[list[str]], Any]] = None,
) -> EnrichmentOutcome:
    """Learn aliases and virtual devices from the overview and GPS probe.

    Both fetches run concurrently.  Each can fail on its own; a failure is
    logged and recorded on the outcome and never raised.
    """
    outcome = EnrichmentOutcome(aliases=base.copy())

    with ThreadPoolExecutor(max_workers=2) as pool:
        overview_future = pool.submit(fetch_overview) if fetch_overview else None
        probe_future = pool.submit(probe_widgets, [GPS_WIDGET]) if probe_widgets else None

        # GPS is applied before the gateway, matching catalog append order.
        steps = [
            ("widget probe", probe_future, learn_from_probe),
            ("system overview", overview_future, learn_from_overview),
        ]
        for label, future, learn in steps:
            if future is None:
                continue
            try:
                virtual = learn(outcome.aliases, future.result())
            except Exception as e:
                logging.warning("Alias enrichment: %s failed: %s", label, e)
                outcome.degraded = True
                outcome.errors.append(f"{label}: {e}")
                continue
            if virtual is not None:
                outcome.virtual_devices.append(virtual)

    return outcome


# =============================================================================
# Matching
# =============================================================================
def _dedupe(entries: Iterable[DeviceEntry]) -> list[DeviceEntry]:
    seen: dict[str, DeviceEntry] = {}
    for entry in entries:
        seen.setdefault(entry.device_id, entry)
    return stable_order(seen.values())


def _contains(haystack: str, needle: str) -> bool:
    return bool(haystack) and bool(needle) and needle in haystack


def match_selector(
    selector: str,
    catalog: list[DeviceEntry],
    aliases: AliasTable,
) -> list[DeviceEntry]:
    """Resolve one selector against the catalog using the tiered rules."""
    norm = str(selector or "").strip()
    if not norm:
        return []
    lc = norm.lower()
    lc_no_space = collapse_spaces(norm)
    lc_no_punct = strip_punctuation(norm)

    # 1. exact id
    hits = [d for d in catalog if d.device_id == norm]
    if hits:
        return _dedupe(hits)

    # 2. exact name
    hits = [
        d for d in catalog
        if d.name and (
            lower(d.name) == lc
            or (lc_no_space and collapse_spaces(d.name) == lc_no_space)
            or (lc_no_punct and strip_punctuation(d.name) == lc_no_punct)
        )
    ]
    if hits:
        return _dedupe(hits)

    # 3. glob (never falls through when it is one)
    if "*" in norm or "?" in norm:
        rx = glob_to_regex(norm)
        rx_collapsed = glob_to_regex(lc_no_space)
        rx_no_punct = glob_to_regex(lc_no_punct)
        hits = [
            d for d in catalog
            if rx.fullmatch(d.device_id)
            or (d.name and (
                rx.fullmatch(d.name)
                or rx_collapsed.fullmatch(collapse_spaces(d.name))
                or rx_no_punct.fullmatch(strip_punctuation(d.name))
            ))
        ]
        return _dedupe(hits)

    # 4. substring / alias (containment either way round)
    hits = []
    for d in catalog:
        name_forms = (
            (lower(d.name), lc),
            (collapse_spaces(d.name), lc_no_space),
            (strip_punctuation(d.name), lc_no_punct),
        )
        name_hit = bool(d.name) and any(
            _contains(name, sel) or _contains(sel, name) for name, sel in name_forms
        )
        alias_hit = any(lc in a or a in lc for a in aliases.aliases_for(d.type) if a)
        if name_hit or alias_hit:
            hits.append(d)
    if hits:
        return _dedupe(hits)

    # 5. class alias
    targets = aliases.class_targets(lc)
    return _dedupe(d for d in catalog if d.type in targets)


def resolve_selectors(
    selectors: Iterable[str],
    catalog: list[DeviceEntry],
    aliases: AliasTable,
) -> tuple[list[SelectorResolution], list[str]]:
    """Resolve every selector; return resolutions and the unmatched ones,
    both in input order."""
    resolved = []
    unmatched = []
    for selector in selectors:
        matches = match_selector(selector, catalog, aliases)
        if not matches:
            unmatched.append(selector)
        resolved.append(SelectorResolution(selector=selector, matches=matches))
    return resolved, unmatched


def resolve_with_enrichment(
    selectors: Iterable[str],
    catalog: list[DeviceEntry],
    fetch_overview: Optional[Callable[[], Any]] = None,
    probe_widgets: Optional[Callable[[list[str]], Any]] = None,
    aliases: Optional[AliasTable] = None,
) -> tuple[list[SelectorResolution], list[str], EnrichmentOutcome]:
    """Learn aliases (best-effort), then resolve against catalog + virtual devices."""
    outcome = enrich_aliases(
        aliases or default_alias_table(),
        fetch_overview=fetch_overview,
        probe_widgets=probe_widgets,
    )
    full_catalog = list(catalog) + outcome.virtual_devices
    resolved, unmatched = resolve_selectors(selectors, full_catalog, outcome.aliases)
    return resolved, unmatched, outcome
