from core.errors import VrmRequestError
from core.models import AliasTable, DeviceEntry
from core.selectors import (
    backfill_names,
    default_alias_table,
    enrich_aliases,
    guess_overview_type,
    match_selector,
    resolve_selectors,
    resolve_with_enrichment,
)


def _catalog():
    return [
        DeviceEntry("battery_monitor:2", "battery_monitor", 2, "House Bank"),
        DeviceEntry("solar_charger:1", "solar_charger", 1, "SmartSolar 100/50"),
    ]


def _ids(entries):
    return [d.device_id for d in entries]


OVERVIEW = {
    "success": True,
    "records": {
        "devices": [
            {"name": "Solar Charger", "productName": "SmartSolar MPPT 100/50",
             "class": "device-solar-charger"},
            {"name": "Gateway", "productName": "Cerbo GX", "class": "device-gateway"},
        ]
    },
}

GPS_PROBE = {"ok": True, "widgets": [{"widget": "GPS", "available": True}]}


# -----------------------------------------------------------------------------
# Resolution tiers
# -----------------------------------------------------------------------------
def test_mixed_selectors_resolve_and_report_unmatched():
    resolved, unmatched, outcome = resolve_with_enrichment(
        ["battery_monitor:2", "mppt", "nonexistent*"],
        _catalog(),
        fetch_overview=lambda: OVERVIEW,
        probe_widgets=lambda widgets: {"ok": True, "widgets": []},
    )
    assert [r.selector for r in resolved] == ["battery_monitor:2", "mppt", "nonexistent*"]
    assert _ids(resolved[0].matches) == ["battery_monitor:2"]
    assert _ids(resolved[1].matches) == ["solar_charger:1"]
    assert resolved[2].matches == []
    assert unmatched == ["nonexistent*"]
    assert not outcome.degraded
    assert "mppt" in outcome.aliases.aliases_for("solar_charger")


def test_exact_name_normalizations():
    aliases = default_alias_table()
    for selector in ["house bank", "HOUSEBANK", "house-bank", "  House   Bank "]:
        assert _ids(match_selector(selector, _catalog(), aliases)) == ["battery_monitor:2"]


def test_glob_matches_ids_and_names():
    aliases = default_alias_table()
    assert _ids(match_selector("smart*", _catalog(), aliases)) == ["solar_charger:1"]
    assert _ids(match_selector("*:?", _catalog(), aliases)) == [
        "battery_monitor:2",
        "solar_charger:1",
    ]


def test_unmatched_glob_does_not_fall_through():
    # "solar" alone would match through the alias tier.
    aliases = default_alias_table()
    assert _ids(match_selector("solar", _catalog(), aliases)) == ["solar_charger:1"]
    assert match_selector("solar*x", _catalog(), aliases) == []


def test_substring_tier_returns_stable_order():
    catalog = [
        DeviceEntry("solar_charger:2", "solar_charger", 2, "Aft Array"),
        DeviceEntry("charger:0", "charger", 0, "Skylla"),
        DeviceEntry("solar_charger:1", "solar_charger", 1, "Bow Array"),
        DeviceEntry("battery_monitor:2", "battery_monitor", 2, "House Bank"),
    ]
    matches = match_selector("charger", catalog, default_alias_table())
    assert _ids(matches) == ["charger:0", "solar_charger:1", "solar_charger:2"]


def test_selector_containing_device_name_matches():
    catalog = [DeviceEntry("battery_monitor:2", "battery_monitor", 2, "House Bank")]
    aliases = AliasTable()
    for selector in ["house bank aft", "the housebank", "House-Bank (port)"]:
        assert _ids(match_selector(selector, catalog, aliases)) == ["battery_monitor:2"]


def test_exact_id_ignores_surrounding_whitespace():
    matches = match_selector("  solar_charger:1 ", _catalog(), AliasTable())
    assert _ids(matches) == ["solar_charger:1"]


def test_class_alias_tier():
    catalog = [DeviceEntry("vebus:276", "vebus", 276, "Quattro")]
    aliases = AliasTable(type_aliases={}, class_aliases={"inverter": ["vebus"]})
    assert _ids(match_selector("Inverter", catalog, aliases)) == ["vebus:276"]


def test_blank_selector_matches_nothing():
    resolved, unmatched = resolve_selectors(["", "   "], _catalog(), default_alias_table())
    assert all(r.matches == [] for r in resolved)
    assert unmatched == ["", "   "]


def test_punctuation_only_selector_does_not_match_everything():
    assert match_selector("--", _catalog(), AliasTable()) == []


def test_resolution_to_dict():
    resolved, _ = resolve_selectors(["House Bank"], _catalog(), default_alias_table())
    assert resolved[0].to_dict() == {
        "selector": "House Bank",
        "matches": [{
            "deviceId": "battery_monitor:2",
            "type": "battery_monitor",
            "instance": 2,
            "name": "House Bank",
        }],
    }


# -----------------------------------------------------------------------------
# Alias learning
# -----------------------------------------------------------------------------
def test_enrichment_adds_virtual_devices():
    resolved, unmatched, outcome = resolve_with_enrichment(
        ["gps", "cerbo", "smartsolar"],
        _catalog(),
        fetch_overview=lambda: OVERVIEW,
        probe_widgets=lambda widgets: GPS_PROBE,
    )
    assert unmatched == []
    assert _ids(resolved[0].matches) == ["gps:0"]
    assert _ids(resolved[1].matches) == ["gateway:0"]
    assert resolved[1].matches[0].name == "Cerbo GX"
    assert _ids(resolved[2].matches) == ["solar_charger:1"]
    assert _ids(outcome.virtual_devices) == ["gps:0", "gateway:0"]
    assert all(d.virtual for d in outcome.virtual_devices)


def test_failed_fetch_degrades_but_still_resolves():
    def broken_overview():
        raise VrmRequestError("/installations/123/system-overview", 500, "Server Error")

    resolved, unmatched, outcome = resolve_with_enrichment(
        ["battery_monitor:2", "gps"],
        _catalog(),
        fetch_overview=broken_overview,
        probe_widgets=lambda widgets: GPS_PROBE,
    )
    assert outcome.degraded
    assert len(outcome.errors) == 1
    assert outcome.errors[0].startswith("system overview")
    assert _ids(resolved[0].matches) == ["battery_monitor:2"]
    assert _ids(resolved[1].matches) == ["gps:0"]
    assert unmatched == []


def test_both_fetches_failing_is_not_fatal():
    def boom(*args):
        raise RuntimeError("network down")

    outcome = enrich_aliases(default_alias_table(), fetch_overview=boom, probe_widgets=boom)
    assert outcome.degraded
    assert len(outcome.errors) == 2
    assert outcome.virtual_devices == []
    assert outcome.aliases.type_aliases == default_alias_table().type_aliases


def test_enrichment_does_not_touch_the_base_table():
    base = default_alias_table()
    before = {k: list(v) for k, v in base.type_aliases.items()}
    outcome = enrich_aliases(base, fetch_overview=lambda: OVERVIEW)
    assert base.type_aliases == before
    assert "cerbo gx" in outcome.aliases.aliases_for("gateway")
    assert "smartsolar mppt 100/50" in outcome.aliases.aliases_for("solar_charger")


def test_learn_only_appends():
    table = default_alias_table()
    original = list(table.aliases_for("solar_charger"))
    table.learn("solar_charger", "  MPPT ").learn("solar_charger", "Victron Solar")
    table.learn("solar_charger", "")
    table.learn(None, "ignored")
    assert table.aliases_for("solar_charger") == original + ["victron solar"]


def test_guess_overview_type():
    assert guess_overview_type({"productName": "Quattro 48/5000"}) == "vebus"
    assert guess_overview_type({"productName": "X", "class": "device-ve-bus"}) == "vebus"
    assert guess_overview_type({"productName": "Lynx Smart BMS"}) == "battery_monitor"
    assert guess_overview_type({"productName": "Ruuvi tag"}) == "temp_sensor"
    assert guess_overview_type({"productName": "WS500"}) == "alternator"
    assert guess_overview_type({"productName": "Mystery box"}) is None


def test_backfill_names_only_fills_gaps():
    catalog = [
        DeviceEntry("battery_monitor:2", "battery_monitor", 2),
        DeviceEntry("solar_charger:1", "solar_charger", 1, "Kept"),
    ]
    inventory = [
        DeviceEntry("battery_monitor:2", "battery_monitor", 2, "House Bank"),
        DeviceEntry("solar_charger:1", "solar_charger", 1, "Other"),
    ]
    backfill_names(catalog, inventory)
    assert [d.name for d in catalog] == ["House Bank", "Kept"]
