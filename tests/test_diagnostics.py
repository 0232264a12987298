import pytest

from core.diagnostics import (
    as_number,
    canonical_device_type,
    coerce_value,
    derive_device_name,
    device_id_for,
    explicit_device_name,
    scan_attributes,
    signal_id_from_path,
    unit_from_format,
)


# -----------------------------------------------------------------------------
# Tree scanner
# -----------------------------------------------------------------------------
def test_scan_collects_attributes_in_document_order():
    tree = {
        "records": [
            {"dbusPath": "/A", "children": [{"dbusPath": "/A/1"}]},
            {"dbusPath": "/B"},
        ],
        "meta": {"dbusPath": "/C"},
    }
    paths = [a["dbusPath"] for a in scan_attributes(tree)]
    assert paths == ["/A", "/A/1", "/B", "/C"]


def test_scan_ignores_non_paths_and_primitives():
    tree = [
        None,
        42,
        "text",
        {"dbusPath": "relative/path"},
        {"dbusPath": 7},
        {"dbusPath": "/Ok"},
    ]
    assert [a["dbusPath"] for a in scan_attributes(tree)] == ["/Ok"]
    assert scan_attributes(None) == []
    assert scan_attributes("just a string") == []


def test_scan_handles_very_deep_nesting():
    node = {"dbusPath": "/Leaf"}
    for _ in range(20000):
        node = {"child": node}
    assert [a["dbusPath"] for a in scan_attributes(node)] == ["/Leaf"]


# -----------------------------------------------------------------------------
# Canonicalization
# -----------------------------------------------------------------------------
def test_solar_charger_attribute_identity():
    attr = {
        "dbusServiceType": "solarcharger",
        "instance": 1,
        "dbusPath": "/Dc/0/Voltage",
        "rawValue": 13.2,
        "formatWithUnit": "13.2 V",
    }
    assert canonical_device_type(attr) == "solar_charger"
    assert device_id_for(attr) == "solar_charger:1"
    assert signal_id_from_path(attr["dbusPath"]) == "dbus:/Dc/0/Voltage"

    record = coerce_value(attr)
    assert record.kind == "scalar"
    assert record.value == 13.2
    assert record.unit == "V"


@pytest.mark.parametrize(
    "attr, expected",
    [
        ({"dbusServiceType": "BATTERY"}, "battery_monitor"),
        ({"dbusServiceType": "bms"}, "battery_monitor"),
        ({"dbusServiceType": "Temperature"}, "temp_sensor"),
        ({"dbusServiceType": "settings"}, "system"),
        ({"dbusServiceType": "mystery", "idDeviceType": 106}, "type_106"),
        ({"idDeviceType": 106.0}, "type_106"),
        ({"Device": "VE.Bus System"}, "vebus"),
        ({"Device": "Solar Charger"}, "solar_charger"),
        ({"Device": "Battery Monitor"}, "battery_monitor"),
        ({"Device": "Skylla-i charger"}, "charger"),
        ({"Device": "System"}, "system"),
        ({"Device": "Gizmo"}, "unknown"),
        ({}, "unknown"),
    ],
)
def test_canonical_device_type_fallbacks(attr, expected):
    assert canonical_device_type(attr) == expected


def test_canonical_type_ignores_unrelated_fields():
    base = {"dbusServiceType": "vebus"}
    noisy = dict(base, dbusPath="/Mode", description="battery charger", rawValue=3)
    assert canonical_device_type(base) == canonical_device_type(noisy) == "vebus"


def test_missing_instance_defaults_to_zero():
    assert device_id_for({"dbusServiceType": "system"}) == "system:0"


def test_signal_id_requires_a_path():
    assert signal_id_from_path(None) is None
    assert signal_id_from_path("") is None


# -----------------------------------------------------------------------------
# Value coercion
# -----------------------------------------------------------------------------
def test_numeric_with_text_becomes_state():
    record = coerce_value({
        "dbusPath": "/State",
        "code": "ScS",
        "rawValue": 3,
        "formattedValue": "Bulk",
        "timestamp": 1718000050,
    })
    assert record.to_dict() == {
        "state": {"value": 3, "text": "Bulk"},
        "ts": 1718000050,
        "source": {"dbusPath": "/State", "vrmCode": "ScS"},
    }


def test_text_value_is_accepted_as_state_text():
    record = coerce_value({"dbusPath": "/Mode", "rawValue": "3", "textValue": "On"})
    assert record.is_state
    assert record.value == 3
    assert record.text == "On"


def test_blank_text_is_treated_as_absent():
    record = coerce_value({"dbusPath": "/Relay/0/State", "rawValue": 5, "formattedValue": " "})
    assert record.kind == "scalar"
    assert record.value == 5

    record = coerce_value({"dbusPath": "/Mode", "rawValue": 1,
                           "formattedValue": "  ", "textValue": "On"})
    assert record.to_dict()["state"] == {"value": 1, "text": "On"}

    assert derive_device_name([{"dbusPath": "/CustomName", "formattedValue": "   "}]) is None


def test_numeric_string_with_numeric_text_stays_scalar():
    record = coerce_value({
        "dbusPath": "/Soc",
        "rawValue": "87.5",
        "formattedValue": "87.5",
        "unit": "%",
    })
    assert record.kind == "scalar"
    assert record.value == 87.5
    assert record.unit == "%"


def test_non_numeric_value_prefers_text():
    record = coerce_value({"dbusPath": "/Serial", "rawValue": "HQ1234", "formattedValue": "HQ-1234"})
    assert record.kind == "scalar"
    assert record.value == "HQ-1234"


def test_missing_values_yield_null_scalar_without_source_code():
    record = coerce_value({"dbusPath": "/Empty", "timestamp": "yesterday"})
    assert record.to_dict() == {
        "value": None,
        "unit": None,
        "ts": None,
        "source": {"dbusPath": "/Empty"},
    }


def test_percent_tokens_are_not_units():
    assert unit_from_format("13.2 V") == "V"
    assert unit_from_format("%.1F %%") is None
    assert unit_from_format("87 %") is None
    assert unit_from_format("V") is None
    assert unit_from_format(None) is None


def test_as_number():
    assert as_number(" 12 ") == 12
    assert isinstance(as_number("12"), int)
    assert as_number("-1.5e2") == -150.0
    assert as_number("1.2.3") is None
    assert as_number(True) is None
    assert as_number(None) is None


# -----------------------------------------------------------------------------
# Device name resolver
# -----------------------------------------------------------------------------
def test_custom_name_outscores_product_name():
    records = [
        {"dbusServiceType": "battery", "instance": 2, "dbusPath": "/ProductName",
         "description": "Product name", "formattedValue": "SmartShunt"},
        {"dbusServiceType": "battery", "instance": 2, "dbusPath": "/CustomName",
         "description": "Custom name", "formattedValue": "House Bank"},
    ]
    assert derive_device_name(records) == "House Bank"


def test_equal_scores_pick_smallest_string():
    records = [
        {"dbusPath": "/A", "formattedValue": "Zeta"},
        {"dbusPath": "/B", "formattedValue": "Beta"},
    ]
    assert derive_device_name(records) == "Beta"


def test_no_text_means_no_name():
    assert derive_device_name([{"dbusPath": "/A", "rawValue": 1}]) is None
    assert derive_device_name([]) is None


def test_explicit_device_name_precedence():
    records = [
        {"dbusPath": "/A", "customName": "Custom"},
        {"dbusPath": "/B", "deviceName": "Named"},
    ]
    assert explicit_device_name(records) == "Named"
    assert explicit_device_name([{"dbusPath": "/A", "customName": ""}]) is None
