from urllib.parse import parse_qsl, urlsplit

import pytest

from core.config import Settings
from core.vrm_client import VrmClient

SITE_ID = "123"


class FakeClient(VrmClient):
    """VrmClient whose responses come from a dict keyed by path (no query).

    A value may be a JSON value, an exception instance (raised), or a list
    wrapped in `Sequence(...)` to answer successive calls differently.
    """

    def __init__(self, routes=None):
        super().__init__(Settings(token="test-token", site_id=SITE_ID))
        self.routes = dict(routes or {})
        self.calls = []

    def get_json(self, path):
        self.calls.append(path)
        base = urlsplit(path).path
        if base not in self.routes:
            raise AssertionError(f"unexpected request: {path}")
        answer = self.routes[base]
        if isinstance(answer, Sequence):
            answer = answer.next()
        if isinstance(answer, Exception):
            raise answer
        return answer

    def queries(self, suffix):
        """Parsed query pairs of every call whose path ends with `suffix`."""
        return [
            parse_qsl(urlsplit(p).query)
            for p in self.calls
            if urlsplit(p).path.endswith(suffix)
        ]


class Sequence:
    def __init__(self, *answers):
        self.answers = list(answers)

    def next(self):
        return self.answers.pop(0)


def site_path(suffix):
    return f"/installations/{SITE_ID}/{suffix}"


@pytest.fixture
def diagnostics_tree():
    """A realistic slice of a VRM diagnostics response."""
    return {
        "success": True,
        "records": [
            {
                "idSite": 123,
                "dbusServiceType": "solarcharger",
                "Device": "Solar Charger",
                "instance": 1,
                "dbusPath": "/Dc/0/Voltage",
                "code": "ScV",
                "description": "Battery voltage",
                "formatWithUnit": "%.2F V",
                "rawValue": 13.2,
                "timestamp": 1718000100,
            },
            {
                "dbusServiceType": "solarcharger",
                "instance": 1,
                "dbusPath": "/State",
                "code": "ScS",
                "description": "Charge state",
                "rawValue": 3,
                "formattedValue": "Bulk",
                "timestamp": 1718000050,
            },
            {
                "dbusServiceType": "solarcharger",
                "instance": 1,
                "dbusPath": "/ProductName",
                "description": "Product name",
                "rawValue": "SmartSolar Charger MPPT 100/50",
                "formattedValue": "SmartSolar Charger MPPT 100/50",
            },
            {
                "dbusServiceType": "battery",
                "instance": 2,
                "dbusPath": "/Soc",
                "code": "SOC",
                "description": "State of charge",
                "formatWithUnit": "%.1F %%",
                "rawValue": "87.5",
                "timestamp": 1718000000,
            },
            {
                "dbusServiceType": "battery",
                "instance": 2,
                "dbusPath": "/CustomName",
                "description": "Custom name",
                "formattedValue": "House Bank",
            },
            {
                "dbusServiceType": "battery",
                "instance": 2,
                "dbusPath": "/ProductName",
                "description": "Product name",
                "formattedValue": "SmartShunt",
            },
            {
                "dbusServiceType": "vebus",
                "instance": 276,
                "customName": "Main Inverter",
                "dbusPath": "/Ac/Out/L1/P",
                "code": "OP1",
                "formatWithUnit": "%.0F W",
                "rawValue": 450,
                "timestamp": 1718000200,
            },
        ],
    }
