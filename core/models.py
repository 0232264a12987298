# =============================================================================
# core/models.py  —  Data Models (the "nouns" of the telemetry pipeline)
# =============================================================================
#
# These dataclasses define the shape of every piece of information that flows
# from the VRM diagnostics tree to a tool response:
#
#   raw attribute dict ──▶ ValueRecord / SignalEntry ──▶ DeviceEntry
#                                                          │
#                               ┌──────────────────────────┴───────┐
#                               ▼                                  ▼
#                         envelopes (chunking)          SelectorResolution
#
# Every model exposes to_dict(), which produces exactly the JSON shape the
# agent sees.  Optional fields are omitted rather than sent as null where the
# response contract marks them optional (e.g. a device's name).
#
# Nothing here is cached or shared between calls: every tool call builds
# these objects from scratch and throws them away after serialization.
# =============================================================================

from dataclasses import dataclass, field
from typing import Any, Optional

SCHEMA_VERSION = "0.1"


# -----------------------------------------------------------------------------
# ValueRecord — one coerced measurement
# -----------------------------------------------------------------------------
# Two kinds:
#   scalar → {value, unit, ts, source}            e.g. 13.2 V
#   state  → {state: {value, text}, ts, source}   e.g. 3 / "Bulk"
# -----------------------------------------------------------------------------
@dataclass
class ValueRecord:
    """A diagnostics attribute coerced into a scalar or a state."""

    kind: str                          # "scalar" or "state"
    value: Any                         # number, text or None
    source: dict[str, Any]             # {"dbusPath": ..., "vrmCode"?: ...}
    unit: Optional[str] = None         # scalar only
    text: Optional[str] = None         # state only
    ts: Optional[float] = None         # numeric timestamp or None

    @property
    def is_state(self) -> bool:
        return self.kind == "state"

    def to_dict(self) -> dict[str, Any]:
        if self.is_state:
            return {
                "state": {"value": self.value, "text": self.text},
                "ts": self.ts,
                "source": dict(self.source),
            }
        return {
            "value": self.value,
            "unit": self.unit,
            "ts": self.ts,
            "source": dict(self.source),
        }


# -----------------------------------------------------------------------------
# SignalEntry — one addressable signal in index mode (no value)
# -----------------------------------------------------------------------------
@dataclass
class SignalEntry:
    """A discovered signal: identity, unit and provenance."""

    signal_id: str                     # "dbus:/Dc/0/Voltage"
    unit: Optional[str]
    source: dict[str, Any]
    last_ts: Optional[float] = None    # only emitted when truthy

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "signalId": self.signal_id,
            "unit": self.unit,
            "source": dict(self.source),
        }
        if self.last_ts:
            out["lastTs"] = self.last_ts
        return out


# -----------------------------------------------------------------------------
# ValueEntry — one signal with its current value (values mode)
# -----------------------------------------------------------------------------
@dataclass
class ValueEntry:
    signal_id: str
    record: ValueRecord

    def to_dict(self) -> dict[str, Any]:
        return {"signalId": self.signal_id, **self.record.to_dict()}


# -----------------------------------------------------------------------------
# DeviceEntry — one aggregated device in the catalog
# -----------------------------------------------------------------------------
# `signals` is filled in index mode, `values` in values mode.  A plain
# catalog entry (inventory, selector matches) carries neither.
# -----------------------------------------------------------------------------
@dataclass
class DeviceEntry:
    """A device keyed by "<type>:<instance>"."""

    device_id: str                     # "solar_charger:1"
    type: str                          # canonical device type
    instance: Any                      # usually an int; 0 when absent
    name: Optional[str] = None
    signals: Optional[list[SignalEntry]] = None
    values: Optional[list[ValueEntry]] = None
    virtual: bool = False              # synthesized (gps:0, gateway:0)

    def sort_key(self) -> tuple:
        return (self.type, instance_sort_key(self.instance), self.name or "")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "deviceId": self.device_id,
            "type": self.type,
            "instance": self.instance,
        }
        if self.name:
            out["name"] = self.name
        if self.signals is not None:
            out["signals"] = [s.to_dict() for s in self.signals]
        if self.values is not None:
            out["values"] = [v.to_dict() for v in self.values]
        return out


def instance_sort_key(instance: Any) -> tuple:
    """Order numeric instances numerically, anything else after them as text."""
    if isinstance(instance, (int, float)) and not isinstance(instance, bool):
        return (0, instance, "")
    return (1, 0, str(instance))


# -----------------------------------------------------------------------------
# Catalog — the builder's output
# -----------------------------------------------------------------------------
@dataclass
class Catalog:
    """Ordered device entries plus the newest timestamp observed."""

    devices: list[DeviceEntry] = field(default_factory=list)
    max_ts: float = 0                  # 0 when no record carried a timestamp


# -----------------------------------------------------------------------------
# AliasTable — canonical type → alias keywords, keyword → types
# -----------------------------------------------------------------------------
# Built fresh per call from a static seed.  learn() only ever appends unseen
# lowercase strings; existing entries are never replaced or reordered.
# -----------------------------------------------------------------------------
@dataclass
class AliasTable:
    """Alias keywords used by the substring and class-alias tiers."""

    type_aliases: dict[str, list[str]] = field(default_factory=dict)
    class_aliases: dict[str, list[str]] = field(default_factory=dict)

    def copy(self) -> "AliasTable":
        return AliasTable(
            type_aliases={k: list(v) for k, v in self.type_aliases.items()},
            class_aliases={k: list(v) for k, v in self.class_aliases.items()},
        )

    def learn(self, device_type: Optional[str], alias: Any) -> "AliasTable":
        if not device_type or alias is None:
            return self
        lc = str(alias).strip().lower()
        if not lc:
            return self
        aliases = self.type_aliases.setdefault(device_type, [])
        if lc not in aliases:
            aliases.append(lc)
        return self

    def aliases_for(self, device_type: str) -> list[str]:
        return self.type_aliases.get(device_type, [])

    def class_targets(self, keyword: str) -> list[str]:
        return self.class_aliases.get(keyword, [])


# -----------------------------------------------------------------------------
# EnrichmentOutcome — what best-effort alias learning produced
# -----------------------------------------------------------------------------
# Never raised, always returned.  `degraded` is True when either fetch (or
# the processing of its result) failed; `errors` says which.
# -----------------------------------------------------------------------------
@dataclass
class EnrichmentOutcome:
    aliases: AliasTable
    virtual_devices: list[DeviceEntry] = field(default_factory=list)
    degraded: bool = False
    errors: list[str] = field(default_factory=list)


# -----------------------------------------------------------------------------
# SelectorResolution — one selector and the devices it resolved to
# -----------------------------------------------------------------------------
@dataclass
class SelectorResolution:
    selector: str
    matches: list[DeviceEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "matches": [m.to_dict() for m in self.matches],
        }
