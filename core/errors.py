# =============================================================================
# core/errors.py  —  Typed failures raised by the core
# =============================================================================
#
# Every failure the tool layer has to report carries a numeric code and a
# JSON-able `data` payload.  The tool server turns them into MCP tool errors;
# the core itself never formats error responses.
#
#   VrmError
#    ├── ConfigError             missing/invalid environment settings
#    ├── VrmRequestError         HTTP or transport failure talking to VRM
#    └── SignalResolutionError   no attribute code derivable from signals
# =============================================================================

from typing import Any, Optional


class VrmError(Exception):
    """Base class for failures surfaced to the agent."""

    code = -32001

    def __init__(self, message: str, data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}


class ConfigError(VrmError):
    """One or more required settings are missing or malformed."""

    code = -32003

    def __init__(self, problems: list[str]):
        super().__init__(
            "Configuration error:\n- " + "\n- ".join(problems),
            {"problems": list(problems)},
        )
        self.problems = list(problems)


class VrmRequestError(VrmError):
    """A VRM request failed.  `status` is None for transport failures."""

    code = -32000

    def __init__(
        self,
        endpoint: str,
        status: Optional[int] = None,
        reason: str = "",
        snippet: str = "",
    ):
        if status is None:
            message = f"VRM request failed: {reason}".rstrip(": ")
        else:
            message = f"VRM request failed: {status} {reason}".rstrip()
        super().__init__(message, {"endpoint": endpoint, "snippet": snippet})
        self.endpoint = endpoint
        self.status = status
        self.reason = reason
        self.snippet = snippet

    @property
    def not_found(self) -> bool:
        return self.status == 404


class SignalResolutionError(VrmError):
    """None of the requested signals maps to a VRM attribute code."""

    code = -32002

    def __init__(self, signals: list[str]):
        super().__init__(
            "historical_values: no attribute codes resolved from signals",
            {"signals": list(signals)},
        )
        self.signals = list(signals)
