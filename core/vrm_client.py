# =============================================================================
# core/vrm_client.py  —  Minimal VRM REST client
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Issues authenticated GET requests against the VRM API and decodes the
#   JSON body.  This is the single network capability the rest of core/
#   consumes:
#
#       client.get_json("/installations/123/diagnostics") -> JSON value
#
# FAILURE CONTRACT:
#   - Non-2xx response   → VrmRequestError(status, reason, endpoint, snippet)
#   - Transport failure  → VrmRequestError(status=None, reason=<error>)
#   - 2xx but not a JSON object/array → {"raw": <body text>}
#
#   No retries: a failed call fails the tool (or triggers the tool's own
#   documented fallback).
# =============================================================================

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Iterable, Mapping, Optional, Union

from core.config import Settings
from core.errors import VrmRequestError

SNIPPET_CHARS = 400

QueryParams = Union[Mapping[str, Any], Iterable[tuple[str, Any]]]


class VrmClient:
    """GET-only JSON client bound to one installation."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def site_id(self) -> int:
        return self.settings.site_id_number

    def installation_path(self, suffix: str, params: Optional[QueryParams] = None) -> str:
        """Build "/installations/<site>/<suffix>[?query]".

        `params` may be a mapping or a sequence of pairs (repeated keys such
        as "attributeCodes[]" need the latter).  None values are skipped.
        """
        path = f"/installations/{self.settings.site_id}/{suffix.lstrip('/')}"
        if params:
            pairs = params.items() if isinstance(params, Mapping) else params
            query = urllib.parse.urlencode(
                [(k, _query_value(v)) for k, v in pairs if v is not None]
            )
            if query:
                path = f"{path}?{query}"
        return path

    def get_json(self, path: str) -> Any:
        url = f"{self.settings.base_url}{path}"
        req = urllib.request.Request(url, method="GET")
        req.add_header("Accept", "application/json")
        req.add_header(self.settings.auth_header, f"Token {self.settings.token}")

        logging.debug("GET %s", path)
        try:
            with urllib.request.urlopen(req, timeout=self.settings.timeout_s) as response:
                text = response.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            body = _read_error_body(e)
            raise VrmRequestError(
                endpoint=path,
                status=e.code,
                reason=str(e.reason or ""),
                snippet=body[:SNIPPET_CHARS],
            ) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            reason = getattr(e, "reason", None) or e
            raise VrmRequestError(endpoint=path, reason=str(reason)) from e

        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, (dict, list)):
            return parsed
        return {"raw": text}


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _read_error_body(error: urllib.error.HTTPError) -> str:
    try:
        return error.read().decode("utf-8", errors="replace")
    except (OSError, AttributeError):
        return ""
