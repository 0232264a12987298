# =============================================================================
# core/__init__.py
# =============================================================================
# The VRM telemetry pipeline: scanning and canonicalizing diagnostics,
# building the device catalog, chunking responses and resolving selectors.
#
# Nothing in this package imports Google ADK or FastMCP.  The only network
# access goes through core/vrm_client.py; every other module works on plain
# JSON values and can be exercised offline.
# =============================================================================
