# =============================================================================
# agent/__init__.py
# =============================================================================
# Google ADK agent configuration for the console (main.py).
#
# The agent only orchestrates: it decides which VRM tools to call and
# explains their results.  Tool implementations live in tools/, the
# telemetry logic in core/.
# =============================================================================
