# =============================================================================
# tools/__init__.py
# =============================================================================
# FastMCP tool wrappers.  Each tool in mcp_server.py:
#   1. Reads settings and builds a VrmClient
#   2. Calls core/ functions
#   3. Shapes the result (envelopes, resolution objects, pass-through dicts)
#   4. Converts core failures (VrmError) into MCP tool errors
#
# Tools hold no state between calls and contain no matching or
# canonicalization logic of their own.
# =============================================================================
