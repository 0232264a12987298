# =============================================================================
# agent/vrm_agent.py  —  Google ADK Agent Configuration (LiteLlm model)
# =============================================================================
#
# WHAT THIS FILE DOES:
#   Creates the Google ADK agent that answers questions about the
#   installation.  The agent has no VRM logic of its own; it reasons with
#   an LLM and calls the tools served by tools/mcp_server.py.
#
#   ┌─────────────────────────────┐        ┌──────────────────────────┐
#   │  ADK Agent                  │  MCP   │  FastMCP server          │
#   │  prompt + LiteLlm model ────┼──────▶ │  (tools/mcp_server.py)   │
#   └─────────────────────────────┘ stdio  │  diagnostics_index, ...  │
#                                          └────────────┬─────────────┘
#                                                       ▼
#                                          ┌──────────────────────────┐
#                                          │  core/  → VRM REST API   │
#                                          └──────────────────────────┘
#
# MCP CONNECTION:
#   ADK starts the tool server as a subprocess ("python -m tools.mcp_server"
#   from the project root) and talks to it over stdin/stdout.  The
#   subprocess inherits the environment, so VRM_* settings loaded from .env
#   here reach the server too.
#
# MODEL:
#   VRM_AGENT_MODEL selects the LiteLlm model string (default
#   "openrouter/openai/gpt-4o"; LiteLlm reads OPENROUTER_API_KEY itself).
# =============================================================================

import os
import sys

from google.adk.agents import Agent
from google.adk.models.lite_llm import LiteLlm
from google.adk.tools.mcp_tool import MCPToolset
from mcp import StdioServerParameters

from agent.prompt import get_energy_monitor_prompt
from core.config import DEFAULT_AGENT_MODEL


def create_agent() -> Agent:
    """Create the energy-monitor agent wired to the VRM tool server.

    Returns:
        A configured Google ADK Agent instance.
    """
    project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

    # The server runs with the same interpreter as this process, so it sees
    # the same installed packages (fastmcp, core/, ...).
    mcp_tools = MCPToolset(
        connection_params=StdioServerParameters(
            command=sys.executable,
            args=["-m", "tools.mcp_server"],
            cwd=project_root,
            env=dict(os.environ),
        ),
    )

    model_name = os.environ.get("VRM_AGENT_MODEL", "").strip() or DEFAULT_AGENT_MODEL

    agent = Agent(
        name="vrm_energy_monitor",                     # Used in logs and traces
        model=LiteLlm(model=model_name),               # Any LiteLlm-supported model
        instruction=get_energy_monitor_prompt(),       # System prompt from prompt.py
        tools=[mcp_tools],                             # Our FastMCP tool server
    )

    return agent
