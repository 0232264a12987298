# =============================================================================
# main.py  —  Entry Point for the VRM Energy Monitor Agent
# =============================================================================
#
# HOW TO RUN:
#   uv run python main.py
#
# WHAT HAPPENS:
#   1. Loads .env (VRM_API_TOKEN, VRM_SITE_ID, OPENROUTER_API_KEY, ...)
#   2. Creates the Google ADK agent (agent/vrm_agent.py), which spawns the
#      FastMCP tool server (tools/mcp_server.py) over stdio
#   3. Reads questions from the console and streams the agent's answers,
#      printing each tool call as it happens
#
# To run only the tool server (e.g. for another MCP client):
#   uv run python -m tools.mcp_server
# =============================================================================

import asyncio

from dotenv import load_dotenv

# Must run before the agent is created: LiteLlm and the spawned tool server
# both read their settings from the environment.
load_dotenv()

from google.adk.runners import Runner
from google.adk.sessions import InMemorySessionService
from google.genai import types

from agent.vrm_agent import create_agent
from core.config import load_settings
from core.errors import ConfigError

APP_NAME = "vrm_energy_monitor"
USER_ID = "console_user"


async def run_agent():
    """Run the energy-monitor agent interactively on the console."""
    print("=" * 70)
    print("  VRM ENERGY MONITOR AGENT")
    print("  Powered by Google ADK + LiteLlm + FastMCP")
    print("=" * 70)

    # Fail early with a readable message instead of inside the subprocess.
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"\n❌ {e.message}")
        return

    print(f"\n🔧 Initializing agent for site {settings.site_id}...")
    agent = create_agent()

    session_service = InMemorySessionService()
    runner = Runner(
        agent=agent,
        app_name=APP_NAME,
        session_service=session_service,
    )
    session = await session_service.create_session(
        app_name=APP_NAME,
        user_id=USER_ID,
    )

    print("✅ Agent initialized and ready!\n")
    print("💬 Ask about your installation (battery, solar, alarms...)")
    print("   (Type 'quit' to exit)\n")
    print("-" * 70)

    while True:
        try:
            user_input = input("\n🧑 You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\n\n👋 Goodbye!")
            break

        if user_input.lower() in ("quit", "exit", "q"):
            print("\n👋 Goodbye!")
            break

        if not user_input:
            continue

        user_message = types.Content(
            role="user",
            parts=[types.Part(text=user_input)],
        )

        print("\n🤖 Agent is thinking...\n")
        print("-" * 70)

        final_response = ""
        async for event in runner.run_async(
            user_id=USER_ID,
            session_id=session.id,
            new_message=user_message,
        ):
            if event.content and event.content.parts:
                for part in event.content.parts:
                    if getattr(part, "text", None):
                        final_response = part.text
                    if getattr(part, "function_call", None):
                        print(f"  🔧 Calling tool: {part.function_call.name}")

        print("-" * 70)
        if final_response:
            print(f"\n🤖 Agent:\n\n{final_response}")
        else:
            print("\n⚠️  No response generated. The agent may have encountered an error.")

        print("\n" + "=" * 70)


if __name__ == "__main__":
    asyncio.run(run_agent())
