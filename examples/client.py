import asyncio
import logging
import os
import sys

from unified_agent import ClientOptions, ElicitationDecision, SpawnConfig, UnifiedAgentClient


def on_permission(event):
    print(f"permission requested: {event.request.toolCall}", file=sys.stderr)
    event.respond(event.request.options[0].optionId if event.request.options else None)


def on_approval(event):
    print(f"approval requested: {event.message}", file=sys.stderr)
    event.respond(ElicitationDecision.DENIED)


async def main() -> None:
    # usage: client.py <acp|mcp> <agent command> [args...]
    if len(sys.argv) < 3:
        print("usage: client.py <acp|mcp> <command> [args...]", file=sys.stderr)
        sys.exit(2)
    logging.basicConfig(level=logging.INFO)
    protocol, command, *args = sys.argv[1:]

    client = UnifiedAgentClient()
    client.events.subscribe("message_chunk", lambda e: print(e.text, end="", flush=True))
    client.events.subscribe("log", lambda e: print(f"[agent] {e.message}", file=sys.stderr))
    client.events.subscribe("permission_request", on_permission)
    client.events.subscribe("approval_request", on_approval)

    await client.connect(SpawnConfig(command=command, args=args, cwd=os.getcwd()), protocol, ClientOptions())
    try:
        if protocol == "acp":
            resp = await client.send_message("Hello from client")
            print(f"\nstop reason: {resp.stopReason}", file=sys.stderr)
        else:
            for tool in client.list_tools():
                print(f"{tool.name}: {tool.description or ''}")
    finally:
        await client.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
