"""MCP adapter: exposes the Gateway's tools over the Model Context Protocol.

Uses the low-level mcp Server. Each call_tool runs Gateway.handle() in a
worker thread so the event loop keeps serving other requests while a
command runs. Progress notifications are sent only when the client
supplied a progress token; protocol cancellation sets the call's cancel
event so the supervisor kills the process group.
"""

import asyncio
import sys
import threading

from mcp import types
from mcp.server import Server
from mcp.server.stdio import stdio_server

from core.gateway import Gateway
from core.models import ToolResponse


SERVER_NAME = "cmdgate"
SERVER_VERSION = "0.3.0"

# Upper bound on one progress notification write from the relay thread
PROGRESS_SEND_TIMEOUT = 5.0

INSTRUCTIONS = (
    "Runs a fixed set of commands (cat, ls, bazel, git) without a shell. "
    "Shell operators are rejected; use grep_pattern, invert_grep, sort, "
    "unique, head, tail and transform_order to filter output."
)


def to_call_tool_result(response: ToolResponse) -> types.CallToolResult:
    """Map a ToolResponse onto the protocol result."""
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=response.text)],
        isError=response.is_error,
    )


def make_progress_sink(session, progress_token, loop: asyncio.AbstractEventLoop):
    """Progress sink that forwards lines as notifications/progress.

    Called from the relay thread, never from the event loop. A slow or
    broken client raises here; the relay counts it and moves on.
    """
    def sink(sequence_number: int, text: str) -> None:
        future = asyncio.run_coroutine_threadsafe(
            session.send_progress_notification(
                progress_token, float(sequence_number), message=text
            ),
            loop,
        )
        future.result(timeout=PROGRESS_SEND_TIMEOUT)

    return sink


def create_server(gateway: Gateway) -> Server:
    app = Server(SERVER_NAME, version=SERVER_VERSION, instructions=INSTRUCTIONS)

    @app.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [
            types.Tool(
                name=t["name"],
                description=t["description"],
                inputSchema=t["inputSchema"],
            )
            for t in gateway.list_tools()
        ]

    @app.call_tool()
    async def call_tool(name: str, arguments: dict) -> types.CallToolResult:
        ctx = app.request_context
        loop = asyncio.get_running_loop()

        progress_sink = None
        token = ctx.meta.progressToken if ctx.meta is not None else None
        if token is not None:
            progress_sink = make_progress_sink(ctx.session, token, loop)

        cancel_event = threading.Event()
        try:
            response = await asyncio.to_thread(
                gateway.handle, name, arguments or {}, progress_sink, cancel_event
            )
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        return to_call_tool_result(response)

    return app


async def serve(gateway: Gateway) -> None:
    """Serve MCP over stdin/stdout until the client disconnects."""
    app = create_server(gateway)
    print(f"[cmdgate] Serving {len(gateway.list_tools())} tools over stdio", file=sys.stderr)
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())
