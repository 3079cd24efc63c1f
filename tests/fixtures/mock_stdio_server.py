"""
Minimal MCP server speaking newline-delimited JSON-RPC over stdio.

Spawned by the tests with ``sys.executable``. Tool calls named ``slow`` are
answered from a timer thread so that later requests can overtake them;
``never_reply`` is never answered; ``crash`` exits the process.
"""

import json
import sys
import threading

PROTOCOL_VERSION = "2024-11-05"

TOOLS = [
    {
        "name": "echo",
        "description": "Echo the given text",
        "inputSchema": {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    },
    {
        "name": "add",
        "description": "Add two numbers",
        "inputSchema": {
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    },
    {
        "name": "read_file",
        "description": "Read a file",
        "inputSchema": {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
        },
    },
    {
        "name": "slow",
        "description": "Answer after a delay",
        "inputSchema": {
            "type": "object",
            "properties": {"seconds": {"type": "number"}, "text": {"type": "string"}},
            "required": ["seconds"],
        },
    },
    {
        "name": "fail",
        "description": "Always fails",
        "inputSchema": {"type": "object", "properties": {}},
    },
]

RESOURCES = [
    {"uri": "file:///notes.txt", "name": "notes", "mimeType": "text/plain"},
]

PROMPTS = [
    {
        "name": "greet",
        "description": "Greet someone",
        "arguments": [{"name": "who", "required": True}],
    },
]

_write_lock = threading.Lock()


def send(message):
    with _write_lock:
        sys.stdout.write(json.dumps(message) + "\n")
        sys.stdout.flush()


def reply(request_id, result):
    send({"jsonrpc": "2.0", "id": request_id, "result": result})


def reply_error(request_id, code, message):
    send({"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}})


def text_result(text):
    return {"content": [{"type": "text", "text": text}], "isError": False}


def call_tool(request_id, params):
    name = params.get("name")
    arguments = params.get("arguments") or {}

    if name == "echo":
        reply(request_id, text_result(arguments.get("text", "")))
    elif name == "add":
        reply(request_id, text_result(str(arguments["a"] + arguments["b"])))
    elif name == "read_file":
        reply(request_id, text_result(f"contents of {arguments['path']}"))
    elif name == "slow":
        timer = threading.Timer(
            float(arguments["seconds"]),
            reply,
            args=(request_id, text_result(arguments.get("text", "slow done"))),
        )
        timer.daemon = True
        timer.start()
    elif name == "fail":
        reply_error(request_id, -32000, "Tool failed on purpose")
    elif name == "change_tools":
        send({"jsonrpc": "2.0", "method": "notifications/tools/list_changed"})
        reply(request_id, text_result("changed"))
    else:
        reply_error(request_id, -32602, f"Unknown tool: {name}")


def handle(message):
    method = message.get("method")
    request_id = message.get("id")
    params = message.get("params") or {}

    if request_id is None:
        # Notifications need no answer
        return

    if method == "initialize":
        reply(request_id, {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": True}, "resources": {}, "prompts": {}},
            "serverInfo": {"name": "mock-stdio-server", "version": "1.0.0"},
        })
    elif method == "ping":
        reply(request_id, {})
    elif method == "tools/list":
        reply(request_id, {"tools": TOOLS})
    elif method == "tools/call":
        call_tool(request_id, params)
    elif method == "resources/list":
        reply(request_id, {"resources": RESOURCES})
    elif method == "resources/read":
        reply(request_id, {"contents": [{"uri": params.get("uri"), "mimeType": "text/plain", "text": "hello notes"}]})
    elif method == "prompts/list":
        reply(request_id, {"prompts": PROMPTS})
    elif method == "prompts/get":
        who = (params.get("arguments") or {}).get("who", "world")
        reply(request_id, {
            "description": "Greeting",
            "messages": [{"role": "user", "content": {"type": "text", "text": f"Hello {who}"}}],
        })
    elif method == "never_reply":
        pass
    elif method == "crash":
        sys.stdout.flush()
        sys.exit(3)
    else:
        reply_error(request_id, -32601, f"Method not found: {method}")


def main():
    sys.stderr.write("mock server starting\n")
    sys.stderr.flush()
    # Noise before the first frame must be skipped by the client
    sys.stdout.write("not json\n")
    sys.stdout.flush()

    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        handle(json.loads(line))


if __name__ == "__main__":
    main()
