import json
import sys
import os
import logging
from typing import Any, Dict, Optional

from core.server import DualResponseServer, ValidationError

SERVER_NAME = os.getenv("MCP_SERVER_NAME", "insights-mcp")
SERVER_VERSION = os.getenv("MCP_SERVER_VERSION", "1.0.0")

DEBUG = os.getenv("DEBUG", "false").strip().lower() in {"1", "true", "yes", "on"}

logging.basicConfig(level=logging.DEBUG if DEBUG else logging.INFO, stream=sys.stderr)
logger = logging.getLogger(__name__)

__all__ = ["ValidationError", "build_server", "get_server_singleton", "handle_message", "handle_tool_call", "main"]


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def config_from_env() -> Dict[str, Any]:
    """Server configuration from environment variables."""
    bind = os.getenv("REMOTE_BIND", "0.0.0.0:3000")
    port = bind.rsplit(":", 1)[-1]
    ttl = os.getenv("RESOURCE_TTL_SECONDS", "").strip()
    return {
        "db_path": os.getenv("INSIGHTS_DB_PATH", "insights.sqlite"),
        "base_url": os.getenv("PUBLIC_BASE_URL", f"http://localhost:{port}"),
        "sample_size": int(os.getenv("SAMPLE_SIZE", "10")),
        "dual_response": _flag("DUAL_RESPONSE", "true"),
        "resource_ttl_seconds": float(ttl) if ttl else None,
        "debug": DEBUG,
    }


def _register_all_handlers(server):
    """Register all tool handlers with the server's tool table"""
    from handlers import database
    database.register(server)


def build_server(config: Optional[Dict[str, Any]] = None) -> DualResponseServer:
    server = DualResponseServer(config if config is not None else config_from_env())
    _register_all_handlers(server)
    return server


_server_singleton: Optional[DualResponseServer] = None


def get_server_singleton() -> DualResponseServer:
    global _server_singleton
    if _server_singleton is None:
        _server_singleton = build_server()
        logger.info("Dual-response mode: %s", "ENABLED" if _server_singleton.dual_response else "DISABLED")
    return _server_singleton


def _error(message_id, code: int, text: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": message_id, "error": {"code": code, "message": text}}


def handle_tool_call(message, server: Optional[DualResponseServer] = None):
    """Handle a tools/call request"""
    params = message.get("params") or {}
    tool_name = params.get("name")
    arguments = params.get("arguments") or {}
    if not tool_name:
        return _error(message.get("id"), -32602, "Invalid params: missing tool name")

    server = server or get_server_singleton()
    try:
        result = server.call_tool(tool_name, arguments)
    except LookupError as e:
        return _error(message.get("id"), -32601, str(e))
    except ValidationError as e:
        return _error(message.get("id"), -32602, f"Invalid params: {e}")
    return {"jsonrpc": "2.0", "id": message.get("id"), "result": result}


def handle_message(message, server: Optional[DualResponseServer] = None):
    """Handle incoming MCP messages"""
    if not isinstance(message, dict):
        return _error(None, -32600, "Invalid Request")
    try:
        method = message.get("method")

        if method == "initialize":
            return {
                "jsonrpc": "2.0",
                "id": message.get("id"),
                "result": {
                    "protocolVersion": os.getenv("PROTOCOL_VERSION", "2025-06-18"),
                    "capabilities": {
                        "tools": {"listChanged": False}
                    },
                    "serverInfo": {
                        "name": SERVER_NAME,
                        "version": SERVER_VERSION
                    }
                }
            }
        elif method == "notifications/initialized":
            return None
        elif method == "tools/list":
            return {
                "jsonrpc": "2.0",
                "id": message.get("id"),
                "result": (server or get_server_singleton()).list_tools()
            }
        elif method == "tools/call":
            return handle_tool_call(message, server)

        else:
            return _error(message.get("id"), -32601, f"Method not found: {method}")
    except Exception as e:
        logger.exception(f"Error handling message: {e}")
        return _error(message.get("id"), -32603, "Internal error")


def main():
    """Stdio entry point: newline-delimited or Content-Length framed JSON-RPC"""
    try:
        server = get_server_singleton()
        logger.info(f"{SERVER_NAME} v{SERVER_VERSION} starting...")
        logger.info(f"Database: {server.engine.db_path} (exists={server.engine.exists()})")
        logger.info(f"Resource base URL: {server.base_url}")

        use_headers = False
        stdin_b = sys.stdin.buffer
        stdout_b = sys.stdout.buffer

        def _send(obj):
            body = json.dumps(obj).encode("utf-8")
            if use_headers:
                stdout_b.write(f"Content-Length: {len(body)}\r\n\r\n".encode("utf-8"))
                stdout_b.write(body)
            else:
                stdout_b.write(body + b"\n")
            stdout_b.flush()

        while True:
            line = stdin_b.readline()
            if not line:
                break
            try:
                stripped = line.strip()
                if not stripped:
                    continue
                if stripped.lower().startswith(b"content-length:"):
                    use_headers = True
                    length = int(stripped.split(b":", 1)[1].strip())
                    # consume remaining headers until blank line
                    while True:
                        h = stdin_b.readline()
                        if not h or h in (b"\r\n", b"\n"):
                            break
                    body = stdin_b.read(length)
                    message = json.loads(body.decode("utf-8", errors="replace"))
                else:
                    # Assume the line is a complete JSON message
                    message = json.loads(stripped.decode("utf-8", errors="replace"))
                response = handle_message(message, server)
                if response:
                    _send(response)
            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON received: {e}")
                _send(_error(None, -32700, "Parse error"))
            except ValueError as e:
                logger.error(f"Bad frame header: {e}")

    except Exception as e:
        logger.error(f"Server startup error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
