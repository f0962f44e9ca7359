"""External tool-protocol (MCP) servers: clients, tool adapters and a shared lazy registry."""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from ..context import CallContext
from ..errors import ToolExecutionError, ValidationError
from ..infra.logging import get_logger
from ..sync import RWLock
from ..types import MCPCallResult, MCPServer, MCPToolInfo

logger = get_logger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "agentsdk", "version": "0.1.0"}


@dataclass
class MCPServerConfig:
    name: str
    type: str = "stdio"  # "stdio" | "http"
    command: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None
    url: str = ""
    rpc_timeout: float = 30.0

    @property
    def key(self) -> str:
        return f"{self.type}:{self.name}:{self.command or self.url}"

    def validate(self) -> None:
        if self.type == "stdio" and not self.command:
            raise ValidationError(f"MCP server {self.name!r}: stdio servers need a command")
        if self.type == "http" and not self.url:
            raise ValidationError(f"MCP server {self.name!r}: http servers need a url")
        if self.type not in ("stdio", "http"):
            raise ValidationError(f"MCP server {self.name!r}: unsupported type {self.type!r}")


def _tool_infos(result: dict[str, Any]) -> list[MCPToolInfo]:
    return [
        MCPToolInfo(
            name=t["name"],
            description=t.get("description", ""),
            input_schema=t.get("inputSchema") or {"type": "object", "properties": {}},
        )
        for t in result.get("tools", [])
    ]


def _call_result(result: dict[str, Any]) -> MCPCallResult:
    text = "".join(c.get("text", "") for c in result.get("content", []))
    return MCPCallResult(content=text, is_error=bool(result.get("isError")))


class StdioMCPServer:
    """JSON-RPC over a subprocess's stdin/stdout."""

    def __init__(self, config: MCPServerConfig) -> None:
        self.config = config
        self._proc: asyncio.subprocess.Process | None = None
        self._pending: dict[str, asyncio.Future] = {}
        self._reader_task: asyncio.Task | None = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        self._proc = await asyncio.create_subprocess_exec(
            self.config.command, *self.config.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            env=self.config.env,
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        await self._rpc("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": CLIENT_INFO,
        })
        await self._notify("notifications/initialized")

    async def list_tools(self) -> list[MCPToolInfo]:
        return _tool_infos(await self._rpc("tools/list", {}))

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> MCPCallResult:
        return _call_result(await self._rpc("tools/call", {"name": name, "arguments": arguments}))

    async def close(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            self._reader_task = None
        if self._proc:
            if self._proc.returncode is None:
                self._proc.kill()
            await self._proc.wait()
        self._proc = None
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(ConnectionError("MCP server closed"))
        self._pending.clear()

    async def _rpc(self, method: str, params: Any) -> Any:
        if not self._proc or not self._proc.stdin:
            raise ConnectionError("MCP server not connected")
        rid = str(next(self._ids))
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[rid] = fut
        msg = json.dumps({"jsonrpc": "2.0", "id": rid, "method": method, "params": params}) + "\n"
        self._proc.stdin.write(msg.encode())
        await self._proc.stdin.drain()
        try:
            return await asyncio.wait_for(fut, timeout=self.config.rpc_timeout)
        finally:
            self._pending.pop(rid, None)

    async def _notify(self, method: str) -> None:
        if not self._proc or not self._proc.stdin:
            return
        msg = json.dumps({"jsonrpc": "2.0", "method": method}) + "\n"
        self._proc.stdin.write(msg.encode())
        await self._proc.stdin.drain()

    async def _read_loop(self) -> None:
        assert self._proc and self._proc.stdout
        while True:
            line = await self._proc.stdout.readline()
            if not line:
                break
            try:
                msg = json.loads(line)
            except json.JSONDecodeError:
                continue
            rid = msg.get("id")
            fut = self._pending.get(str(rid)) if rid is not None else None
            if fut is None or fut.done():
                continue
            if msg.get("error"):
                fut.set_exception(ConnectionError(msg["error"].get("message", "RPC error")))
            else:
                fut.set_result(msg.get("result", {}))


class HttpMCPServer:
    """JSON-RPC over HTTP POST."""

    def __init__(self, config: MCPServerConfig) -> None:
        self.config = config
        self._session: aiohttp.ClientSession | None = None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.rpc_timeout)
        )
        try:
            await self._rpc("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            })
        except Exception:
            await self.close()
            raise

    async def list_tools(self) -> list[MCPToolInfo]:
        return _tool_infos(await self._rpc("tools/list", {}))

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> MCPCallResult:
        return _call_result(await self._rpc("tools/call", {"name": name, "arguments": arguments}))

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _rpc(self, method: str, params: Any) -> Any:
        if self._session is None:
            raise ConnectionError("MCP server not connected")
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        async with self._session.post(self.config.url, json=body) as resp:
            resp.raise_for_status()
            msg = await resp.json(content_type=None)
        if msg.get("error"):
            raise ConnectionError(msg["error"].get("message", "RPC error"))
        return msg.get("result", {})


ServerFactory = Callable[[MCPServerConfig], Awaitable[MCPServer]]


async def create_mcp_server(
    config: MCPServerConfig, attempts: int = 5, delay: float = 3.0
) -> MCPServer:
    """Start and connect a server, retrying while it comes up."""
    config.validate()
    last: Exception | None = None
    for attempt in range(1, attempts + 1):
        server: StdioMCPServer | HttpMCPServer = (
            StdioMCPServer(config) if config.type == "stdio" else HttpMCPServer(config)
        )
        try:
            await server.connect()
            await server.list_tools()
            return server
        except (OSError, ConnectionError, asyncio.TimeoutError, aiohttp.ClientError) as e:
            last = e
            await server.close()
            logger.warning("mcp_server_not_ready", server=config.name, attempt=attempt, error=str(e))
            if attempt < attempts:
                await asyncio.sleep(delay)
    raise ConnectionError(f"MCP server {config.name!r} not ready after {attempts} attempts: {last}")


class MCPServerRegistry:
    """
    Process-wide cache of started servers keyed by ``type:name:command``.

    Lookups share the read lock; creation re-checks under the write lock so
    concurrent first uses of one config start a single server.
    """

    def __init__(self, factory: ServerFactory | None = None) -> None:
        self._factory = factory or create_mcp_server
        self._servers: dict[str, MCPServer] = {}
        self._lock = RWLock()

    async def get_or_create(self, config: MCPServerConfig) -> MCPServer:
        key = config.key
        async with self._lock.read():
            server = self._servers.get(key)
        if server is not None:
            return server
        async with self._lock.write():
            server = self._servers.get(key)
            if server is None:
                logger.info("mcp_server_starting", server=config.name, key=key)
                server = await self._factory(config)
                self._servers[key] = server
        return server

    async def get(self, config: MCPServerConfig) -> MCPServer | None:
        async with self._lock.read():
            return self._servers.get(config.key)

    async def size(self) -> int:
        async with self._lock.read():
            return len(self._servers)

    async def reset(self) -> None:
        """Close and forget every cached server."""
        async with self._lock.write():
            servers = list(self._servers.values())
            self._servers.clear()
        for s in servers:
            try:
                await s.close()
            except Exception as e:
                logger.warning("mcp_server_close_failed", error=str(e))


_registry = MCPServerRegistry()


def get_server_registry() -> MCPServerRegistry:
    return _registry


async def reset_server_registry(factory: ServerFactory | None = None) -> None:
    global _registry
    old = _registry
    _registry = MCPServerRegistry(factory)
    await old.reset()


def _parse_arguments(tool_name: str, arguments: str) -> dict[str, Any]:
    if not arguments or not arguments.strip():
        return {}
    try:
        value = json.loads(arguments)
    except json.JSONDecodeError as e:
        raise ToolExecutionError(tool_name, f"invalid arguments: {e}", e) from e
    if not isinstance(value, dict):
        raise ToolExecutionError(tool_name, "arguments must be a JSON object")
    return value


class MCPTool:
    """A tool exposed by a connected server."""

    def __init__(self, server: MCPServer, info: MCPToolInfo) -> None:
        self.server = server
        self.info = info
        self.name = info.name
        self.description = info.description

    def parameters_schema(self) -> dict[str, Any]:
        return self.info.input_schema

    async def execute(self, arguments: str, ctx: CallContext) -> str:
        result = await self.server.call_tool(self.name, _parse_arguments(self.name, arguments))
        if result.is_error:
            raise ToolExecutionError(self.name, result.content or "MCP tool error")
        return result.content


class LazyMCPTool:
    """A tool whose server is started, and schema discovered, on first use."""

    def __init__(
        self,
        config: MCPServerConfig,
        name: str,
        description: str = "",
        registry: MCPServerRegistry | None = None,
    ) -> None:
        self.config = config
        self.name = name
        self.description = description
        self._registry = registry
        self._schema: dict[str, Any] | None = None

    @property
    def registry(self) -> MCPServerRegistry:
        return self._registry or get_server_registry()

    def parameters_schema(self) -> dict[str, Any]:
        return self._schema or {"type": "object", "properties": {}}

    async def discover(self) -> MCPToolInfo:
        server = await self.registry.get_or_create(self.config)
        for info in await server.list_tools():
            if info.name == self.name:
                self._schema = info.input_schema
                if not self.description:
                    self.description = info.description
                return info
        raise ToolExecutionError(
            self.name, f"tool {self.name} not offered by MCP server {self.config.name}"
        )

    async def execute(self, arguments: str, ctx: CallContext) -> str:
        if self._schema is None:
            await self.discover()
        server = await self.registry.get_or_create(self.config)
        result = await server.call_tool(self.name, _parse_arguments(self.name, arguments))
        if result.is_error:
            raise ToolExecutionError(self.name, result.content or "MCP tool error")
        return result.content


async def collect_mcp_tools(servers: Iterable[MCPServer]) -> list[MCPTool]:
    """List every server's tools; servers that fail to list are logged and skipped."""
    tools: list[MCPTool] = []
    for server in servers:
        try:
            infos = await server.list_tools()
        except Exception as e:
            logger.warning("mcp_list_tools_failed", server=repr(server), error=str(e))
            continue
        tools.extend(MCPTool(server, info) for info in infos)
    return tools
