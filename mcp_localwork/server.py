"""MCP server exposing LocalWork's folder-scoped file tools."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from mcp.server.fastmcp import FastMCP

from localwork.permissions import PermissionStore
from localwork.schemas import ToolCall
from localwork.tools import ToolExecutionFacade

logger = logging.getLogger(__name__)

mcp = FastMCP("localwork")
store = PermissionStore()
facade = ToolExecutionFacade(store)


def _run_tool(name: str, **arguments: Any) -> str:
    call = facade.execute(ToolCall(id=f"mcp-{name}", name=name, arguments=arguments))
    return call.result or ""


@mcp.tool()
def list_files(path: str) -> str:
    """List files and directories in a granted folder."""
    return _run_tool("list_files", path=path)


@mcp.tool()
def read_file(path: str) -> str:
    """Read a text file inside a granted folder."""
    return _run_tool("read_file", path=path)


@mcp.tool()
def write_file(path: str, content: str) -> str:
    """Overwrite a text file inside a granted folder."""
    return _run_tool("write_file", path=path, content=content)


@mcp.tool()
def create_file(path: str, content: str) -> str:
    """Create a new text file; fails if it already exists."""
    return _run_tool("create_file", path=path, content=content)


@mcp.tool()
def delete_file(path: str) -> str:
    """Delete a file inside a granted folder."""
    return _run_tool("delete_file", path=path)


@mcp.tool()
def move_file(src: str, dest: str) -> str:
    """Move or rename a file; both paths must be in granted folders."""
    return _run_tool("move_file", src=src, dest=dest)


def serve(folders: Iterable[str]) -> None:
    """Grant the given folders and run the server over stdio."""
    for folder in folders:
        store.grant(folder)
    logger.info(f"Serving file tools for {len(store.list())} granted folders")
    mcp.run()


if __name__ == "__main__":
    mcp.run()
