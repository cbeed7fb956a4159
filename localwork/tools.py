"""Tool execution facade: permission-scoped file operations for the tool loop.

Every operation checks its path arguments against the current folder grants
before touching the filesystem. The module also carries the tool-call protocol
spoken with the model: tool definitions, the prompt describing them, and the
parsing of ``<tool_call>`` blocks out of generated text.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol

from localwork.errors import PermissionDeniedError, ToolExecutionError
from localwork.schemas import TOOL_ERROR_PREFIX, FileEntry, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)

TOOL_CALL_PATTERN = re.compile(r"<tool_call>(.*?)</tool_call>", re.DOTALL)


class PathGuard(Protocol):
    """Anything that can vouch for a path, e.g. a PermissionStore."""

    def check(self, path: str | Path) -> Path: ...


def _string_param(description: str) -> dict[str, str]:
    return {"type": "string", "description": description}


TOOL_DEFINITIONS: list[ToolDefinition] = [
    ToolDefinition(
        name="list_files",
        description="List files and directories in a given path",
        parameters={
            "type": "object",
            "properties": {"path": _string_param("Absolute path to the directory to list")},
            "required": ["path"],
        },
    ),
    ToolDefinition(
        name="read_file",
        description="Read the contents of a text file",
        parameters={
            "type": "object",
            "properties": {"path": _string_param("Absolute path to the file to read")},
            "required": ["path"],
        },
    ),
    ToolDefinition(
        name="write_file",
        description="Write content to an existing file (overwrites)",
        parameters={
            "type": "object",
            "properties": {
                "path": _string_param("Absolute path to the file to write"),
                "content": _string_param("Content to write to the file"),
            },
            "required": ["path", "content"],
        },
    ),
    ToolDefinition(
        name="create_file",
        description="Create a new file with content (fails if file already exists)",
        parameters={
            "type": "object",
            "properties": {
                "path": _string_param("Absolute path for the new file"),
                "content": _string_param("Content for the new file"),
            },
            "required": ["path", "content"],
        },
    ),
    ToolDefinition(
        name="delete_file",
        description="Delete a file",
        parameters={
            "type": "object",
            "properties": {"path": _string_param("Absolute path to the file to delete")},
            "required": ["path"],
        },
    ),
    ToolDefinition(
        name="move_file",
        description="Move or rename a file",
        parameters={
            "type": "object",
            "properties": {
                "src": _string_param("Absolute path to the source file"),
                "dest": _string_param("Absolute path for the destination"),
            },
            "required": ["src", "dest"],
        },
    ),
]


def format_tools_for_prompt() -> str:
    """System prompt section describing the file tools and the call format."""
    tools_json = json.dumps([tool.model_dump() for tool in TOOL_DEFINITIONS], indent=2)
    return (
        "You have access to the following tools to help users with file operations:\n\n"
        f"{tools_json}\n\n"
        "To use a tool, respond with a tool call in this exact format:\n"
        '<tool_call>{"name": "tool_name", "arguments": {"arg1": "value1"}}</tool_call>\n\n'
        "You can use multiple tool calls in a single response. "
        "After each tool call, you will receive the result.\n"
        "Only use tools when the user asks for file operations. "
        "Always provide a natural language response along with your tool calls."
    )


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Extract tool calls from model output, in order.

    Blocks that are not valid JSON objects with a ``name`` and an
    ``arguments`` object are skipped. Ids are ``call_0``, ``call_1``, ...
    """
    tool_calls: list[ToolCall] = []
    for match in TOOL_CALL_PATTERN.finditer(text):
        try:
            parsed = json.loads(match.group(1).strip())
        except ValueError:
            logger.debug(f"Skipping malformed tool call: {match.group(1)[:80]}")
            continue

        if not isinstance(parsed, dict):
            continue
        name = parsed.get("name")
        arguments = parsed.get("arguments")
        if not isinstance(name, str) or not isinstance(arguments, dict):
            continue

        tool_calls.append(
            ToolCall(id=f"call_{len(tool_calls)}", name=name, arguments=arguments)
        )

    return tool_calls


def extract_text_content(text: str) -> str:
    """Model output with all tool-call blocks removed."""
    return TOOL_CALL_PATTERN.sub("", text).strip()


def _error(message: str) -> str:
    return f"{TOOL_ERROR_PREFIX} {message}"


class ToolExecutionFacade:
    """Permission-scoped file operations."""

    def __init__(self, guard: PathGuard):
        self._guard = guard

    def list_files(self, path: str) -> list[FileEntry]:
        directory = self._guard.check(path)
        try:
            entries = []
            for child in sorted(directory.iterdir(), key=lambda p: p.name):
                stat = child.stat()
                entries.append(
                    FileEntry(
                        name=child.name,
                        path=str(child),
                        is_directory=child.is_dir(),
                        size_bytes=stat.st_size,
                        modified_at=int(stat.st_mtime),
                    )
                )
            return entries
        except OSError as e:
            raise ToolExecutionError(f"Failed to read directory: {e}") from e

    def read_text_file(self, path: str) -> str:
        target = self._guard.check(path)
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ToolExecutionError(f"Failed to read file: {e}") from e

    def write_text_file(self, path: str, content: str) -> None:
        target = self._guard.check(path)
        try:
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ToolExecutionError(f"Failed to write file: {e}") from e
        logger.info(f"Wrote {len(content)} chars to {target}")

    def create_text_file(self, path: str, content: str) -> None:
        target = self._guard.check(path)
        try:
            with open(target, "x", encoding="utf-8") as f:
                f.write(content)
        except FileExistsError as e:
            raise ToolExecutionError("File already exists") from e
        except OSError as e:
            raise ToolExecutionError(f"Failed to create file: {e}") from e
        logger.info(f"Created {target}")

    def delete_file(self, path: str) -> None:
        target = self._guard.check(path)
        try:
            target.unlink()
        except OSError as e:
            raise ToolExecutionError(f"Failed to delete file: {e}") from e
        logger.info(f"Deleted {target}")

    def move_file(self, src: str, dest: str) -> None:
        source = self._guard.check(src)
        destination = self._guard.check(dest)
        try:
            source.rename(destination)
        except OSError as e:
            raise ToolExecutionError(f"Failed to move file: {e}") from e
        logger.info(f"Moved {source} to {destination}")

    def execute(self, call: ToolCall) -> ToolCall:
        """Run a tool call and return a copy carrying its result.

        Failures never raise; they are reported as ``"Error: ..."`` results.
        """
        try:
            result = self._dispatch(call.name, call.arguments)
        except (PermissionDeniedError, ToolExecutionError) as e:
            result = _error(str(e))
        logger.debug(f"Tool {call.name} ({call.id}) -> {result[:80]!r}")
        return call.model_copy(update={"result": result})

    def _dispatch(self, name: str, arguments: dict[str, Any]) -> str:
        def arg(key: str) -> str | None:
            value = arguments.get(key)
            return value if isinstance(value, str) else None

        if name == "list_files":
            path = arg("path")
            if path is None:
                return _error("Missing 'path' argument")
            entries = self.list_files(path)
            if not entries:
                return "Directory is empty"
            return "\n".join(
                f"{'[DIR]' if e.is_directory else '[FILE]'} {e.name} ({e.path})" for e in entries
            )

        if name == "read_file":
            path = arg("path")
            if path is None:
                return _error("Missing 'path' argument")
            return self.read_text_file(path)

        if name in ("write_file", "create_file"):
            path, content = arg("path"), arg("content")
            if path is None or content is None:
                return _error("Missing 'path' or 'content' argument")
            if name == "write_file":
                self.write_text_file(path, content)
                return f"Successfully wrote to {path}"
            self.create_text_file(path, content)
            return f"Successfully created {path}"

        if name == "delete_file":
            path = arg("path")
            if path is None:
                return _error("Missing 'path' argument")
            self.delete_file(path)
            return f"Successfully deleted {path}"

        if name == "move_file":
            src, dest = arg("src"), arg("dest")
            if src is None or dest is None:
                return _error("Missing 'src' or 'dest' argument")
            self.move_file(src, dest)
            return f"Successfully moved {src} to {dest}"

        return _error(f"Unknown tool '{name}'")
