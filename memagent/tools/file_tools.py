"""
File Tools
==========

Read-only filesystem access for the agent:

- file_reader: read a file, list a directory, or stat a path
- json_reader: parse JSON (inline or from a file) and follow a key path
               such as "user.name" or "items[0].title"

Every path is resolved against a base directory and rejected if it
escapes it, so the model can only read what the deployment exposes.
File I/O runs in a worker thread.
"""

import asyncio
import base64
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from memagent.tools import MCPTool, ToolRegistry, ToolResult
from memagent.utils.logger import Logger

logger = Logger("FileTools")

MAX_READ_BYTES = 1_000_000


class PathOutsideBaseError(PermissionError):
    """The requested path resolves outside the readable base directory."""


def _resolve(base_dir: Path, raw_path: str) -> Path:
    base = base_dir.resolve()
    path = (base / raw_path).resolve()
    if path != base and base not in path.parents:
        raise PathOutsideBaseError(f"Permission denied: {raw_path}")
    return path


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _read_sync(path: Path, encoding: str, max_bytes: int) -> dict:
    raw = path.read_bytes()[:max_bytes]
    if encoding == "base64":
        content = base64.b64encode(raw).decode("ascii")
    else:
        content = raw.decode(encoding, errors="replace")
    return {
        "path": str(path),
        "content": content,
        "encoding": encoding,
        "size": path.stat().st_size,
        "truncated": path.stat().st_size > max_bytes,
    }


def _list_sync(path: Path) -> dict:
    items = []
    for child in sorted(path.iterdir(), key=lambda p: p.name):
        stats = child.stat()
        items.append({
            "name": child.name,
            "path": str(child),
            "isDirectory": child.is_dir(),
            "isFile": child.is_file(),
            "size": stats.st_size,
            "modified": _iso(stats.st_mtime),
        })
    return {"path": str(path), "items": items}


def _info_sync(path: Path) -> dict:
    stats = path.stat()
    return {
        "path": str(path),
        "isDirectory": path.is_dir(),
        "isFile": path.is_file(),
        "size": stats.st_size,
        "modified": _iso(stats.st_mtime),
        "accessed": _iso(stats.st_atime),
    }


def follow_key_path(data: Any, key_path: str) -> Any:
    """
    Walk a dotted/indexed path through parsed JSON.

    Raises:
        KeyError: A step of the path does not exist
    """
    for part in [p for p in re.split(r"[.\[\]]+", key_path) if p]:
        if isinstance(data, list):
            if not part.lstrip("-").isdigit():
                raise KeyError(f"Invalid array index: {part}")
            index = int(part)
            if not -len(data) <= index < len(data):
                raise KeyError(f"Path '{key_path}' not found in JSON")
            data = data[index]
        elif isinstance(data, dict):
            if part not in data:
                raise KeyError(f"Path '{key_path}' not found in JSON")
            data = data[part]
        else:
            raise KeyError(f"Cannot access property '{part}' on non-object")
    return data


def make_file_tools(base_dir: Path) -> list[MCPTool]:
    """Build file_reader and json_reader confined to `base_dir`."""

    # ==========================================================================
    # Tool: File Reader
    # ==========================================================================

    async def _file_reader(params: dict) -> ToolResult:
        operation = params.get("operation", "read")
        encoding = params.get("encoding", "utf-8")
        try:
            path = _resolve(base_dir, params["path"])
            if not path.exists():
                return ToolResult(success=False, error=f"File or directory not found: {params['path']}")

            if operation == "list":
                if not path.is_dir():
                    return ToolResult(success=False, error=f"Not a directory: {params['path']}")
                data = await asyncio.to_thread(_list_sync, path)
            elif operation == "info":
                data = await asyncio.to_thread(_info_sync, path)
            else:
                if path.is_dir():
                    return ToolResult(success=False, error=f"Is a directory: {params['path']}")
                max_bytes = params.get("max_bytes", MAX_READ_BYTES)
                data = await asyncio.to_thread(_read_sync, path, encoding, max_bytes)
        except PermissionError as e:
            return ToolResult(success=False, error=str(e) or f"Permission denied: {params['path']}")

        return ToolResult(success=True, data=data)

    # ==========================================================================
    # Tool: JSON Reader
    # ==========================================================================

    async def _json_reader(params: dict) -> ToolResult:
        try:
            if "json_string" in params:
                source = params["json_string"]
            elif "file" in params:
                path = _resolve(base_dir, params["file"])
                if not path.is_file():
                    return ToolResult(success=False, error=f"File not found: {params['file']}")
                source = await asyncio.to_thread(path.read_text)
            else:
                return ToolResult(success=False, error="Either json_string or file is required")

            parsed = json.loads(source)
            key_path = params.get("path")
            value = follow_key_path(parsed, key_path) if key_path else parsed
        except json.JSONDecodeError as e:
            return ToolResult(success=False, error=f"Invalid JSON: {e.msg}")
        except KeyError as e:
            return ToolResult(success=False, error=str(e.args[0]))
        except PermissionError as e:
            return ToolResult(success=False, error=str(e))

        return ToolResult(success=True, data={"path": key_path, "value": value})

    file_reader = MCPTool(
        name="file_reader",
        description="Read files, list directories, or get file information",
        parameters={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "minLength": 1,
                    "description": "File or directory path, relative to the readable root"
                },
                "operation": {
                    "type": "string",
                    "enum": ["read", "list", "info"],
                    "description": "What to do with the path (default read)"
                },
                "encoding": {
                    "type": "string",
                    "enum": ["utf-8", "ascii", "base64"],
                    "description": "Content encoding for read (default utf-8)"
                },
                "max_bytes": {
                    "type": "integer",
                    "minimum": 1,
                    "description": "Read at most this many bytes"
                }
            },
            "required": ["path"]
        },
        execute=_file_reader
    )

    json_reader = MCPTool(
        name="json_reader",
        description="Parse JSON data (inline or from a file) with optional path extraction",
        parameters={
            "type": "object",
            "properties": {
                "json_string": {
                    "type": "string",
                    "description": "Raw JSON text"
                },
                "file": {
                    "type": "string",
                    "description": "JSON file path, relative to the readable root"
                },
                "path": {
                    "type": "string",
                    "description": 'Key path to extract, e.g. "user.name" or "items[0].title"'
                }
            },
            "anyOf": [
                {"required": ["json_string"]},
                {"required": ["file"]}
            ]
        },
        execute=_json_reader
    )

    return [file_reader, json_reader]


def register_file_tools(registry: ToolRegistry, base_dir: Path) -> None:
    for tool in make_file_tools(base_dir):
        registry.register(tool)
    logger.debug(f"File tools confined to {base_dir}")
