"""File tools confined to the configured base directory."""
from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any

from hostbridge_mcp.context import ToolContext
from hostbridge_mcp.errors import PathAccessError, ToolInputError
from hostbridge_mcp.mcp.registry import tool

logger = logging.getLogger(__name__)

DEFAULT_MAX_READ = 10_000


def resolve_path(base_dir: Path, requested: str) -> Path:
    """Resolve ``requested`` relative to ``base_dir``.

    Symlinks and ``..`` segments are resolved before the containment check, so
    nothing outside the base directory can be reached.

    Raises:
        PathAccessError: The resolved path escapes the base directory
    """
    base = Path(base_dir).expanduser().resolve()
    target = (base / (requested or ".")).resolve()
    if target != base and base not in target.parents:
        raise PathAccessError(f"Access denied: path outside allowed directory: {requested}")
    return target


def _require(path: str) -> str:
    if not path or not path.strip():
        raise ToolInputError("path is required")
    return path


@tool("list_directory")
async def list_directory(ctx: ToolContext, path: str = ".") -> dict[str, Any]:
    target = resolve_path(ctx.file_base_dir, path)
    if not target.is_dir():
        return {"success": False, "error": f"Directory does not exist: {path}"}

    entries = []
    for item in sorted(target.iterdir(), key=lambda p: p.name):
        try:
            stat = item.stat()
            kind = "directory" if item.is_dir() else "file"
        except OSError:
            # Dangling symlink
            stat = item.lstat()
            kind = "symlink"
        entries.append({
            "name": item.name,
            "type": kind,
            "size": 0 if kind == "directory" else stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
        })

    return {"success": True, "path": path, "entries": entries, "total": len(entries)}


@tool("read_file")
async def read_file(ctx: ToolContext, path: str, max_size: int = DEFAULT_MAX_READ) -> dict[str, Any]:
    """Read a text file, refusing anything larger than ``max_size`` bytes."""
    target = resolve_path(ctx.file_base_dir, _require(path))
    if not target.is_file():
        return {"success": False, "error": f"File does not exist: {path}"}

    size = target.stat().st_size
    if size > max_size:
        return {
            "success": False,
            "error": f"File too large ({size} bytes). Max size: {max_size} bytes",
        }

    return {
        "success": True,
        "path": path,
        "size": size,
        "content": target.read_text(errors="replace"),
    }


@tool("write_file")
async def write_file(
    ctx: ToolContext,
    path: str,
    content: str,
    overwrite: bool = False
) -> dict[str, Any]:
    """Write a text file, creating parent directories as needed."""
    target = resolve_path(ctx.file_base_dir, _require(path))
    if target.is_dir():
        return {"success": False, "error": f"Path is a directory: {path}"}
    if target.exists() and not overwrite:
        return {"success": False, "error": "File exists. Set overwrite=true to replace it"}

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    size = target.stat().st_size
    logger.info(f"Wrote {size} bytes to {target}")

    return {"success": True, "path": path, "size": size}


@tool("create_directory")
async def create_directory(ctx: ToolContext, path: str) -> dict[str, Any]:
    target = resolve_path(ctx.file_base_dir, _require(path))
    if target.exists():
        return {"success": False, "error": f"Path already exists: {path}"}

    target.mkdir(parents=True)
    return {"success": True, "path": path}


@tool("delete_file")
async def delete_file(ctx: ToolContext, path: str) -> dict[str, Any]:
    """Delete a file, or a directory with everything below it."""
    target = resolve_path(ctx.file_base_dir, _require(path))
    if target == Path(ctx.file_base_dir).expanduser().resolve():
        raise PathAccessError("Refusing to delete the base directory")
    if not target.exists():
        return {"success": False, "error": f"File or directory does not exist: {path}"}

    if target.is_dir():
        shutil.rmtree(target)
        kind = "directory"
    else:
        target.unlink()
        kind = "file"

    logger.info(f"Deleted {kind} {target}")
    return {"success": True, "path": path, "deleted": kind}
