"""Read-only file tools."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from yggchat.tools.base import Tool, ToolResult
from yggchat.tools.schema import array, integer, object_of, string

DEFAULT_MAX_BYTES = 200 * 1024
_MAX_BYTES_LIMIT = 5 * 1024 * 1024
_BINARY_SNIFF = 8192

_SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}


def _read_text(path: str, max_bytes: int) -> tuple[Path, int, bool, str]:
    """Read a text file up to *max_bytes*.  Raises ``ValueError`` for binaries."""
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"File not found: {p}")
    if not p.is_file():
        raise ValueError(f"Not a file: {p}")
    size = p.stat().st_size
    with open(p, "rb") as f:
        data = f.read(max_bytes + 1)
    if b"\x00" in data[:_BINARY_SNIFF]:
        raise ValueError(f"Refusing to read likely-binary file: {p}")
    truncated = len(data) > max_bytes
    return p, size, truncated, data[:max_bytes].decode("utf-8", errors="replace")


def _clamp_max_bytes(value: Any) -> int:
    if not value:
        return DEFAULT_MAX_BYTES
    return max(1, min(int(value), _MAX_BYTES_LIMIT))


class ReadFileTool(Tool):
    """Read one text file."""

    name = "read_file"
    description = (
        "Read the contents of a text file (code, config, docs). Rejects likely-binary "
        "files and truncates large files for safety."
    )
    parameters = object_of(
        path=string("The file path to read (absolute or relative)"),
        maxBytes=integer(
            "Optional safety limit on bytes to read; defaults to 204800 (200KB).",
            required=False, minimum=1, maximum=_MAX_BYTES_LIMIT,
        ),
    )

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = kwargs.get("path", "")
        if not path:
            return ToolResult(success=False, error="No path provided")
        max_bytes = _clamp_max_bytes(kwargs.get("maxBytes"))

        def _read() -> ToolResult:
            try:
                p, size, truncated, content = _read_text(path, max_bytes)
            except (OSError, ValueError) as e:
                return ToolResult(success=False, error=str(e), metadata={"path": path})
            return ToolResult(
                success=True,
                output=content,
                metadata={
                    "path": path,
                    "absolutePath": str(p),
                    "sizeBytes": size,
                    "truncated": truncated,
                },
            )

        return await asyncio.to_thread(_read)


class ReadFilesTool(Tool):
    """Read several text files into one string with path headers."""

    name = "read_files"
    description = (
        "Read multiple text/code/config files and return a single concatenated string, "
        "separated by each file's relative path header."
    )
    parameters = object_of(
        paths=array(
            string(), "Array of file paths to read (absolute or relative).", min_items=1,
        ),
        baseDir=string(
            "Optional base directory used to compute the relative path header.",
            required=False,
        ),
        maxBytes=integer(
            "Optional per-file safety limit on bytes to read; defaults to 204800 (200KB).",
            required=False, minimum=1, maximum=_MAX_BYTES_LIMIT,
        ),
    )

    async def execute(self, **kwargs: Any) -> ToolResult:
        paths = kwargs.get("paths") or []
        if not paths:
            return ToolResult(success=False, error="No paths provided")
        base = Path(kwargs.get("baseDir") or Path.cwd()).expanduser().resolve()
        max_bytes = _clamp_max_bytes(kwargs.get("maxBytes"))

        def _read_all() -> ToolResult:
            sections: list[str] = []
            files: list[dict[str, Any]] = []
            for path in paths:
                try:
                    p, size, truncated, content = _read_text(path, max_bytes)
                except (OSError, ValueError) as e:
                    files.append({"path": path, "error": str(e)})
                    continue
                try:
                    header = str(p.relative_to(base))
                except ValueError:
                    header = str(p)
                sections.append(f"=== {header} ===\n{content}")
                files.append({"path": header, "sizeBytes": size, "truncated": truncated})
            if not sections:
                return ToolResult(
                    success=False, error="None of the files could be read",
                    metadata={"files": files},
                )
            return ToolResult(
                success=True, output="\n\n".join(sections), metadata={"files": files},
            )

        return await asyncio.to_thread(_read_all)


class DirectoryTool(Tool):
    """Render a directory tree."""

    name = "directory"
    description = (
        "Get the directory structure of a specified path. Useful for understanding "
        "project organization, finding files, or exploring codebases."
    )
    max_output = 20000
    parameters = object_of(
        path=string("The directory path to analyze (absolute or relative)"),
        maxDepth=integer("How deep to descend; defaults to 4.", required=False, minimum=1),
    )

    async def execute(self, **kwargs: Any) -> ToolResult:
        path = kwargs.get("path", "")
        if not path:
            return ToolResult(success=False, error="No path provided")
        max_depth = int(kwargs.get("maxDepth") or 4)

        def _walk() -> ToolResult:
            root = Path(path).expanduser().resolve()
            if not root.is_dir():
                return ToolResult(
                    success=False, error=f"Not a directory: {root}", metadata={"path": path},
                )
            lines = [f"{root.name}/"]
            _render_tree(root, "", max_depth, lines)
            return ToolResult(success=True, output="\n".join(lines), metadata={"path": path})

        return await asyncio.to_thread(_walk)


def _render_tree(directory: Path, prefix: str, depth: int, lines: list[str]) -> None:
    if depth <= 0:
        return
    try:
        entries = sorted(
            (e for e in directory.iterdir() if e.name not in _SKIP_DIRS),
            key=lambda e: (not e.is_dir(), e.name.lower()),
        )
    except PermissionError:
        lines.append(f"{prefix}└── [permission denied]")
        return
    for i, entry in enumerate(entries):
        last = i == len(entries) - 1
        connector = "└── " if last else "├── "
        if entry.is_dir():
            lines.append(f"{prefix}{connector}{entry.name}/")
            _render_tree(entry, prefix + ("    " if last else "│   "), depth - 1, lines)
        else:
            lines.append(f"{prefix}{connector}{entry.name}")
