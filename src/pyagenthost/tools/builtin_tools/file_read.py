from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import resolve_path, read_text, FsError

@dataclass
class ReadFileTool:
    spec: ToolSpec = ToolSpec(
        name="Read",
        description="Read a text file. Optionally start at a line offset and limit the number of lines.",
        kind="readonly",
        signature_key="file_path",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File path (absolute or relative to cwd)."},
                "offset": {"type": "integer", "description": "1-based line to start reading from."},
                "limit": {"type": "integer", "description": "Maximum number of lines to return."},
                "max_chars": {"type": "integer", "default": 40000},
            },
            "required": ["file_path"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd)
        path = args["file_path"]
        try:
            p = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult.failure(str(e))
        if not p.exists() or not p.is_file():
            return ToolResult.failure(f"File not found: {path}")

        lines = read_text(p).splitlines()
        start = max(1, int(args.get("offset") or 1))
        limit = args.get("limit")
        end = len(lines) if limit is None else min(len(lines), start - 1 + max(0, int(limit)))
        excerpt = lines[start - 1 : end]

        numbered = "\n".join(f"{i:>6}\t{line}" for i, line in enumerate(excerpt, start=start))
        max_chars = int(args.get("max_chars", 40000))
        truncated = len(numbered) > max_chars
        if truncated:
            numbered = numbered[:max_chars] + "\n... (truncated)"
        return ToolResult.ok(
            numbered,
            f"Read {len(excerpt)} lines from {path}",
            file_path=str(p),
            total_lines=len(lines),
            truncated=truncated,
        )
