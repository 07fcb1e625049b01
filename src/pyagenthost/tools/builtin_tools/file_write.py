from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import resolve_path, FsError

@dataclass
class WriteFileTool:
    spec: ToolSpec = ToolSpec(
        name="Write",
        description="Create or overwrite a file with the given content.",
        kind="write",
        signature_key="file_path",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File path (absolute or relative to cwd)."},
                "content": {"type": "string", "description": "Full file content."},
                "mkdirs": {"type": "boolean", "default": True, "description": "Create parent directories if needed."},
            },
            "required": ["file_path", "content"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd)
        path = args["file_path"]
        content = args["content"]
        try:
            p = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult.failure(str(e))
        if not p.parent.exists():
            if not args.get("mkdirs", True):
                return ToolResult.failure(f"Directory does not exist: {p.parent}")
            p.parent.mkdir(parents=True, exist_ok=True)
        existed = p.exists()
        p.write_text(content, encoding="utf-8")
        verb = "Overwrote" if existed else "Created"
        return ToolResult.ok(
            f"{verb} {path} ({len(content)} chars).",
            file_path=str(p),
            created=not existed,
        )
