from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import resolve_path, read_text, FsError

@dataclass
class EditFileTool:
    spec: ToolSpec = ToolSpec(
        name="Edit",
        description=(
            "Replace an exact string in a file. old_string must be unique unless "
            "replace_all is true. An empty new_string deletes the match."
        ),
        kind="write",
        signature_key="file_path",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "File path (absolute or relative to cwd)."},
                "old_string": {"type": "string", "description": "Exact text to replace."},
                "new_string": {"type": "string", "description": "Replacement text."},
                "replace_all": {"type": "boolean", "default": False},
            },
            "required": ["file_path", "old_string", "new_string"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd)
        path = args["file_path"]
        old = args["old_string"]
        new = args["new_string"]
        replace_all = bool(args.get("replace_all", False))

        try:
            p = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult.failure(str(e))
        if not p.exists() or not p.is_file():
            return ToolResult.failure(f"File not found: {path}")
        if not old:
            return ToolResult.failure("old_string must not be empty", type="validation_error")
        if old == new:
            return ToolResult.failure("old_string and new_string are identical", type="validation_error")

        text = read_text(p)
        count = text.count(old)
        if count == 0:
            return ToolResult.failure(f"old_string not found in {path}")
        if count > 1 and not replace_all:
            return ToolResult.failure(
                f"old_string occurs {count} times in {path}; add context or set replace_all"
            )

        updated = text.replace(old, new) if replace_all else text.replace(old, new, 1)
        p.write_text(updated, encoding="utf-8")
        n = count if replace_all else 1
        return ToolResult.ok(f"Edited {path}: replaced {n} occurrence(s).", file_path=str(p), replacements=n)
