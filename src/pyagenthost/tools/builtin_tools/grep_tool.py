from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import re

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import resolve_path, read_text, FsError

@dataclass
class GrepTool:
    spec: ToolSpec = ToolSpec(
        name="Grep",
        description="Search for a pattern in files. Returns matching lines with line numbers.",
        kind="readonly",
        signature_key="pattern",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Regex (default) or literal string if regex=false."},
                "path": {"type": "string", "description": "File or directory to search (relative to cwd). Default '.'"},
                "regex": {"type": "boolean", "default": True},
                "include": {"type": "string", "description": "Optional glob filter like '*.py'."},
                "max_matches": {"type": "integer", "default": 200},
            },
            "required": ["pattern"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).expanduser().resolve()
        pattern = args["pattern"]
        path = args.get("path") or "."
        include = args.get("include")
        max_matches = int(args.get("max_matches", 200))

        try:
            target = resolve_path(cwd, path)
        except FsError as e:
            return ToolResult.failure(str(e))
        if not target.exists():
            return ToolResult.failure(f"Path not found: {path}")

        rx = None
        if args.get("regex", True):
            try:
                rx = re.compile(pattern)
            except re.error as e:
                return ToolResult.failure(f"Invalid regex: {e}", type="validation_error")

        if target.is_file():
            files = [target]
        else:
            files = [p for p in sorted(target.rglob("*")) if p.is_file() and (not include or p.match(include))]

        out_lines: list[str] = []
        for f in files:
            ctx.cancel.raise_if_cancelled()
            try:
                text = read_text(f)
            except OSError:
                continue
            rel = str(f.resolve().relative_to(cwd))
            for i, line in enumerate(text.splitlines(), start=1):
                hit = (rx.search(line) is not None) if rx else (pattern in line)
                if hit:
                    out_lines.append(f"{rel}:{i}: {line}")
                    if len(out_lines) >= max_matches:
                        return ToolResult.ok("\n".join(out_lines), count=len(out_lines), truncated=True)
        return ToolResult.ok(
            "\n".join(out_lines) if out_lines else "(no matches)",
            count=len(out_lines),
            truncated=False,
        )
