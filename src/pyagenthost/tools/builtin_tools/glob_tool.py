from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any
import glob as _glob

from ..base import ToolSpec, ToolResult, ToolContext
from ...util.fs import resolve_path, FsError

@dataclass
class GlobTool:
    spec: ToolSpec = ToolSpec(
        name="Glob",
        description="Find files matching a glob pattern, newest first.",
        kind="readonly",
        signature_key="pattern",
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern, e.g. 'src/**/*.py'."},
                "path": {"type": "string", "description": "Directory to search in (relative to cwd). Default '.'"},
                "max_results": {"type": "integer", "default": 200},
            },
            "required": ["pattern"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        cwd = Path(ctx.cwd).resolve()
        pattern = args["pattern"]
        max_results = int(args.get("max_results", 200))
        try:
            base = resolve_path(cwd, args.get("path") or ".")
        except FsError as e:
            return ToolResult.failure(str(e))

        found: list[Path] = []
        for m in _glob.glob(str(base / pattern), recursive=True):
            p = Path(m).resolve()
            try:
                p.relative_to(cwd)
            except ValueError:
                continue
            if p.is_file():
                found.append(p)
        found.sort(key=lambda p: p.stat().st_mtime, reverse=True)

        rel = [str(p.relative_to(cwd)) for p in found[:max_results]]
        return ToolResult.ok(
            "\n".join(rel) if rel else "(no matches)",
            f"{len(found)} file(s) match {pattern}",
            count=len(found),
            truncated=len(found) > max_results,
        )
