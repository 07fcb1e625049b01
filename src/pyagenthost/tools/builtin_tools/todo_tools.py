from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from platformdirs import user_data_dir

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.log import get_logger

logger = get_logger(__name__)

APP_NAME = "pyagenthost"

Status = Literal["pending", "in_progress", "completed"]
STATUSES = ("pending", "in_progress", "completed")
Priority = Literal["high", "medium", "low"]


class TodoValidationError(ValueError):
    pass


@dataclass
class TodoItem:
    id: str
    content: str
    status: Status = "pending"
    priority: Priority = "medium"
    updated_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "status": self.status,
            "priority": self.priority,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "TodoItem":
        return TodoItem(
            id=str(d.get("id") or ""),
            content=str(d.get("content") or ""),
            status=d.get("status") or "pending",
            priority=d.get("priority") or "medium",
            updated_at=float(d.get("updated_at") or 0.0),
        )


def validate_todos(raw: Any, now: float | None = None) -> list[TodoItem]:
    """Parse a full todo list. At most one item may be in_progress."""
    if not isinstance(raw, list):
        raise TodoValidationError("todos must be a list")
    now = time.time() if now is None else now
    items: list[TodoItem] = []
    seen: set[str] = set()
    for i, obj in enumerate(raw):
        if not isinstance(obj, dict):
            raise TodoValidationError(f"todos[{i}] must be an object")
        content = str(obj.get("content") or "").strip()
        if not content:
            raise TodoValidationError(f"todos[{i}] requires content")
        status = obj.get("status") or "pending"
        if status not in STATUSES:
            raise TodoValidationError(f"todos[{i}] has invalid status {status!r}")
        priority = obj.get("priority") or "medium"
        if priority not in ("high", "medium", "low"):
            raise TodoValidationError(f"todos[{i}] has invalid priority {priority!r}")
        tid = str(obj.get("id") or uuid.uuid4().hex[:8])
        if tid in seen:
            raise TodoValidationError(f"duplicate todo id {tid!r}")
        seen.add(tid)
        items.append(TodoItem(id=tid, content=content, status=status, priority=priority, updated_at=now))

    active = [it.id for it in items if it.status == "in_progress"]
    if len(active) > 1:
        raise TodoValidationError(f"only one todo may be in_progress at a time, got {len(active)}: {', '.join(active)}")
    return items


def _todo_path(ctx: ToolContext) -> Path:
    root = ctx.state_dir if ctx.state_dir is not None else Path(user_data_dir(APP_NAME))
    root = root / "todos"
    root.mkdir(parents=True, exist_ok=True)
    sid = ctx.session_id or "default"
    return root / f"{sid}.json"


def load_todos(ctx: ToolContext) -> list[TodoItem]:
    p = _todo_path(ctx)
    if not p.exists():
        return []
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("todo_list_unreadable", path=str(p), error=str(e))
        return []
    if not isinstance(data, list):
        return []
    return [TodoItem.from_dict(x) for x in data if isinstance(x, dict)]


def _save(ctx: ToolContext, items: list[TodoItem]) -> None:
    p = _todo_path(ctx)
    p.write_text(json.dumps([i.to_dict() for i in items], ensure_ascii=False, indent=2), encoding="utf-8")


def _format(items: list[TodoItem]) -> str:
    if not items:
        return "(empty todo list)"
    marks = {"pending": " ", "in_progress": ">", "completed": "x"}
    return "\n".join(f"- [{marks[it.status]}] {it.id}: {it.content}" for it in items)


class TodoReadTool:
    spec = ToolSpec(
        name="TodoRead",
        description="Read the current todo list for this session.",
        parameters={"type": "object", "properties": {}},
        kind="readonly",
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        items = load_todos(ctx)
        return ToolResult.ok(_format(items), count=len(items))


class TodoWriteTool:
    spec = ToolSpec(
        name="TodoWrite",
        description=(
            "Replace the todo list for this session. Each item has content, status "
            "(pending|in_progress|completed) and optional id/priority. Keep exactly one "
            "item in_progress while working."
        ),
        parameters={
            "type": "object",
            "properties": {
                "todos": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "content": {"type": "string"},
                            "status": {"type": "string", "enum": list(STATUSES)},
                            "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                        },
                        "required": ["content", "status"],
                    },
                },
            },
            "required": ["todos"],
        },
        kind="write",
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        try:
            items = validate_todos(args.get("todos"))
        except TodoValidationError as e:
            return ToolResult.failure(str(e), type="validation_error")
        _save(ctx, items)
        counts = {s: sum(1 for it in items if it.status == s) for s in STATUSES}
        return ToolResult.ok("Updated todo list.\n" + _format(items), **counts)
