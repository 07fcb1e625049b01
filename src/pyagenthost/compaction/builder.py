from __future__ import annotations

from typing import Any

from ..context.assembler import effective_messages
from ..context.models import AssembledSession
from .policy import CompactionPolicy


SUMMARY_NAME = "agenthost_summary"


def truncate_text(text: str, max_chars: int, *, marker: str = "... (truncated) ...") -> str:
    """Truncate long text by keeping head + tail.

    This keeps salient context (often errors are at the end) while preventing
    prompt blowups from huge pastes.
    """
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    half = max(1, max_chars // 2)
    head = text[:half]
    tail = text[-half:]
    return head + "\n\n" + marker + "\n\n" + tail


def build_prompt_messages(
    assembled: AssembledSession,
    *,
    policy: CompactionPolicy,
    system: str | None = None,
) -> list[dict[str, Any]]:
    """Build the message list sent to the model.

    - The system prompt comes first, then the latest summary (if any).
    - The latest summary is a logical cutoff: only messages after it are sent.
    - Tool results are replayed as ``tool`` messages next to their call.
    - Over-long contents are truncated head + tail.
    """
    out: list[dict[str, Any]] = []
    if system and system.strip():
        out.append({"role": "system", "content": system.strip()})

    conv = assembled.conversation
    if conv.summary:
        out.append({"role": "system", "name": SUMMARY_NAME, "content": f"Summary of earlier conversation:\n\n{conv.summary}"})

    live = effective_messages(conv)
    live_ids = {m.id for m in live}
    calls_by_message: dict[str, list] = {}
    for c in assembled.tool_calls:
        if c.message_id in live_ids:
            calls_by_message.setdefault(c.message_id, []).append(c)

    for m in live:
        calls = calls_by_message.get(m.id, [])
        if not m.content and not calls:
            continue
        if m.content:
            out.append({"role": m.role, "content": truncate_text(m.content, policy.max_message_chars)})
        for c in calls:
            out.append({"role": "assistant", "tool_call": {"id": c.id, "name": c.name, "input": c.input}})
            if c.status != "pending":
                content = c.output or ((c.error or {}).get("message") or "")
                out.append(
                    {
                        "role": "tool",
                        "tool_call_id": c.id,
                        "content": truncate_text(content, policy.max_tool_result_chars),
                    }
                )
    return out
