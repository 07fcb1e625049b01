from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from ..context.models import ConversationMessage, ToolCallRecord
from ..util.log import get_logger

logger = get_logger(__name__)


class ChatProvider(Protocol):
    async def chat(self, messages: list[dict[str, Any]]) -> str: ...


@dataclass
class SummaryResult:
    text: str
    is_error: bool = False


SUMMARY_PROMPT = (
    "You are summarizing a coding agent conversation for future continuation.\n"
    "Write a concise but information-dense summary with these sections:\n"
    "- Goal\n- Key decisions\n- Current state (files touched, commands run, errors)\n- TODO next\n"
    "Keep it under 2500 characters."
)

_SNIPPET_CHARS = 300


def _snippet(text: str) -> str:
    text = " ".join(text.split())
    return text if len(text) <= _SNIPPET_CHARS else text[: _SNIPPET_CHARS - 3] + "..."


def extractive_summary(
    messages: Sequence[ConversationMessage],
    tool_calls: Sequence[ToolCallRecord] = (),
    previous: str | None = None,
) -> SummaryResult:
    """Summary built without a model: goal, touched files, commands and the last exchanges."""
    lines: list[str] = []
    if previous:
        lines += ["Earlier summary:", previous.strip(), ""]
    first_user = next((m for m in messages if m.role == "user" and m.content.strip()), None)
    if first_user is not None:
        lines += ["Goal:", _snippet(first_user.content), ""]

    files = sorted({str(c.input[k]) for c in tool_calls for k in ("file_path", "path") if isinstance(c.input.get(k), str)})
    if files:
        lines += ["Files touched:", *(f"- {f}" for f in files), ""]
    commands = [str(c.input["command"]) for c in tool_calls if isinstance(c.input.get("command"), str)]
    if commands:
        lines += ["Commands run:", *(f"- {_snippet(c)}" for c in commands[-10:]), ""]
    errors = [c for c in tool_calls if c.status == "error"]
    if errors:
        lines += ["Errors:", *(f"- {c.name}: {_snippet((c.error or {}).get('message') or c.output or '')}" for c in errors[-5:]), ""]

    recent = [m for m in messages if m.content.strip()][-6:]
    if recent:
        lines += ["Recent exchanges:", *(f"- {m.role}: {_snippet(m.content)}" for m in recent)]

    text = "\n".join(lines).strip()
    if not text:
        return SummaryResult(text="(nothing to summarize)", is_error=True)
    return SummaryResult(text=text)


async def summarize(
    provider: ChatProvider | None,
    messages: Sequence[ConversationMessage],
    tool_calls: Sequence[ToolCallRecord] = (),
    previous: str | None = None,
) -> SummaryResult:
    """Ask the provider to summarize previous messages; falls back to an extractive summary."""
    if provider is None:
        return extractive_summary(messages, tool_calls, previous)
    chat: list[dict[str, Any]] = [{"role": "system", "content": SUMMARY_PROMPT}]
    if previous:
        chat.append({"role": "system", "content": f"Earlier summary:\n{previous}"})
    chat.extend({"role": m.role, "content": m.content} for m in messages if m.content)
    try:
        text = (await provider.chat(chat) or "").strip()
    except Exception as e:
        logger.warning("summary_failed", error=str(e))
        fallback = extractive_summary(messages, tool_calls, previous)
        return SummaryResult(text=fallback.text, is_error=True)
    if not text:
        return SummaryResult(text="(summary empty)", is_error=True)
    return SummaryResult(text=text)
