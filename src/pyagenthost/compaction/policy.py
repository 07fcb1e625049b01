from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..errors import ConfigParseError


@dataclass(frozen=True)
class CompactionPolicy:
    """Policy knobs for keeping the prompt within the model's token budget."""

    # Token budget of the target model.
    max_tokens: int = 100_000

    # Compaction becomes eligible above max_tokens * threshold_ratio.
    threshold_ratio: float = 0.8

    # Most recent messages left out of the summary and kept verbatim.
    keep_recent_messages: int = 6

    # Max characters for a single tool result kept in the prompt.
    max_tool_result_chars: int = 12000

    # Max characters for assistant/user messages (safety against huge pastes).
    max_message_chars: int = 20000

    @property
    def threshold(self) -> int:
        return int(self.max_tokens * self.threshold_ratio)

    def should_compact(self, estimated_tokens: int) -> bool:
        return estimated_tokens > self.threshold

    @staticmethod
    def from_obj(obj: Any, source: str | None = None, base: "CompactionPolicy | None" = None) -> "CompactionPolicy":
        if not isinstance(obj, dict):
            raise ConfigParseError(source, "compaction must be an object")
        cur = base or CompactionPolicy()
        values: dict[str, Any] = {}
        for key in ("max_tokens", "keep_recent_messages", "max_tool_result_chars", "max_message_chars"):
            if key in obj:
                v = obj[key]
                if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
                    raise ConfigParseError(source, f"compaction.{key} must be a positive integer")
                values[key] = v
        if "threshold_ratio" in obj:
            v = obj["threshold_ratio"]
            if isinstance(v, bool) or not isinstance(v, (int, float)) or not 0 < v <= 1:
                raise ConfigParseError(source, "compaction.threshold_ratio must be in (0, 1]")
            values["threshold_ratio"] = float(v)
        return CompactionPolicy(
            max_tokens=values.get("max_tokens", cur.max_tokens),
            threshold_ratio=values.get("threshold_ratio", cur.threshold_ratio),
            keep_recent_messages=values.get("keep_recent_messages", cur.keep_recent_messages),
            max_tool_result_chars=values.get("max_tool_result_chars", cur.max_tool_result_chars),
            max_message_chars=values.get("max_message_chars", cur.max_message_chars),
        )
