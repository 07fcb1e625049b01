from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


@dataclass(frozen=True)
class Signature:
    """Canonical form of a tool call used for rule matching: ``Tool(content)``."""

    tool_name: str
    content: str | None = None

    def __str__(self) -> str:
        if self.content is None:
            return self.tool_name
        return f"{self.tool_name}({self.content})"


def build_signature(tool_name: str, params: Mapping[str, Any], signature_key: str | None) -> Signature:
    if not signature_key:
        return Signature(tool_name)
    value = params.get(signature_key)
    if value is None:
        return Signature(tool_name)
    content = str(value).strip()
    return Signature(tool_name, content or None)


def parse_signature(text: str) -> Signature:
    """Inverse of ``str(Signature)``; parentheses inside the content are kept."""
    text = text.strip()
    idx = text.find("(")
    if idx > 0 and text.endswith(")"):
        return Signature(text[:idx], text[idx + 1 : -1])
    return Signature(text)
