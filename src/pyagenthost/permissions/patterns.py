"""Permission pattern grammar.

Patterns are compiled once when settings are loaded:

- ``*``            matches every signature
- ``Tool``         matches every call of ``Tool``; the name may contain ``*``
- ``Tool(body)``   matches when the call's salient content equals ``body``,
                   anchored at both ends; ``*`` in the body matches any run of
                   characters
- ``Tool(pre:*)``  boundary-anchored prefix: ``pre`` alone or ``pre`` followed
                   by whitespace and anything (``npm:*`` matches ``npm install``
                   but not ``npmx``)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern

from ..errors import ConfigParseError
from .signature import Signature

_TOOL_NAME_RE = re.compile(r"^[A-Za-z_*][A-Za-z0-9_*.\-]*$")


@dataclass(frozen=True)
class CompiledPattern:
    raw: str
    tool_re: Optional[Pattern[str]]
    body_re: Optional[Pattern[str]]

    def matches(self, signature: Signature) -> bool:
        if self.tool_re is not None and not self.tool_re.fullmatch(signature.tool_name):
            return False
        if self.body_re is None:
            return True
        return self.body_re.fullmatch(signature.content or "") is not None

    @staticmethod
    def literal(signature: Signature) -> "CompiledPattern":
        """Exact match of one signature; ``*`` in the content is not a wildcard."""
        tool_re = re.compile(re.escape(signature.tool_name))
        body_re = re.compile(re.escape(signature.content), re.DOTALL) if signature.content is not None else None
        return CompiledPattern(raw=str(signature), tool_re=tool_re, body_re=body_re)


def _wildcard(text: str) -> str:
    return ".*".join(re.escape(part) for part in text.split("*"))


def _check_balanced(raw: str) -> bool:
    depth = 0
    for ch in raw:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def compile_pattern(raw: str, source: str | None = None) -> CompiledPattern:
    if not isinstance(raw, str):
        raise ConfigParseError(source, f"permission pattern must be a string, got {type(raw).__name__}")
    text = raw.strip()
    if not text:
        raise ConfigParseError(source, "empty permission pattern")
    if text == "*":
        return CompiledPattern(raw=text, tool_re=None, body_re=None)
    if not _check_balanced(text):
        raise ConfigParseError(source, f"unbalanced parentheses in permission pattern {raw!r}")

    idx = text.find("(")
    if idx == -1:
        tool, body = text, None
    else:
        if not text.endswith(")"):
            raise ConfigParseError(source, f"trailing text after ')' in permission pattern {raw!r}")
        tool, body = text[:idx], text[idx + 1 : -1]
        if not body.strip():
            raise ConfigParseError(source, f"empty body in permission pattern {raw!r}")

    if not _TOOL_NAME_RE.match(tool):
        raise ConfigParseError(source, f"invalid tool name {tool!r} in permission pattern {raw!r}")

    tool_re = re.compile(_wildcard(tool))
    if body is None:
        return CompiledPattern(raw=text, tool_re=tool_re, body_re=None)

    if body.endswith(":*"):
        prefix = body[:-2]
        if not prefix:
            raise ConfigParseError(source, f"empty prefix in permission pattern {raw!r}")
        body_re = re.compile(_wildcard(prefix) + r"(?:\s.*)?", re.DOTALL)
    else:
        body_re = re.compile(_wildcard(body), re.DOTALL)
    return CompiledPattern(raw=text, tool_re=tool_re, body_re=body_re)
