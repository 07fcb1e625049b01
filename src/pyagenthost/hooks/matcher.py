from __future__ import annotations

import re
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import PurePath
from typing import Any, Mapping, Optional, Pattern

from ..errors import ConfigParseError

_GLOB_CHARS = set("*?[")
_PATH_KEYS = ("file_path", "path", "notebook_path")


@dataclass(frozen=True)
class HookMatcher:
    """Selects hooks by tool name, and optionally by path glob and command regex.

    Tool name forms: ``""`` or ``"*"`` (any tool), ``"Bash"`` (exact),
    ``"Edit|Write"`` (alternatives), ``"Edit*"`` (glob).
    """

    raw: str
    alternatives: tuple[str, ...]
    path_glob: str | None = None
    command_re: Optional[Pattern[str]] = None

    @staticmethod
    def compile(
        raw: str,
        *,
        path_glob: str | None = None,
        command_regex: str | None = None,
        source: str | None = None,
    ) -> "HookMatcher":
        text = (raw or "").strip()
        if text in ("", "*"):
            alts: tuple[str, ...] = ()
        else:
            alts = tuple(a.strip() for a in text.split("|"))
            if any(not a for a in alts):
                raise ConfigParseError(source, f"empty alternative in hook matcher {raw!r}")
        if path_glob is not None and not isinstance(path_glob, str):
            raise ConfigParseError(source, "hook path filter must be a string")
        rx = None
        if command_regex is not None:
            if not isinstance(command_regex, str):
                raise ConfigParseError(source, "hook command_regex must be a string")
            try:
                rx = re.compile(command_regex)
            except re.error as e:
                raise ConfigParseError(source, f"invalid hook command_regex {command_regex!r}: {e}")
        return HookMatcher(raw=text, alternatives=alts, path_glob=path_glob, command_re=rx)

    def matches_tool(self, tool_name: str) -> bool:
        if not self.alternatives:
            return True
        for alt in self.alternatives:
            if _GLOB_CHARS & set(alt):
                if fnmatchcase(tool_name, alt):
                    return True
            elif alt == tool_name:
                return True
        return False

    def matches(self, tool_name: str, tool_input: Mapping[str, Any] | None = None) -> bool:
        if not self.matches_tool(tool_name):
            return False
        tool_input = tool_input or {}
        if self.path_glob is not None:
            path = next((tool_input[k] for k in _PATH_KEYS if isinstance(tool_input.get(k), str)), None)
            if path is None:
                return False
            if not (fnmatchcase(path, self.path_glob) or PurePath(path).match(self.path_glob)):
                return False
        if self.command_re is not None:
            cmd = tool_input.get("command")
            if not isinstance(cmd, str) or self.command_re.search(cmd) is None:
                return False
        return True
