from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..compaction.policy import CompactionPolicy
from ..hooks.models import HookSettings
from ..permissions.engine import PermissionEngine
from ..permissions.models import PermissionMode, PermissionRule


@dataclass
class Settings:
    """Settings merged from every layer.

    Scalars follow the last layer that sets them; permission rules
    concatenate across layers and each remembers the file it came from.
    """

    permission_mode: PermissionMode = "default"
    rules: list[PermissionRule] = field(default_factory=list)
    hooks: HookSettings = field(default_factory=HookSettings)
    compaction: CompactionPolicy = field(default_factory=CompactionPolicy)
    log_level: str = "INFO"

    loaded_from: list[Path] = field(default_factory=list)

    def permission_engine(self) -> PermissionEngine:
        return PermissionEngine(self.rules)

    def rules_by_disposition(self) -> dict[str, list[str]]:
        out: dict[str, list[str]] = {"allow": [], "ask": [], "deny": []}
        for r in self.rules:
            out[r.disposition].append(r.raw)
        return out
