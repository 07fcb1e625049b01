"""Path checks applied on top of rule evaluation.

Two classes of paths are treated specially whatever the rules say:

- dangerous paths: ``..`` escapes out of the project root and system
  directories outside it. Always denied.
- sensitive files: keys, credentials and secrets, graded ``high`` or
  ``medium``. High files need an explicit allow rule; medium files always
  go through confirmation.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any, Literal, Mapping

Sensitivity = Literal["high", "medium"]

PATH_KEYS = ("file_path", "path", "notebook_path")

SYSTEM_DIRS = ("/etc", "/sys", "/proc", "/dev", "/boot", "/root")

_FILE_PATTERNS: tuple[tuple[str, Sensitivity, str], ...] = (
    (r"^\.?id_(rsa|ed25519|ecdsa|dsa)$", "high", "SSH private key"),
    (r"\.(pem|key|p12|pfx)$", "high", "private key or certificate"),
    (r"^\.?keystore$", "high", "Java keystore"),
    (r"^\.?pgpass$", "high", "PostgreSQL password file"),
    (r"^\.?my\.cnf$", "high", "MySQL config with credentials"),
    (r"credentials\.json$", "high", "cloud credentials"),
    (r"^service-account.*\.json$", "high", "service account key"),
    (r"^\.env$", "medium", "environment file"),
    (r"^\.env\.", "medium", "environment file"),
    (r"^\.?(npmrc|pypirc|netrc|dockercfg|git-credentials)$", "medium", "tool config with tokens"),
    (r"^config\.toml$", "medium", "config file"),
    (r"^secrets\.", "medium", "secrets file"),
)

_DIR_PATTERNS: tuple[tuple[str, Sensitivity, str], ...] = (
    (r"(^|/)\.ssh/", "high", "SSH directory"),
    (r"(^|/)\.aws/", "high", "AWS directory"),
    (r"(^|/)\.config/gcloud/", "high", "Google Cloud directory"),
    (r"(^|/)\.kube/", "high", "Kubernetes directory"),
    (r"(^|/)\.docker/config\.json$", "medium", "Docker credentials"),
)

_COMPILED_FILES = [(re.compile(p, re.I), level, why) for p, level, why in _FILE_PATTERNS]
_COMPILED_DIRS = [(re.compile(p, re.I), level, why) for p, level, why in _DIR_PATTERNS]


@dataclass(frozen=True)
class SensitiveMatch:
    path: str
    level: Sensitivity
    reason: str

    def __str__(self) -> str:
        return f"{self.path} ({self.level}: {self.reason})"


def affected_paths(args: Mapping[str, Any]) -> list[str]:
    return [str(args[k]) for k in PATH_KEYS if isinstance(args.get(k), str) and args[k]]


def _inside(path: str, root: str) -> bool:
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        return False


def dangerous_reason(path: str, cwd: str) -> str | None:
    """Why ``path`` must never be touched, or None."""
    root = os.path.normpath(os.path.abspath(cwd))
    resolved = os.path.normpath(os.path.join(root, os.path.expanduser(path)))
    if _inside(resolved, root):
        return None
    if ".." in PurePath(path).parts:
        return "path traversal out of the project"
    for d in SYSTEM_DIRS:
        if resolved == d or resolved.startswith(d + "/"):
            return f"system path under {d}"
    return None


def check_sensitive(path: str) -> SensitiveMatch | None:
    norm = path.replace("\\", "/")
    name = norm.rsplit("/", 1)[-1]
    for rx, level, why in _COMPILED_FILES:
        if rx.search(name):
            return SensitiveMatch(path, level, why)
    for rx, level, why in _COMPILED_DIRS:
        if rx.search(norm):
            return SensitiveMatch(path, level, why)
    return None
