from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_dir

from ..compaction.policy import CompactionPolicy
from ..errors import ConfigParseError
from ..hooks.models import HookSettings
from ..permissions.models import PermissionRule, parse_mode
from ..permissions.patterns import compile_pattern
from ..util.log import get_logger
from .models import Settings

APP_NAME = "pyagenthost"
PROJECT_DIR = ".agenthost"
MODE_ENV_VAR = "AGENTHOST_PERMISSION_MODE"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

logger = get_logger(__name__)


def _first_existing(paths: list[Path]) -> Path | None:
    for p in paths:
        if p.exists() and p.is_file():
            return p
    return None


def _global_candidate_paths() -> list[Path]:
    cfg_dir = Path(user_config_dir(APP_NAME))
    return [cfg_dir / "settings.json", cfg_dir / "settings.yaml", cfg_dir / "settings.yml"]


def _project_candidate_paths(cwd: Path) -> list[Path]:
    d = cwd / PROJECT_DIR
    return [d / "settings.json", d / "settings.yaml", d / "settings.yml"]


def settings_layers(cwd: Path, explicit_path: Path | None = None) -> list[Path]:
    """Settings files that exist, lowest priority first.

    Order: user-global < project < project-local < explicit path.
    Within the global and project layers the first existing candidate wins.
    """
    layers: list[Path] = []
    for found in (
        _first_existing(_global_candidate_paths()),
        _first_existing(_project_candidate_paths(cwd)),
        _first_existing([cwd / PROJECT_DIR / "settings.local.json"]),
    ):
        if found is not None:
            layers.append(found)
    if explicit_path is not None:
        p = explicit_path.expanduser().resolve()
        if not p.is_file():
            raise ConfigParseError(p, "settings file does not exist")
        layers.append(p)
    return layers


def load_file(p: Path) -> dict[str, Any]:
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigParseError(p, f"cannot read: {e}") from e
    try:
        if p.suffix in (".yaml", ".yml"):
            obj = yaml.safe_load(text)
        else:
            obj = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigParseError(p, f"malformed settings: {e}") from e
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ConfigParseError(p, "settings must be an object at the top level")
    return obj


def _parse_rules(obj: Any, source: str) -> list[PermissionRule]:
    if not isinstance(obj, dict):
        raise ConfigParseError(source, "permissions must be an object with allow/ask/deny arrays")
    rules: list[PermissionRule] = []
    for disposition in ("deny", "ask", "allow"):
        patterns = obj.get(disposition, [])
        if not isinstance(patterns, list):
            raise ConfigParseError(source, f"permissions.{disposition} must be an array")
        for raw in patterns:
            rules.append(PermissionRule(compile_pattern(raw, source), disposition, "config", source))  # type: ignore[arg-type]
    return rules


def apply_layer(settings: Settings, obj: dict[str, Any], source: str) -> Settings:
    """Layer one parsed settings object on top of ``settings`` in place."""
    mode = obj.get("permission_mode", obj.get("permissionMode"))
    if mode is not None:
        try:
            settings.permission_mode = parse_mode(mode)
        except ValueError as e:
            raise ConfigParseError(source, str(e)) from e

    if "permissions" in obj:
        settings.rules.extend(_parse_rules(obj["permissions"], source))

    if "hooks" in obj:
        settings.hooks = HookSettings.from_obj(obj["hooks"], source, settings.hooks)

    if "compaction" in obj:
        settings.compaction = CompactionPolicy.from_obj(obj["compaction"], source, settings.compaction)

    level = obj.get("log_level")
    if level is not None:
        if not isinstance(level, str) or level.upper() not in _LOG_LEVELS:
            raise ConfigParseError(source, f"log_level must be one of {sorted(_LOG_LEVELS)}")
        settings.log_level = level.upper()
    return settings


def load_settings(cwd: Path, explicit_path: Path | None = None, *, env: dict[str, str] | None = None) -> Settings:
    """Load and merge settings for a project rooted at ``cwd``.

    Raises ConfigParseError naming the offending file when any layer is
    malformed. ``AGENTHOST_PERMISSION_MODE`` overrides the merged mode.
    """
    settings = Settings()
    for p in settings_layers(cwd, explicit_path):
        apply_layer(settings, load_file(p), str(p))
        settings.loaded_from.append(p)

    env = os.environ if env is None else env
    override = env.get(MODE_ENV_VAR)
    if override:
        try:
            settings.permission_mode = parse_mode(override)
        except ValueError as e:
            raise ConfigParseError(f"${MODE_ENV_VAR}", str(e)) from e

    logger.debug(
        "settings_loaded",
        layers=[str(p) for p in settings.loaded_from],
        permission_mode=settings.permission_mode,
        rules=len(settings.rules),
        hooks=len(settings.hooks.definitions),
    )
    return settings
