from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/code-buddy/config.json").expanduser()

DEFAULT_IGNORE_TOOLS = (
    "buddy_remember",
    "buddy_help",
    "buddy_remember_recent",
    "buddy_remember_stats",
    "buddy_remember_by_category",
)

CONFIG_ENV_OVERRIDES = {
    "auto_observe": "CODE_BUDDY_AUTO_OBSERVE",
    "full_auto": "CODE_BUDDY_FULL_AUTO",
    "observe_min_actions": "CODE_BUDDY_OBSERVE_MIN_ACTIONS",
    "require_edit_for_record": "CODE_BUDDY_REQUIRE_EDIT",
    "observe_ignore_tools": "CODE_BUDDY_OBSERVE_IGNORE_TOOLS",
    "auto_error_detect": "CODE_BUDDY_AUTO_ERROR_DETECT",
    "data_dir": "CODE_BUDDY_DATA_DIR",
    "plugin_log": "CODE_BUDDY_PLUGIN_LOG",
    "llm_preferred_provider": "CODE_BUDDY_LLM_PROVIDER",
    "llm_preferred_model": "CODE_BUDDY_LLM_MODEL",
    "compaction_context": "CODE_BUDDY_COMPACTION_CONTEXT",
}

# Nested host-style keys ({"hooks": {"autoObserve": ...}}) mapped onto fields.
_NESTED_KEYS = {
    ("hooks", "autoObserve"): "auto_observe",
    ("hooks", "fullAuto"): "full_auto",
    ("hooks", "observeMinActions"): "observe_min_actions",
    ("hooks", "requireEditForRecord"): "require_edit_for_record",
    ("hooks", "observeIgnoreTools"): "observe_ignore_tools",
    ("hooks", "autoErrorDetect"): "auto_error_detect",
    ("hooks", "compactionContext"): "compaction_context",
    ("storage", "dataDir"): "data_dir",
    ("llm", "preferredProvider"): "llm_preferred_provider",
    ("llm", "preferredModel"): "llm_preferred_model",
    ("llm", "maxTokens"): "llm_max_tokens",
    ("llm", "temperature"): "llm_temperature",
}

_INT_KEYS = {"observe_min_actions", "llm_max_tokens", "dedup_semantic_window"}
_FLOAT_KEYS = {
    "llm_temperature",
    "dedup_lexical_threshold",
    "dedup_semantic_threshold",
    "sync_lexical_threshold",
    "guide_threshold",
}
_BOOL_KEYS = {
    "auto_observe",
    "full_auto",
    "require_edit_for_record",
    "auto_error_detect",
    "compaction_context",
}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("CODE_BUDDY_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class CodeBuddyConfig:
    auto_observe: bool = True
    full_auto: bool = True
    observe_min_actions: int = 3
    require_edit_for_record: bool = True
    observe_ignore_tools: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_TOOLS))
    auto_error_detect: bool = True
    compaction_context: bool = True
    data_dir: str = ".opencode/code-buddy/data"
    plugin_log: str | None = "~/.code-buddy/plugin.log"
    llm_preferred_provider: str | None = None
    llm_preferred_model: str | None = None
    llm_max_tokens: int = 2048
    llm_temperature: float = 0.3

    # Exit-time saves always merge and use the sync threshold.
    dedup_lexical_threshold: float = 0.65
    dedup_semantic_threshold: float = 0.75
    dedup_semantic_window: int = 10
    sync_lexical_threshold: float = 0.55
    guide_threshold: float = 0.15


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid float for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def _coerce_str_list(value: object, *, key: str) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if isinstance(item, str) and item.strip():
                items.append(item.strip())
        return items
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    warnings.warn(f"Invalid list for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return None


def _flatten_nested(data: dict[str, Any]) -> dict[str, Any]:
    flat = {key: value for key, value in data.items() if not isinstance(value, dict)}
    for (section, name), target in _NESTED_KEYS.items():
        block = data.get(section)
        if isinstance(block, dict) and name in block:
            flat[target] = block[name]
    return flat


def load_config(path: Path | None = None) -> CodeBuddyConfig:
    cfg = CodeBuddyConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: CodeBuddyConfig, data: dict[str, Any]) -> CodeBuddyConfig:
    for key, value in _flatten_nested(data).items():
        if not hasattr(cfg, key):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _FLOAT_KEYS:
            setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if key == "observe_ignore_tools":
            parsed = _coerce_str_list(value, key=key)
            if parsed is not None:
                cfg.observe_ignore_tools = parsed
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: CodeBuddyConfig) -> CodeBuddyConfig:
    return _apply_dict(cfg, get_env_overrides())
