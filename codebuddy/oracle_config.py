from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger("codebuddy.oracle")


@dataclass(frozen=True)
class ProviderInfo:
    provider_id: str
    model_id: str
    base_url: str | None
    api_key: str | None
    name: str
    headers: dict[str, str] = field(default_factory=dict)
    source: str | None = None


def _strip_json_comments(text: str) -> str:
    """Strip `//` line comments outside of strings (JSONC support)."""
    lines = []
    for line in text.splitlines():
        result = []
        in_string = False
        escape_next = False
        for i, char in enumerate(line):
            if escape_next:
                result.append(char)
                escape_next = False
                continue
            if char == "\\" and in_string:
                result.append(char)
                escape_next = True
                continue
            if char == '"':
                in_string = not in_string
            elif not in_string and char == "/" and line[i + 1 : i + 2] == "/":
                break
            result.append(char)
        lines.append("".join(result))
    return "\n".join(lines)


def _strip_trailing_commas(text: str) -> str:
    result: list[str] = []
    in_string = False
    escape_next = False
    for i, char in enumerate(text):
        if escape_next:
            result.append(char)
            escape_next = False
            continue
        if char == "\\" and in_string:
            result.append(char)
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
        elif not in_string and char == ",":
            rest = text[i + 1 :].lstrip()
            if rest[:1] in {"]", "}"}:
                continue
        result.append(char)
    return "".join(result)


def load_opencode_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        text = path.read_text()
    except OSError as exc:
        logger.warning("opencode config read failed", extra={"path": str(path)}, exc_info=exc)
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(_strip_trailing_commas(_strip_json_comments(text)))
        except json.JSONDecodeError as exc:
            logger.warning(
                "opencode config load failed after comment strip",
                extra={"path": str(path)},
                exc_info=exc,
            )
            return {}
    return data if isinstance(data, dict) else {}


def opencode_config_candidates(cwd: Path | None = None) -> list[Path]:
    local_dir = cwd or Path.cwd()
    global_dir = Path.home() / ".config" / "opencode"
    return [
        local_dir / "opencode.json",
        global_dir / "opencode.json",
        global_dir / "opencode.jsonc",
    ]


_ENV_PLACEHOLDER_RE = re.compile(r"\{env:([A-Za-z_][A-Za-z0-9_]*)\}")


def _resolve_placeholder(value: str) -> str:
    expanded = _ENV_PLACEHOLDER_RE.sub(lambda m: os.getenv(m.group(1), ""), value)
    return os.path.expandvars(expanded)


def _get_provider_options(provider_config: dict[str, Any]) -> dict[str, Any]:
    options = provider_config.get("options", {})
    return options if isinstance(options, dict) else {}


def _get_provider_base_url(provider_config: dict[str, Any]) -> str | None:
    options = _get_provider_options(provider_config)
    base_url = (
        options.get("baseURL")
        or options.get("baseUrl")
        or options.get("base_url")
        or provider_config.get("api")
    )
    return base_url.rstrip("/") if isinstance(base_url, str) and base_url else None


def _get_provider_headers(provider_config: dict[str, Any]) -> dict[str, str]:
    headers = _get_provider_options(provider_config).get("headers", {})
    if not isinstance(headers, dict):
        return {}
    return {
        key: _resolve_placeholder(value)
        for key, value in headers.items()
        if isinstance(key, str) and isinstance(value, str)
    }


def _get_provider_api_key(provider_config: dict[str, Any]) -> str | None:
    options = _get_provider_options(provider_config)
    api_key = options.get("apiKey") or provider_config.get("apiKey")
    if isinstance(api_key, str) and api_key:
        return _resolve_placeholder(api_key) or None
    api_key_env = options.get("apiKeyEnv") or options.get("api_key_env")
    if isinstance(api_key_env, str) and api_key_env:
        return os.getenv(api_key_env) or None
    return None


def _pick_model(
    config: dict[str, Any],
    provider_id: str,
    provider_config: dict[str, Any],
    preferred_model: str | None,
) -> str | None:
    models = provider_config.get("models", {})
    model_keys = [key for key in models if isinstance(key, str)] if isinstance(models, dict) else []
    if preferred_model and preferred_model in model_keys:
        model_key = preferred_model
    elif model_keys:
        model_key = model_keys[0]
    else:
        top_level = config.get("model")
        if not isinstance(top_level, str) or not top_level:
            return None
        parts = top_level.split("/")
        if len(parts) == 2 and parts[0] == provider_id:
            return parts[1]
        if len(parts) == 1:
            return parts[0]
        return None
    model_config = models.get(model_key, {})
    if isinstance(model_config, dict):
        model_id = model_config.get("id")
        if isinstance(model_id, str) and model_id:
            return model_id
    return model_key


def provider_from_config(
    config: dict[str, Any],
    *,
    preferred_provider: str | None = None,
    preferred_model: str | None = None,
    source: str | None = None,
) -> ProviderInfo | None:
    providers = config.get("provider")
    if not isinstance(providers, dict) or not providers:
        return None
    provider_ids = [key for key in providers if isinstance(key, str)]
    if not provider_ids:
        return None
    target = provider_ids[0]
    if preferred_provider and preferred_provider in provider_ids:
        target = preferred_provider
    provider_config = providers.get(target)
    if not isinstance(provider_config, dict):
        return None
    model_id = _pick_model(config, target, provider_config, preferred_model)
    if not model_id:
        return None
    base_url = _get_provider_base_url(provider_config)
    api_key = _get_provider_api_key(provider_config)
    if not base_url and not api_key:
        return None
    name = provider_config.get("name")
    provider_id = provider_config.get("id")
    return ProviderInfo(
        provider_id=provider_id if isinstance(provider_id, str) and provider_id else target,
        model_id=model_id,
        base_url=base_url,
        api_key=api_key,
        name=name if isinstance(name, str) and name else target,
        headers=_get_provider_headers(provider_config),
        source=source,
    )


def resolve_provider(
    *,
    preferred_provider: str | None = None,
    preferred_model: str | None = None,
    cwd: Path | None = None,
) -> ProviderInfo | None:
    """First usable provider from the project opencode.json, else the user-level one."""
    for path in opencode_config_candidates(cwd):
        info = provider_from_config(
            load_opencode_json(path),
            preferred_provider=preferred_provider,
            preferred_model=preferred_model,
            source=str(path),
        )
        if info is not None:
            logger.info(
                "resolved llm provider",
                extra={"provider": info.name, "model": info.model_id, "source": str(path)},
            )
            return info
    logger.info("no llm provider found in opencode config")
    return None
