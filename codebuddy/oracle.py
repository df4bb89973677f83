from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, TypedDict

from .config import CodeBuddyConfig
from .oracle_config import ProviderInfo, resolve_provider

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0


class OracleError(RuntimeError):
    """The oracle could not produce an answer."""


class OracleUnavailable(OracleError):
    pass


class ConnectionReport(TypedDict, total=False):
    ok: bool
    latency_ms: int
    provider: str
    model: str
    reply: str
    error: str


def _scan_balanced(text: str, start: int) -> str | None:
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        char = text[i]
        if escape_next:
            escape_next = False
            continue
        if char == "\\" and in_string:
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json(text: str | None) -> Any | None:
    """Parse the first balanced JSON object or array embedded in free text.

    Oracle replies often wrap JSON in prose or code fences. Candidates that
    fail to parse are skipped; None means no usable JSON was found.
    """
    if not text:
        return None
    for start, char in enumerate(text):
        if char not in "{[":
            continue
        chunk = _scan_balanced(text, start)
        if chunk is None:
            continue
        try:
            return json.loads(chunk, strict=False)
        except json.JSONDecodeError:
            continue
    return None


def extract_json_object(text: str | None) -> dict[str, Any] | None:
    parsed = extract_json(text)
    return parsed if isinstance(parsed, dict) else None


def extract_json_array(text: str | None) -> list[Any] | None:
    parsed = extract_json(text)
    return parsed if isinstance(parsed, list) else None


class OracleClient:
    """Async text-completion client over the provider found in opencode config.

    OpenAI-compatible providers go through `openai.AsyncOpenAI`; a provider
    with the id `anthropic` goes through `anthropic.AsyncAnthropic`.
    """

    def __init__(
        self,
        config: CodeBuddyConfig,
        provider: ProviderInfo | None = None,
        *,
        cwd: Path | None = None,
    ) -> None:
        self.max_tokens = config.llm_max_tokens
        self.temperature = config.llm_temperature
        self.provider = provider or resolve_provider(
            preferred_provider=config.llm_preferred_provider,
            preferred_model=config.llm_preferred_model,
            cwd=cwd,
        )
        self.client: Any | None = None
        if self.provider is None or not self.available():
            return
        try:
            if self.is_anthropic:
                import anthropic

                kwargs: dict[str, Any] = {
                    "api_key": self.provider.api_key,
                    "timeout": DEFAULT_TIMEOUT_S,
                }
                if self.provider.base_url:
                    kwargs["base_url"] = self.provider.base_url
                if self.provider.headers:
                    kwargs["default_headers"] = self.provider.headers
                self.client = anthropic.AsyncAnthropic(**kwargs)
            else:
                from openai import AsyncOpenAI

                self.client = AsyncOpenAI(
                    api_key=self.provider.api_key,
                    base_url=self.provider.base_url,
                    default_headers=self.provider.headers or None,
                    timeout=DEFAULT_TIMEOUT_S,
                )
        except Exception as exc:
            logger.exception(
                "oracle client init failed",
                extra={"provider": self.provider.name, "model": self.provider.model_id},
                exc_info=exc,
            )
            self.client = None

    @property
    def is_anthropic(self) -> bool:
        return bool(self.provider and self.provider.provider_id == "anthropic")

    @property
    def label(self) -> str:
        if not self.provider:
            return "none"
        return f"{self.provider.name}/{self.provider.model_id}"

    def available(self) -> bool:
        if self.provider is None or not self.provider.api_key:
            return False
        return self.is_anthropic or bool(self.provider.base_url)

    async def ask(self, prompt: str, *, max_tokens: int | None = None) -> str:
        if self.client is None or self.provider is None:
            raise OracleUnavailable("no llm provider configured")
        tokens = max_tokens or self.max_tokens
        try:
            if self.is_anthropic:
                resp = await self.client.messages.create(
                    model=self.provider.model_id,
                    max_tokens=tokens,
                    temperature=self.temperature,
                    messages=[{"role": "user", "content": prompt}],
                )
                text = "".join(
                    getattr(block, "text", "") for block in getattr(resp, "content", []) or []
                )
            else:
                resp = await self.client.chat.completions.create(
                    model=self.provider.model_id,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=tokens,
                    temperature=self.temperature,
                )
                text = resp.choices[0].message.content if resp.choices else None
        except Exception as exc:
            logger.warning(
                "oracle call failed",
                extra={"provider": self.provider.name, "model": self.provider.model_id},
                exc_info=exc,
            )
            raise OracleError(str(exc)) from exc
        if not text:
            raise OracleError("empty response from llm")
        return text

    async def test_connection(self) -> ConnectionReport:
        if not self.available() or self.provider is None:
            logger.warning("no llm provider configured, skipping connectivity test")
            return {"ok": False, "latency_ms": 0, "error": "no llm provider configured"}
        started = time.monotonic()
        report: ConnectionReport = {
            "provider": self.provider.name,
            "model": self.provider.model_id,
        }
        try:
            reply = (await self.ask("HI", max_tokens=10)).strip()
        except OracleError as exc:
            report.update(ok=False, error=str(exc))
        else:
            report.update(ok=True, reply=reply[:50])
        report["latency_ms"] = int((time.monotonic() - started) * 1000)
        if report["ok"]:
            logger.info("llm connection test ok", extra={"latency_ms": report["latency_ms"]})
        else:
            logger.warning("llm connection test failed", extra={"error": report.get("error")})
        return report
