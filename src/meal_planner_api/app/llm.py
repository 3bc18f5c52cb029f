from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error, request

from .config import Settings
from .errors import CompletionServiceError
from .models import TokenUsage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    """Raw JSON text returned by the model plus token accounting, if reported."""

    content: str | None
    usage: TokenUsage | None = None


class CompletionAdapter(Protocol):
    """Interface for JSON-mode LLM completions."""

    def complete_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        timeout_s: float,
    ) -> Completion: ...


class OpenAIChatCompletionsAdapter:
    """Small OpenAI adapter using the chat completions REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4.1-nano",
        base_url: str = "https://api.openai.com/v1",
        temperature: float = 0.7,
        max_tokens: int = 32768,
        max_retries: int = 1,
        backoff_s: float = 0.2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def complete_json(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        timeout_s: float,
    ) -> Completion:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
        }
        started = time.monotonic()
        response_json = self._request_with_retry(payload, timeout_s=timeout_s)
        elapsed_s = time.monotonic() - started
        usage = self._extract_usage(response_json)
        logger.info(
            "llm_completion event=received model=%s elapsed_s=%.2f total_tokens=%s",
            self.model,
            elapsed_s,
            usage.total_tokens if usage else None,
        )
        return Completion(content=self._extract_content(response_json), usage=usage)

    def _request_with_retry(self, payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        attempts = self.max_retries + 1
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            attempt_started = time.monotonic()
            try:
                return self._request(payload, timeout_s=timeout_s)
            except (TimeoutError, ValueError, error.URLError, error.HTTPError) as exc:
                last_error = exc
                logger.warning(
                    "llm_completion event=attempt_failed attempt=%d/%d model=%s "
                    "elapsed_s=%.2f reason=%s",
                    attempt,
                    attempts,
                    self.model,
                    time.monotonic() - attempt_started,
                    exc,
                )
                if attempt < attempts and self.backoff_s > 0:
                    # Linear backoff: 1x, 2x, ... the configured delay.
                    time.sleep(self.backoff_s * attempt)
        logger.error(
            "llm_completion event=gave_up attempts=%d model=%s reason=%s",
            attempts,
            self.model,
            last_error,
        )
        raise CompletionServiceError(f"Completion request failed: {last_error}") from last_error

    def _request(self, payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        if _trace_enabled():
            logger.warning(
                "llm_completion event=trace_request model=%s url=%s timeout_s=%s",
                self.model,
                url,
                timeout_s,
            )
        raw_payload = json.dumps(payload).encode("utf-8")
        req = request.Request(
            url=url,
            data=raw_payload,
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise error.HTTPError(
                exc.url,
                exc.code,
                f"OpenAI API request failed: {raw_error}",
                exc.headers,
                exc.fp,
            ) from exc
        if _trace_enabled():
            logger.warning(
                "llm_completion event=trace_response model=%s bytes=%d", self.model, len(body)
            )
        return json.loads(body)

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str | None:
        # Empty content is reported as None; callers decide whether that is fatal.
        choices = response_json.get("choices") or []
        if not choices:
            return None
        message = choices[0].get("message") or {}
        content = message.get("content")
        if isinstance(content, str):
            return content or None
        if isinstance(content, list):
            text_segments: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        text_segments.append(text)
            return "".join(text_segments).strip() or None
        return None

    @staticmethod
    def _extract_usage(response_json: dict[str, Any]) -> TokenUsage | None:
        raw_usage = response_json.get("usage")
        if not isinstance(raw_usage, dict):
            return None
        return TokenUsage(
            prompt_tokens=int(raw_usage.get("prompt_tokens") or 0),
            completion_tokens=int(raw_usage.get("completion_tokens") or 0),
            total_tokens=int(raw_usage.get("total_tokens") or 0),
        )


def build_llm_adapter(settings: Settings) -> CompletionAdapter | None:
    api_key = settings.resolved_openai_api_key()
    if not api_key:
        return None

    return OpenAIChatCompletionsAdapter(
        api_key=api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
    )


def _trace_enabled() -> bool:
    return os.getenv("MEAL_PLANNER_LLM_TRACE", "0").strip() == "1"
