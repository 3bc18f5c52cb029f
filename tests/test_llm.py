from __future__ import annotations

import json
import logging
from typing import Any
from urllib import error

import pytest

from meal_planner_api.app.errors import CompletionServiceError
from meal_planner_api.app.llm import OpenAIChatCompletionsAdapter
from meal_planner_api.app.models import TokenUsage


def _adapter(**kwargs: Any) -> OpenAIChatCompletionsAdapter:
    return OpenAIChatCompletionsAdapter(api_key="sk-test", backoff_s=0.0, **kwargs)


def test_complete_json_sends_json_mode_request_and_maps_usage(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    adapter = _adapter(model="gpt-4.1-nano", temperature=0.5, max_tokens=1000)
    sent: list[dict[str, Any]] = []

    def fake_request(payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        sent.append(payload)
        return {
            "choices": [{"message": {"content": json.dumps({"days": []})}}],
            "usage": {"prompt_tokens": 11, "completion_tokens": 22, "total_tokens": 33},
        }

    monkeypatch.setattr(adapter, "_request", fake_request)
    completion = adapter.complete_json(system_prompt="sys", user_prompt="user", timeout_s=3)

    assert completion.content == '{"days": []}'
    assert completion.usage == TokenUsage(prompt_tokens=11, completion_tokens=22, total_tokens=33)
    assert sent[0]["response_format"] == {"type": "json_object"}
    assert sent[0]["model"] == "gpt-4.1-nano"
    assert sent[0]["temperature"] == 0.5
    assert sent[0]["max_tokens"] == 1000
    assert [m["role"] for m in sent[0]["messages"]] == ["system", "user"]


def test_missing_content_and_usage_are_reported_as_none(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = _adapter()
    monkeypatch.setattr(
        adapter, "_request", lambda payload, timeout_s: {"choices": [{"message": {"content": ""}}]}
    )

    completion = adapter.complete_json(system_prompt="s", user_prompt="u", timeout_s=1)

    assert completion.content is None
    assert completion.usage is None


def test_transport_errors_are_retried_then_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = _adapter(max_retries=2)
    attempts: list[int] = []

    def failing_request(payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        attempts.append(1)
        raise error.URLError("connection refused")

    monkeypatch.setattr(adapter, "_request", failing_request)
    with pytest.raises(CompletionServiceError, match="connection refused"):
        adapter.complete_json(system_prompt="s", user_prompt="u", timeout_s=1)
    assert len(attempts) == 3


def test_retry_recovers_after_transient_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    adapter = _adapter(max_retries=1)
    responses: list[Any] = [
        TimeoutError("slow"),
        {"choices": [{"message": {"content": "[]"}}]},
    ]

    def flaky_request(payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        answer = responses.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

    monkeypatch.setattr(adapter, "_request", flaky_request)
    assert adapter.complete_json(system_prompt="s", user_prompt="u", timeout_s=1).content == "[]"


def test_each_failed_attempt_and_the_final_give_up_are_logged(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    adapter = _adapter(max_retries=1)

    def failing_request(payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        raise error.URLError("no route to host")

    monkeypatch.setattr(adapter, "_request", failing_request)
    with caplog.at_level(logging.WARNING), pytest.raises(CompletionServiceError):
        adapter.complete_json(system_prompt="s", user_prompt="u", timeout_s=1)

    assert "event=attempt_failed attempt=1/2" in caplog.text
    assert "event=attempt_failed attempt=2/2" in caplog.text
    assert "event=gave_up attempts=2" in caplog.text
