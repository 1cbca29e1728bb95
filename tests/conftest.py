from __future__ import annotations

import json

import httpx
import pytest

from ielts_coach.core.config import Settings


class FakeSleep:
    """Stands in for asyncio.sleep and records every delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class Upstream:
    """httpx.MockTransport that replays a fixed sequence of responses or errors."""

    def __init__(self, *steps) -> None:
        self.steps = list(steps)
        self.calls: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        step = self.steps[min(len(self.calls), len(self.steps)) - 1]
        if isinstance(step, Exception):
            raise step
        # fresh copy, a Response is bound to one request
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)

    def payload(self, index: int = -1) -> dict:
        return json.loads(self.calls[index].content)


def gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def openai_body(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def gemini_settings() -> Settings:
    return Settings(llm_provider="gemini", gemini_api_key="gemini-test-key", openai_api_key="sk-test-key")


@pytest.fixture
def openai_settings() -> Settings:
    return Settings(llm_provider="openai", openai_api_key="sk-test-key")
