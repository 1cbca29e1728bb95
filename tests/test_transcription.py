from __future__ import annotations

import asyncio
import os
from types import SimpleNamespace

import httpx
import openai
import pytest

from ielts_coach.core.config import Settings
from ielts_coach.core.errors import TranscriptionFailure
from ielts_coach.services.providers import AudioClip
from ielts_coach.services.transcription import transcribe_clip

CLIP = AudioClip(filename="answer.m4a", mime_type="audio/mp4", data=b"fake-m4a")


class FakeTranscriptions:
    def __init__(self, text: str = "", error: Exception = None) -> None:
        self.text = text
        self.error = error
        self.seen = {}

    async def create(self, model, file):
        name, handle = file
        self.seen = {
            "model": model,
            "name": name,
            "path": handle.name,
            "existed": os.path.exists(handle.name),
            "content": handle.read(),
        }
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


def _client(fake: FakeTranscriptions):
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=fake))


def test_transcribes_from_temp_file_and_removes_it(openai_settings: Settings) -> None:
    fake = FakeTranscriptions(text="  I enjoy reading novels.  ")

    text = asyncio.run(transcribe_clip(CLIP, openai_settings, client=_client(fake)))

    assert text == "I enjoy reading novels."
    assert fake.seen["model"] == "whisper-1"
    assert fake.seen["name"] == "answer.m4a"
    assert fake.seen["existed"]
    assert fake.seen["content"] == b"fake-m4a"
    assert fake.seen["path"].endswith(".m4a")
    assert not os.path.exists(fake.seen["path"])


def test_provider_error_becomes_transcription_failure(openai_settings: Settings) -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
    fake = FakeTranscriptions(error=openai.APIConnectionError(request=request))

    with pytest.raises(TranscriptionFailure):
        asyncio.run(transcribe_clip(CLIP, openai_settings, client=_client(fake)))

    assert not os.path.exists(fake.seen["path"])


def test_empty_transcript_is_a_failure(openai_settings: Settings) -> None:
    fake = FakeTranscriptions(text="   ")
    with pytest.raises(TranscriptionFailure):
        asyncio.run(transcribe_clip(CLIP, openai_settings, client=_client(fake)))


def test_missing_openai_key() -> None:
    settings = Settings(llm_provider="gemini", gemini_api_key="g-key")
    with pytest.raises(TranscriptionFailure):
        asyncio.run(transcribe_clip(CLIP, settings))
