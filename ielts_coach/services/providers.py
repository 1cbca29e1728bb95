import os
import base64
import logging
from dataclasses import dataclass
from typing import Optional, List

from ielts_coach.core.config import Settings, ConfigError, mask_key
from ielts_coach.services.external_client import CallRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioClip:
    filename: str
    mime_type: str
    data: bytes

    def as_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class GeminiAdapter:
    """Gemini `generateContent`: text + inlineData parts, optional responseSchema."""

    name = "Gemini"
    text_path = ("candidates", 0, "content", "parts", 0, "text")

    def __init__(self, api_key: str, model: str, base_url: str):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url

    def accepts(self, clip: AudioClip) -> bool:
        return True

    @property
    def url(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_payload(
        self,
        instruction: str,
        system_instruction: str,
        clips: List[AudioClip] = (),
        response_schema: Optional[dict] = None,
    ) -> dict:
        parts = [{"text": instruction}]
        for clip in clips:
            parts.append({"inlineData": {"mimeType": clip.mime_type, "data": clip.as_base64()}})

        payload = {
            "contents": [{"parts": parts}],
            "systemInstruction": {"parts": [{"text": system_instruction}]},
        }
        if response_schema:
            payload["generationConfig"] = {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            }
        return payload

    def build_request(self, instruction, system_instruction, clips=(), response_schema=None) -> CallRequest:
        payload = self.build_payload(instruction, system_instruction, clips, response_schema)
        return CallRequest.from_json(self.url, payload, headers={"x-goog-api-key": self.api_key})


# input_audio only accepts these two
OPENAI_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}

OPENAI_AUDIO_EXTENSIONS = {".wav": "wav", ".mp3": "mp3"}


class OpenAIChatAdapter:
    """OpenAI chat completions: system + user messages, audio as input_audio parts."""

    name = "OpenAI"
    text_path = ("choices", 0, "message", "content")

    def __init__(self, api_key: str, model: str, base_url: str):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    @staticmethod
    def audio_format(clip: AudioClip) -> Optional[str]:
        """input_audio format for the clip, or None when OpenAI cannot take it."""
        fmt = OPENAI_AUDIO_FORMATS.get((clip.mime_type or "").split(";")[0].strip().lower())
        if fmt:
            return fmt
        ext = os.path.splitext(clip.filename or "")[1].lower()
        return OPENAI_AUDIO_EXTENSIONS.get(ext)

    def accepts(self, clip: AudioClip) -> bool:
        return self.audio_format(clip) is not None

    def build_payload(self, instruction, system_instruction, clips=(), response_schema=None) -> dict:
        if clips:
            content = [{"type": "text", "text": instruction}]
            for clip in clips:
                content.append({
                    "type": "input_audio",
                    "input_audio": {"data": clip.as_base64(), "format": self.audio_format(clip)},
                })
        else:
            content = instruction

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": content},
            ],
        }
        if response_schema:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def build_request(self, instruction, system_instruction, clips=(), response_schema=None) -> CallRequest:
        payload = self.build_payload(instruction, system_instruction, clips, response_schema)
        return CallRequest.from_json(
            self.url, payload, headers={"Authorization": f"Bearer {self.api_key}"}
        )


def get_adapter(settings: Settings):
    """Picks the adapter named by LLM_PROVIDER."""
    if settings.LLM_PROVIDER == "gemini":
        adapter = GeminiAdapter(settings.GEMINI_API_KEY, settings.GEMINI_MODEL, settings.GEMINI_BASE_URL)
        key = settings.GEMINI_API_KEY
    elif settings.LLM_PROVIDER == "openai":
        adapter = OpenAIChatAdapter(settings.OPENAI_API_KEY, settings.OPENAI_MODEL, settings.OPENAI_BASE_URL)
        key = settings.OPENAI_API_KEY
    else:
        raise ConfigError(f"Unknown LLM_PROVIDER: {settings.LLM_PROVIDER!r}")

    logger.info(f"✅ {adapter.name} adapter ready. Model: {adapter.model}. Key: {mask_key(key)}")
    return adapter
