import os
import logging
import functools
from typing import List, Dict

import yaml

from ielts_coach.core.config import Settings, ConfigError
from ielts_coach.core.errors import ResponseParseError, GenerationFailure
from ielts_coach.services.external_client import ResilientCallClient, RetryPolicy, DEFAULT_POLICY
from ielts_coach.services.providers import AudioClip
from ielts_coach.services import transcription
from ielts_coach.utils import parsers

logger = logging.getLogger(__name__)

TASKS = ("band_samples", "band_check", "test_evaluation", "transcript_samples")

# Gemini responseSchema dialect (OpenAI only gets json_object mode)
BAND_FEEDBACK_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "band": {"type": "NUMBER"},
        "feedback": {"type": "STRING"},
    },
    "required": ["band", "feedback"],
}

BAND_SAMPLES_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "band7": {"type": "STRING"},
        "band8": {"type": "STRING"},
        "band9": {"type": "STRING"},
    },
    "required": ["band7", "band8", "band9"],
}


def load_prompts(path: str) -> Dict[str, dict]:
    """Loads prompts.yaml and checks every task has both templates."""
    if not os.path.exists(path):
        raise ConfigError(f"Prompt file not found at {path}")

    with open(path, "r", encoding="utf-8") as f:
        prompts = yaml.safe_load(f) or {}

    for task in TASKS:
        entry = prompts.get(task)
        if not isinstance(entry, dict) or not entry.get("instruction") or not entry.get("system"):
            raise ConfigError(f"Prompt '{task}' is missing or incomplete in {path}")

    logger.info(f"✅ Prompts loaded from YAML ({len(prompts)} tasks).")
    return prompts


def format_questions(questions: List[str], count: int) -> str:
    lines = []
    for i in range(count):
        question = questions[i] if i < len(questions) and questions[i] else "(not provided)"
        lines.append(f"Question {i + 1}: {question}")
    return "\n".join(lines)


def format_transcripts(transcripts: List[str]) -> str:
    return "\n".join(
        f'Transcript of audio part {i + 1}: "{text}"' for i, text in enumerate(transcripts)
    )


class SpeechService:
    def __init__(
        self,
        client: ResilientCallClient,
        adapter,
        prompts: Dict[str, dict],
        settings: Settings,
        policy: RetryPolicy = DEFAULT_POLICY,
        transcriber=None,
    ):
        self.client = client
        self.adapter = adapter
        self.prompts = prompts
        self.settings = settings
        self.policy = policy
        self.transcriber = transcriber or functools.partial(transcription.transcribe_clip, settings=settings)

    async def _generate(self, task: str, clips=(), response_schema=None, **values) -> str:
        prompt = self.prompts[task]
        instruction = prompt["instruction"].format(**values) if values else prompt["instruction"]

        clips = list(clips)
        if not all(self.adapter.accepts(clip) for clip in clips):
            # Provider can't take this audio format, so send Whisper transcripts instead
            logger.info(f"🎤 {self.adapter.name} cannot take this audio. Transcribing {len(clips)} part(s) first...")
            transcripts = [await self.transcriber(clip) for clip in clips]
            instruction += "\n\n" + format_transcripts(transcripts)
            clips = []

        request = self.adapter.build_request(instruction, prompt["system"], clips, response_schema)

        logger.info(f"🤖 Attempting {task} with {self.adapter.name} ({len(clips)} audio part(s))...")
        result = await self.client.execute(request, self.policy, text_path=self.adapter.text_path)
        result.raise_for_failure()
        return result.text

    async def analyze_speech(self, clip: AudioClip) -> dict:
        """Band 7/8/9 sample answers for one recording."""
        return {"analysis": await self._generate("band_samples", [clip])}

    async def check_band(self, clip: AudioClip) -> dict:
        return {"analysis": await self._generate("band_check", [clip])}

    async def evaluate_test(self, clips: List[AudioClip], questions: List[str]) -> dict:
        """
        Scores a whole test (one clip per part). The model answer must be
        JSON with a numeric `band` and a `feedback` string.
        """
        text = await self._generate(
            "test_evaluation",
            clips,
            response_schema=BAND_FEEDBACK_SCHEMA,
            questions=format_questions(questions, len(clips)),
        )

        data = parsers.extract_clean_json(text, strict=False)
        if not data or "band" not in data or "feedback" not in data:
            raise ResponseParseError(detail=f"Evaluation is missing band/feedback: {text[:200]}")
        try:
            band = float(data["band"])
        except (TypeError, ValueError):
            raise ResponseParseError(detail=f"Band is not a number: {data['band']!r}")

        return {"band": band, "feedback": str(data["feedback"])}

    async def transcribe_and_generate(self, clip: AudioClip) -> dict:
        """Whisper transcript, then Band 7/8/9 rewrites of it."""
        transcript = await self.transcriber(clip)

        text = await self._generate(
            "transcript_samples",
            response_schema=BAND_SAMPLES_SCHEMA,
            transcript=transcript,
        )

        data = parsers.extract_clean_json(text, strict=False)
        if not data or any(key not in data for key in ("band7", "band8", "band9")):
            raise GenerationFailure(detail=f"Sample answers missing from model output: {text[:200]}")

        return {
            "transcript": transcript,
            "band7": str(data["band7"]),
            "band8": str(data["band8"]),
            "band9": str(data["band9"]),
        }
