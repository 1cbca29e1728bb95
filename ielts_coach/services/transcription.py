import os
import logging
import tempfile

import openai
from openai import AsyncOpenAI

from ielts_coach.core.config import Settings
from ielts_coach.core.errors import TranscriptionFailure
from ielts_coach.services.providers import AudioClip

logger = logging.getLogger(__name__)


def make_openai_client(settings: Settings) -> AsyncOpenAI:
    return AsyncOpenAI(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.UPSTREAM_TIMEOUT,
    )


async def transcribe_clip(clip: AudioClip, settings: Settings, client: AsyncOpenAI = None) -> str:
    """
    Whisper transcription. The clip is spooled to a temp file and streamed
    from disk; the file is removed on every exit path.
    """
    if client is None:
        if not settings.OPENAI_API_KEY:
            raise TranscriptionFailure(detail="OPENAI_API_KEY is not set")
        client = make_openai_client(settings)

    suffix = os.path.splitext(clip.filename or "")[1] or ".webm"
    tmp = tempfile.NamedTemporaryFile(prefix="ielts_", suffix=suffix, delete=False)
    try:
        with tmp:
            tmp.write(clip.data)

        logger.info(f"🎤 Attempting transcription with {settings.OPENAI_TRANSCRIBE_MODEL}...")
        with open(tmp.name, "rb") as audio_file:
            transcript = await client.audio.transcriptions.create(
                model=settings.OPENAI_TRANSCRIBE_MODEL,
                file=(clip.filename or os.path.basename(tmp.name), audio_file),
            )
    except openai.OpenAIError as e:
        logger.warning(f"⚠️ Transcription Failed: {e}")
        raise TranscriptionFailure(detail=str(e))
    except OSError as e:
        logger.error(f"❌ Could not spool audio to disk: {e}")
        raise TranscriptionFailure(detail=str(e))
    finally:
        try:
            os.remove(tmp.name)
        except FileNotFoundError:
            pass

    text = (getattr(transcript, "text", None) or "").strip()
    if not text:
        raise TranscriptionFailure(detail="Transcription returned no text")

    logger.info(f"✅ Transcription success ({len(text)} chars)")
    return text
