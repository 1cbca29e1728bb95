import re
import logging
from typing import Optional

from fastapi import APIRouter, Request, UploadFile, File

from ielts_coach.core.errors import NoFileUploaded, FileTooLarge
from ielts_coach.services.providers import AudioClip

router = APIRouter()
logger = logging.getLogger(__name__)

AUDIO_PART_FIELD = re.compile(r"^audio_part_(\d+)$")


def get_service(request: Request):
    return request.app.state.speech_service


async def read_clip(upload, max_bytes: int) -> AudioClip:
    """Reads one uploaded file into memory, enforcing the size limit."""
    if upload is None or not getattr(upload, "filename", None):
        raise NoFileUploaded()

    try:
        data = await upload.read(max_bytes + 1)
    finally:
        await upload.close()

    if not data:
        raise NoFileUploaded()
    if len(data) > max_bytes:
        raise FileTooLarge(detail=f"{upload.filename} exceeds {max_bytes} bytes")

    logger.info(f"📂 Received audio: {upload.filename} ({upload.content_type}, {len(data)} bytes)")
    return AudioClip(
        filename=upload.filename,
        mime_type=upload.content_type or "application/octet-stream",
        data=data,
    )


@router.post("/analyze-speech")
async def analyze_speech(request: Request, audio: Optional[UploadFile] = File(None)):
    """Band 7, 8 and 9 sample answers generated from one recording."""
    clip = await read_clip(audio, request.app.state.settings.MAX_UPLOAD_BYTES)
    return await get_service(request).analyze_speech(clip)


@router.post("/checkband")
async def check_band(request: Request, audio: Optional[UploadFile] = File(None)):
    """Estimated band score and feedback for one recording."""
    clip = await read_clip(audio, request.app.state.settings.MAX_UPLOAD_BYTES)
    return await get_service(request).check_band(clip)


@router.post("/transcribe")
async def transcribe(request: Request, audio: Optional[UploadFile] = File(None)):
    """Whisper transcript plus Band 7, 8 and 9 rewrites."""
    clip = await read_clip(audio, request.app.state.settings.MAX_UPLOAD_BYTES)
    return await get_service(request).transcribe_and_generate(clip)


@router.post("/evaluate-test")
async def evaluate_test(request: Request):
    """
    Scores a full test. Audio arrives as audio_part_1..n, each optionally
    paired with a question_1..n text field.
    """
    max_bytes = request.app.state.settings.MAX_UPLOAD_BYTES
    form = await request.form()
    try:
        parts = []
        for key, value in form.multi_items():
            match = AUDIO_PART_FIELD.match(key)
            if match and not isinstance(value, str):
                parts.append((int(match.group(1)), match.group(1), value))
        parts.sort(key=lambda p: p[0])

        if not parts:
            raise NoFileUploaded()

        clips = []
        questions = []
        for _, suffix, upload in parts:
            clips.append(await read_clip(upload, max_bytes))
            question = form.get(f"question_{suffix}")
            questions.append(question.strip() if isinstance(question, str) else "")
    finally:
        await form.close()

    return await get_service(request).evaluate_test(clips, questions)
