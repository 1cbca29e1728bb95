class SpeechCoachError(Exception):
    """Base error. `message` is safe to show to the client."""

    status_code = 500
    message = "Internal server error."

    def __init__(self, message: str = None, detail: str = None):
        self.message = message or self.message
        # Internal context for the logs, never returned to the caller
        self.detail = detail
        super().__init__(detail or self.message)


class NoFileUploaded(SpeechCoachError):
    status_code = 400
    message = "No audio file uploaded."


class FileTooLarge(SpeechCoachError):
    status_code = 413
    message = "Audio file too large."


class UpstreamError(SpeechCoachError):
    message = "The AI provider returned an error."

    def __init__(self, status: int = None, detail: str = None):
        self.status = status
        super().__init__(detail=detail or f"API returned non-OK status: {status}")


class RetriesExhausted(SpeechCoachError):
    message = "Failed to get a response from the AI provider after multiple retries."


class ResponseParseError(SpeechCoachError):
    message = "Failed to parse API response."


class TranscriptionFailure(SpeechCoachError):
    message = "Failed to transcribe audio."


class GenerationFailure(SpeechCoachError):
    message = "Failed to generate sample answers."
