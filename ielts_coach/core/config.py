import os
import logging
from dotenv import load_dotenv
from logtail import LogtailHandler

# 1. Load the .env file
load_dotenv()

# We are in: /ielts_coach/core/config.py
PACKAGE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

LOGGER_NAME = "ielts_coach"


class ConfigError(Exception):
    """Raised at boot when the environment cannot run the service."""


# 2. Setup Logging (Centralized)
def setup_logging(level: str = "INFO"):
    logger = logging.getLogger(LOGGER_NAME)

    # Module loggers are children of this one; keep records off the uvicorn root logger
    logger.propagate = False

    # Hot-reload re-runs this, so drop the previous handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    stream_handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    # Better Stack (Logtail) only if a token exists
    logtail_token = os.getenv("LOGTAIL_SOURCE_TOKEN")

    if logtail_token:
        try:
            handler = LogtailHandler(source_token=logtail_token)
            logger.addHandler(handler)
            logger.info("✅ Better Stack Cloud Logging ENABLED")
        except Exception as e:
            logger.error(f"❌ Failed to connect to Better Stack: {e}")
    else:
        logger.warning("⚠️ No LOGTAIL_SOURCE_TOKEN found. Logging to console only.")

    return logger


def mask_key(key: str) -> str:
    if not key or len(key) < 5:
        return "❌ NOT SET"
    return f"✅ ...{key[-4:]}"


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


class Settings:
    PROJECT_NAME = "IELTS Speaking Coach"
    VERSION = "1.0.0"

    PROMPTS_PATH = os.path.join(PACKAGE_DIR, "prompts.yaml")

    PROVIDERS = ("gemini", "openai")

    def __init__(
        self,
        llm_provider: str = "gemini",
        gemini_api_key: str = None,
        gemini_model: str = "gemini-2.5-flash-preview-05-20",
        gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        openai_api_key: str = None,
        openai_model: str = "gpt-4o-audio-preview",
        openai_transcribe_model: str = "whisper-1",
        openai_base_url: str = "https://api.openai.com/v1",
        port: int = 5000,
        cors_origins=("*",),
        static_dir: str = None,
        max_upload_mb: int = 15,
        upstream_timeout: float = 60.0,
        log_level: str = "INFO",
    ):
        self.LLM_PROVIDER = (llm_provider or "gemini").strip().lower()

        # --- API KEYS ---
        self.GEMINI_API_KEY = gemini_api_key
        self.OPENAI_API_KEY = openai_api_key

        # --- MODELS ---
        self.GEMINI_MODEL = gemini_model
        self.GEMINI_BASE_URL = gemini_base_url.rstrip("/")
        self.OPENAI_MODEL = openai_model
        self.OPENAI_TRANSCRIBE_MODEL = openai_transcribe_model
        self.OPENAI_BASE_URL = openai_base_url.rstrip("/")

        # --- SERVER ---
        self.PORT = port
        self.CORS_ORIGINS = list(cors_origins)
        self.STATIC_DIR = static_dir
        self.MAX_UPLOAD_BYTES = max_upload_mb * 1024 * 1024
        self.UPSTREAM_TIMEOUT = upstream_timeout
        self.LOG_LEVEL = log_level

    @classmethod
    def from_env(cls) -> "Settings":
        """Builds settings from the process environment (and .env)."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            llm_provider=os.getenv("LLM_PROVIDER", "gemini"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash-preview-05-20"),
            gemini_base_url=os.getenv(
                "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
            ),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-audio-preview"),
            openai_transcribe_model=os.getenv("OPENAI_TRANSCRIBE_MODEL", "whisper-1"),
            openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            port=_get_int("PORT", 5000),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            static_dir=os.getenv("STATIC_DIR") or None,
            max_upload_mb=_get_int("MAX_UPLOAD_MB", 15),
            upstream_timeout=_get_float("UPSTREAM_TIMEOUT", 60.0),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> "Settings":
        """Checks the settings once at boot. Raises ConfigError."""
        if self.LLM_PROVIDER not in self.PROVIDERS:
            raise ConfigError(
                f"LLM_PROVIDER must be one of {', '.join(self.PROVIDERS)}, got {self.LLM_PROVIDER!r}"
            )
        if self.LLM_PROVIDER == "gemini" and not self.GEMINI_API_KEY:
            raise ConfigError("GEMINI_API_KEY is required when LLM_PROVIDER=gemini")
        if self.LLM_PROVIDER == "openai" and not self.OPENAI_API_KEY:
            raise ConfigError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
        if not 0 < self.PORT < 65536:
            raise ConfigError(f"PORT out of range: {self.PORT}")
        if self.MAX_UPLOAD_BYTES <= 0:
            raise ConfigError("MAX_UPLOAD_MB must be positive")
        if self.UPSTREAM_TIMEOUT <= 0:
            raise ConfigError("UPSTREAM_TIMEOUT must be positive")
        return self

    def describe(self) -> str:
        return (
            f"provider={self.LLM_PROVIDER} "
            f"gemini={mask_key(self.GEMINI_API_KEY)} "
            f"openai={mask_key(self.OPENAI_API_KEY)}"
        )
