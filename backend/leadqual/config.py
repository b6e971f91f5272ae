# backend/leadqual/config.py
import os
from pathlib import Path
from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

load_dotenv(dotenv_path=str(ENV_FILE), override=False)


def _parse_origins(raw: str) -> list[str]:
    # split, strip, drop empties, drop trailing slashes
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


class Settings:
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./leadqual.db")

    # ================= ElevenLabs Configuration =================
    # API key used to mint signed conversation URLs
    ELEVENLABS_API_KEY: str | None = os.getenv("ELEVENLABS_API_KEY")

    # Default conversational agent for qualification calls
    ELEVENLABS_AGENT_ID: str | None = os.getenv("ELEVENLABS_AGENT_ID")

    ELEVENLABS_BASE_URL: str = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io")

    # ================= LLM Gateway Configuration =================
    # OpenAI-compatible chat completions endpoint
    LLM_GATEWAY_URL: str = os.getenv("LLM_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1")
    LLM_API_KEY: str | None = os.getenv("LLM_API_KEY")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "google/gemini-2.5-flash")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30.0"))

    # ================= Call Lifecycle =================
    # Delay between controller construction and the token request
    CALL_SETTLE_DELAY_SECONDS: float = float(os.getenv("CALL_SETTLE_DELAY_SECONDS", "0.5"))

    # Simulated call bookkeeping (qualification without audio)
    SIMULATED_CALL_DURATION_SECONDS: int = int(os.getenv("SIMULATED_CALL_DURATION_SECONDS", "180"))
    SIMULATED_MEETING_OFFSET_DAYS: int = int(os.getenv("SIMULATED_MEETING_OFFSET_DAYS", "7"))

    # Product pitched by the simulated agent
    PRODUCT_NAME: str = os.getenv("PRODUCT_NAME", "CommerceClarity")

    # IMPORTANT: keep localhost + 127.0.0.1 for Vite dev
    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:5173,http://localhost:5173,http://127.0.0.1:8080,http://localhost:8080",
        )
    )

    # ================= Environment Configuration =================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(raise_on_error: bool = True) -> dict:
    """
    Validate all configuration settings.

    Args:
        raise_on_error: If True, raises ConfigValidationError on critical errors.
                       If False, returns dict with errors and warnings.

    Returns:
        Dict with 'errors' (critical) and 'warnings' (non-critical) lists.

    Raises:
        ConfigValidationError: If raise_on_error=True and critical errors found.
    """
    errors = []
    warnings = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is required")

    # Required for voice calls
    if not settings.ELEVENLABS_API_KEY:
        errors.append("ELEVENLABS_API_KEY is required for voice calls")
    if not settings.ELEVENLABS_AGENT_ID:
        warnings.append("ELEVENLABS_AGENT_ID missing - callers must pass an agent id explicitly")

    # Degraded: simulation falls back to the canned payload, transcripts cannot be processed
    if not settings.LLM_API_KEY:
        warnings.append("LLM_API_KEY missing - qualification uses fallback data, transcript processing disabled")

    if settings.CALL_SETTLE_DELAY_SECONDS < 0:
        errors.append("CALL_SETTLE_DELAY_SECONDS must not be negative")

    if settings.ENVIRONMENT == "production":
        if not settings.CORS_ORIGINS or any("localhost" in o for o in settings.CORS_ORIGINS):
            warnings.append("CORS_ORIGINS includes localhost in production - consider restricting")
        if settings.DATABASE_URL.startswith("sqlite"):
            warnings.append("DATABASE_URL points at SQLite in production")

    result = {"errors": errors, "warnings": warnings}

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration errors: {'; '.join(errors)}")

    return result


def get_config_status() -> dict:
    """Configuration presence flags for the health endpoint."""
    return {
        "environment": settings.ENVIRONMENT,
        "database_configured": bool(settings.DATABASE_URL),
        "elevenlabs_configured": bool(settings.ELEVENLABS_API_KEY),
        "default_agent_configured": bool(settings.ELEVENLABS_AGENT_ID),
        "llm_configured": bool(settings.LLM_API_KEY),
        "llm_model": settings.LLM_MODEL,
    }
