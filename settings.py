# settings.py
from pydantic import BaseModel, Field
from dotenv import load_dotenv
import os

# Load variables from .env at import time
load_dotenv()

DEFAULT_PROMPT = (
    "A moving avatar that looks around subtly, blinks, looks forward, and seems to be "
    "looking at the camera, seemless loop, centered with space on either side"
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    # Runway (the only secret is the API key)
    runway_api_key: str = Field(default=os.getenv("RUNWAY_API_KEY", ""))
    runway_api_base: str = Field(default=os.getenv("RUNWAY_API_BASE", "https://api.dev.runwayml.com/v1"))
    runway_api_version: str = Field(default=os.getenv("RUNWAY_API_VERSION", "2024-11-06"))
    runway_model: str = Field(default=os.getenv("RUNWAY_MODEL", "gen3a_turbo"))
    runway_ratio: str = Field(default=os.getenv("RUNWAY_RATIO", ""))
    runway_timeout_seconds: float = Field(default=float(os.getenv("RUNWAY_TIMEOUT_SECONDS", "30")))

    # What gets generated
    avatar_prompt: str = Field(default=os.getenv("AVATAR_PROMPT", DEFAULT_PROMPT))
    avatar_duration_seconds: int = Field(default=int(os.getenv("AVATAR_DURATION_SECONDS", "5")))

    # Background polling
    poll_interval_seconds: float = Field(default=float(os.getenv("POLL_INTERVAL_SECONDS", "1.0")))
    poll_max_failures: int = Field(default=int(os.getenv("POLL_MAX_FAILURES", "3")))

    # Job storage: memory | local | sql | r2
    job_storage: str = Field(default=os.getenv("JOB_STORAGE", "local").lower())
    local_jobs_dir: str = Field(default=os.getenv("LOCAL_JOBS_DIR", os.path.join(os.getcwd(), "data", "jobs")))
    database_url: str = Field(default=os.getenv("DATABASE_URL", "sqlite:///./moving_avatar.db"))
    r2_access_key_id: str = Field(default=os.getenv("R2_ACCESS_KEY_ID", ""))
    r2_secret_access_key: str = Field(default=os.getenv("R2_SECRET_ACCESS_KEY", ""))
    r2_endpoint_url: str = Field(default=os.getenv("R2_ENDPOINT_URL", ""))
    r2_bucket: str = Field(default=os.getenv("R2_BUCKET", "moving-avatar"))
    r2_jobs_prefix: str = Field(default=os.getenv("R2_JOBS_PREFIX", "jobs/"))

    # HTTP
    cors_origins: str = Field(default=os.getenv("CORS_ORIGINS", "*"))
    debug: bool = Field(default=_env_bool("DEBUG", "false"))
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO").upper())

settings = Settings()
