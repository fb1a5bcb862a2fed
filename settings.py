# settings.py
from pydantic import BaseModel, Field
from dotenv import load_dotenv
import os

# Load variables from .env at import time
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    # Runway web app account driven through the browser
    runway_email: str = Field(default=os.getenv("RUNWAY_EMAIL", ""))
    runway_password: str = Field(default=os.getenv("RUNWAY_PASSWORD", ""))
    runway_team: str = Field(default=os.getenv("RUNWAY_TEAM", ""))
    runway_app_url: str = Field(default=os.getenv("RUNWAY_APP_URL", "https://app.runwayml.com"))
    headless: bool = Field(default=_env_bool("HEADLESS", "true"))

    # API surface
    secret_key: str = Field(default=os.getenv("SECRET_KEY", ""))
    cors_origins: str = Field(default=os.getenv("CORS_ORIGINS", "*"))
    database_url: str = Field(default=os.getenv("DATABASE_URL", "sqlite:///./runway_jobs.db"))
    upload_dir: str = Field(default=os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads")))
    download_timeout_sec: float = Field(default=float(os.getenv("DOWNLOAD_TIMEOUT_SEC", "30")))
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    # Timing (seconds)
    step_timeout_sec: float = Field(default=float(os.getenv("STEP_TIMEOUT_SEC", "600")))
    poll_interval_sec: float = Field(default=float(os.getenv("POLL_INTERVAL_SEC", "5")))
    completion_ceiling_sec: float = Field(default=float(os.getenv("COMPLETION_CEILING_SEC", "1200")))
    queued_timeout_sec: float = Field(default=float(os.getenv("QUEUED_TIMEOUT_SEC", "300")))
    idle_threshold_sec: float = Field(default=float(os.getenv("IDLE_THRESHOLD_SEC", "300")))
    watchdog_interval_sec: float = Field(default=float(os.getenv("WATCHDOG_INTERVAL_SEC", "5")))
    crop_poll_interval_sec: float = Field(default=float(os.getenv("CROP_POLL_INTERVAL_SEC", "0.5")))
    crop_max_attempts: int = Field(default=int(os.getenv("CROP_MAX_ATTEMPTS", "2000")))
    retrigger_timeout_sec: float = Field(default=float(os.getenv("RETRIGGER_TIMEOUT_SEC", "10")))

    # Admin reset policy: close the browser too, or only drop the login state
    reset_close_session: bool = Field(default=_env_bool("RESET_CLOSE_SESSION"))

    @property
    def login_url(self) -> str:
        return f"{self.runway_app_url.rstrip('/')}/login"

    @property
    def tool_url(self) -> str:
        base = self.runway_app_url.rstrip("/")
        return f"{base}/video-tools/teams/{self.runway_team}/ai-tools/generative-video"


settings = Settings()
