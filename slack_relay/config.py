import os
from functools import lru_cache


class Settings:
  """Centralized configuration pulled from environment variables."""

  app_name: str = "Slack Relay Bridge"
  app_version: str = os.getenv("APP_VERSION", "0.0.1")

  slack_signing_secret: str
  slack_bot_token: str
  slack_bot_user_id: str

  task_api_url: str

  supabase_url: str | None
  supabase_service_role: str | None
  error_logging_enabled: bool

  def __init__(self) -> None:
    self.slack_signing_secret = os.getenv("SLACK_SIGNING_SECRET", "").strip()
    self.slack_bot_token = os.getenv("SLACK_BOT_TOKEN", "").strip()
    self.slack_bot_user_id = os.getenv("SLACK_BOT_USER_ID", "").strip()

    # local task API by default; the bridge only needs /message and /state
    self.task_api_url = os.getenv("TASK_API_URL", "http://localhost:8000").rstrip("/")

    self.supabase_url = os.getenv("SUPABASE_URL")
    self.supabase_service_role = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv(
        "SUPABASE_SERVICE_ROLE"
    )

    self.error_logging_enabled = os.getenv("ENABLE_ERROR_LOGGING", "0") == "1"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  return Settings()


settings = get_settings()
