from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from typing import Optional
import os
import logging

logger = logging.getLogger(__name__)


def get_env_file() -> Optional[str]:
    """
    Determine which .env file to use based on APP_ENV environment variable.

    Available environments:
    - local: Development/testing environment (.env.local)
    - prod: Production environment (.env.prod)

    APP_ENV defaults to 'local'. A missing file is not fatal: values then come
    from the process environment only (the serverless hosts inject them there).

    :return: Path to the .env file to load, or None
    """
    app_env = os.getenv("APP_ENV", "local").lower().strip() or "local"

    valid_envs = ["local", "prod"]
    if app_env not in valid_envs:
        logger.warning(
            f"Invalid APP_ENV value: '{app_env}' (valid: {', '.join(valid_envs)}). "
            "Falling back to process environment only."
        )
        return None

    env_file = f".env.{app_env}"
    if not os.path.exists(env_file):
        logger.info(f"{env_file} not found, reading configuration from environment (APP_ENV={app_env})")
        return None

    logger.info(f"✓ Loading configuration from {env_file} (APP_ENV={app_env})")
    return env_file


def mask_api_key(api_key: Optional[str], visible: int = 4) -> str:
    """
    Render an API key for the startup log.

    Keys too short to reveal a suffix safely are hidden entirely; the mask has
    a fixed width so the log does not leak the key length.
    """
    if not api_key:
        return "[NOT SET]"
    if len(api_key) <= visible * 2:
        return "****"
    return f"****{api_key[-visible:]}"


def mask_database_url(database_url: str) -> str:
    """Database URL with the password replaced by ***"""
    try:
        return make_url(database_url).render_as_string(hide_password=True)
    except ArgumentError:
        return "[INVALID URL]"


class Settings(BaseSettings):
    # Database (Supabase Postgres in production)
    DATABASE_URL: str = "sqlite:///./konver.db"

    # API
    API_TITLE: str = "Konver Console API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Feedback matching, assistant chat relay and WhatsApp integration for Konver bots"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Assistant chat relay (N8N workflow engine)
    N8N_WEBHOOK_URL: Optional[str] = None
    ASSISTANT_CHAT_TIMEOUT: float = 280.0  # seconds, hard limit on the upstream call

    # Evolution API (WhatsApp gateway)
    EVOLUTION_API_URL: str = "http://localhost:8080"
    EVOLUTION_API_KEY: str = ""
    EVOLUTION_WEBHOOK_URL: str = "http://localhost:8000/whatsapp/webhook"
    EVOLUTION_TIMEOUT: float = 30.0

    # WhatsApp connection monitor timings (seconds)
    WHATSAPP_POLL_CONNECTING: float = 3.0
    WHATSAPP_POLL_CONNECTED: float = 30.0
    WHATSAPP_QR_TTL: float = 20.0
    WHATSAPP_QR_CHECK_INTERVAL: float = 5.0
    WHATSAPP_QR_MAX_FAILURES: int = 3

    model_config = SettingsConfigDict(env_file=get_env_file(), extra='ignore')

    def log_config_summary(self):
        """Log configuration summary with sensitive values masked."""
        current_env = os.getenv("APP_ENV", "local")

        logger.info("=" * 70)
        logger.info(f"Configuration Summary (Environment: {current_env})")
        logger.info("=" * 70)
        logger.info(f"Database URL: {mask_database_url(self.DATABASE_URL)}")
        logger.info(f"N8N Webhook URL: {self.N8N_WEBHOOK_URL or '[NOT SET]'}")
        logger.info(f"Assistant Chat Timeout: {self.ASSISTANT_CHAT_TIMEOUT}s")
        logger.info(f"Evolution API URL: {self.EVOLUTION_API_URL}")
        logger.info(f"Evolution API Key: {mask_api_key(self.EVOLUTION_API_KEY)}")
        logger.info("=" * 70)


# Initialize settings singleton
settings = Settings()
