import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application configuration from environment variables"""

    # App
    app_name: str = "Demo Followup"
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./demo_followup.db")

    # Sweep
    sweep_enabled: bool = os.getenv("SWEEP_ENABLED", "True").lower() == "true"
    sweep_interval_seconds: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))
    no_show_interval_seconds: int = int(os.getenv("NO_SHOW_INTERVAL_SECONDS", "300"))
    sweep_batch_size: int = int(os.getenv("SWEEP_BATCH_SIZE", "25"))
    claim_lease_seconds: int = int(os.getenv("CLAIM_LEASE_SECONDS", "300"))
    max_retries: int = int(os.getenv("MAX_RETRIES", "3"))
    cron_secret: str = os.getenv("CRON_SECRET", "")

    # No-show policy (0 disables the automatic NO_SHOW transition)
    no_show_grace_minutes: int = int(os.getenv("NO_SHOW_GRACE_MINUTES", "5"))
    no_show_mark_after_minutes: int = int(os.getenv("NO_SHOW_MARK_AFTER_MINUTES", "0"))

    # Sequence table override (JSON file)
    sequences_file: str = os.getenv("SEQUENCES_FILE", "")

    # Calendly
    calendly_webhook_secret: str = os.getenv("CALENDLY_WEBHOOK_SECRET", "")

    # Resend (email)
    resend_api_key: str = os.getenv("RESEND_API_KEY", "")
    email_from: str = os.getenv("EMAIL_FROM", "")
    email_reply_to: str = os.getenv("EMAIL_REPLY_TO", "")

    # Twilio (SMS)
    twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    twilio_phone_number: str = os.getenv("TWILIO_PHONE_NUMBER", "")

    # Message content
    product_name: str = os.getenv("PRODUCT_NAME", "Demo")
    sender_name: str = os.getenv("SENDER_NAME", "The Demo Team")
    reschedule_url: str = os.getenv("RESCHEDULE_URL", "")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
