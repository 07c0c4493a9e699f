from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Postgres connection string used by the pool
    DATABASE_URL: str = ""

    # Public frontend, used for deal links in emails
    FRONTEND_URL: str = "http://localhost:3000"

    # Brevo transactional email settings
    BREVO_API_KEY: str | None = None
    BREVO_SENDER_EMAIL: str | None = None
    BREVO_SENDER_NAME: str = "New Mexico Grocers Association"

    # Twilio SMS settings
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_PHONE_NUMBER: str | None = None

    # =================================================================
    # FEATURE TOGGLES
    # =================================================================
    EMAIL_ENABLED: bool = True
    SMS_ENABLED: bool = False
    DEAL_EXPIRATION_ENABLED: bool = True
    # Run the expiration scheduler inside the API process instead of a worker
    DEAL_EXPIRATION_RUN_IN_APP: bool = False

    # =================================================================
    # DEAL EXPIRATION SWEEP SETTINGS
    # =================================================================
    DEAL_EXPIRATION_INTERVAL_MINUTES: int = 15
    DEAL_EXPIRATION_MAX_RUN_MINUTES: int = 10
    MEMBER_LOAD_TIMEOUT_SECONDS: float = 5.0
    NOTIFICATION_SEND_TIMEOUT_SECONDS: float = 20.0
    MAX_DEALS_PER_EMAIL: int = 5
    MAX_SMS_PER_MEMBER: int = 3

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 8
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def frontend_base_url(self) -> str:
        return self.FRONTEND_URL.rstrip("/")

    def twilio_configured(self) -> bool:
        return bool(self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_PHONE_NUMBER)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update(
                {
                    "min_size": min(self.DB_POOL_MIN_SIZE, 2),
                    "max_size": min(self.DB_POOL_MAX_SIZE, 5),
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
