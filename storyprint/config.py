from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "local"
    log_level: str = "INFO"

    postgres_user: Optional[str] = None
    postgres_password: str = ""
    postgres_db: str = "storyprint"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"
    database_url_override: Optional[str] = None

    secret_key: str = "dev-secret-key"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    base_url: str = "http://127.0.0.1:8000"
    web_url: str = "http://127.0.0.1:5173"

    # Print provider (Lulu-style REST API)
    provider_base_url: str = "https://api.sandbox.lulu.com/"
    provider_auth_url: str = (
        "https://api.sandbox.lulu.com/auth/realms/glasstree/protocol/openid-connect/token"
    )
    provider_client_key: str = ""
    provider_client_secret: str = ""
    provider_pod_package_id: str = "0850X0850FCPRESS080CW444GXX"
    provider_webhook_secret: str = ""
    provider_webhook_url: Optional[str] = None
    provider_webhook_topics: List[str] = ["PRINT_JOB_STATUS_CHANGED"]

    provider_timeout_seconds: float = 30.0
    provider_max_attempts: int = 3
    provider_retry_backoff_seconds: float = 1.0

    # Pricing
    print_markup_percentage: Decimal = Decimal("100")
    shipping_markup_percentage: Decimal = Decimal("5")
    credit_value: Decimal = Decimal("0.01")
    max_print_quantity: int = 100

    # Artifact generation
    artifact_service_url: str = "http://127.0.0.1:9000"
    artifact_timeout_seconds: float = 300.0

    # Webhook lifecycle
    webhook_monitor_enabled: bool = False
    webhook_health_check_interval_seconds: int = 30 * 60
    webhook_burst_check_interval_seconds: int = 60 * 60
    webhook_registration_attempts: int = 3
    webhook_registration_retry_delay_seconds: float = 5.0
    webhook_failure_warning_threshold: int = 3
    webhook_reactivation_threshold: int = 4
    webhook_burst_failure_threshold: int = 3

    # Alerts
    alert_cooldown_seconds: int = 60 * 60
    alert_email: Optional[str] = None

    # Payments
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""

    # Email
    BREVO_API_KEY: str = ""
    MAIL_FROM: str = "no-reply@storyprint.local"
    STORE_NAME: str = "StoryPrint"
    ADMIN_EMAILS: List[str] = []

    @property
    def database_url(self):
        if self.postgres_user:
            encoded_password = quote_plus(self.postgres_password)
            return (
                f"postgresql+psycopg2://{self.postgres_user}:"
                f"{encoded_password}@{self.postgres_host}:"
                f"{self.postgres_port}/{self.postgres_db}"
            )
        if self.database_url_override:
            return self.database_url_override
        return "sqlite:///./storyprint.db"

    @property
    def webhook_url(self):
        return (
            self.provider_webhook_url
            or f"{self.base_url.rstrip('/')}/webhooks/provider/print-job-status"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
