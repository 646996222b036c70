from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "autopay"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/autopay.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Payment gateway
    gateway_base_url: str = "https://api-preprod.phonepe.com/apis/pg-sandbox"
    gateway_client_id: str = ""
    gateway_client_secret: str = ""
    gateway_client_version: str = "1"  # "1" for sandbox/UAT
    gateway_timeout_seconds: float = 30.0
    gateway_token_refresh_skew_seconds: int = 60
    gateway_token_default_ttl_seconds: int = 3600

    # Webhook authentication
    webhook_username: str = ""
    webhook_password: str = ""
    # Accept unauthenticated webhooks while credentials are not provisioned.
    webhook_allow_unauthenticated: bool = False

    # Reconciliation
    reconcile_max_concurrency: int = 2
    reconcile_debounce_seconds: float = 5.0

    # Mandate setup
    setup_order_ttl_seconds: int = 600  # 10 minutes
    subscription_validity_days: int = 5 * 365
    setup_target_app: str = "com.phonepe.app"

    # Redemption
    redemption_notify_ttl_hours: int = 48
    verify_subscription_before_execute: bool = True

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"


settings = Settings()
