from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    app_name: str = Field("expense-flow", alias="APP_NAME")
    app_env: str = Field("dev", alias="APP_ENV")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Persistence ("memory" for demo/tests, "sqlite" for single-instance deployments)
    storage_backend: str = Field("memory", alias="STORAGE_BACKEND")
    sqlite_path: str = Field("expense_flow.db", alias="SQLITE_PATH")

    # Push gateway (receives title/body/data per user id)
    push_gateway_url: str | None = Field(default=None, alias="PUSH_GATEWAY_URL")
    push_gateway_token: str | None = Field(default=None, alias="PUSH_GATEWAY_TOKEN")

    # Email API (template name + structured data)
    email_api_url: str | None = Field(default=None, alias="EMAIL_API_URL")
    email_api_key: str | None = Field(default=None, alias="EMAIL_API_KEY")
    email_from: str = Field("no-reply@expense-flow.local", alias="EMAIL_FROM")

    # Teams
    teams_webhook_url: str | None = Field(default=None, alias="TEAMS_WEBHOOK_URL")

    # API Base URL (for approval links in Teams cards)
    api_base_url: str = Field("http://127.0.0.1:8000", alias="API_BASE_URL")

    # CORS allowed origins (comma-separated list for production deployment)
    cors_origins: str = Field("http://localhost:3000,http://127.0.0.1:3000", alias="CORS_ORIGINS")

    # Notification queue
    notification_max_retries: int = Field(3, alias="NOTIFICATION_MAX_RETRIES")
    notification_retry_delays: str = Field("1,5,15", alias="NOTIFICATION_RETRY_DELAYS")  # seconds, comma-separated

    # Currency conversion (rates are units per 1 USD)
    exchange_rate_api_url: str | None = Field(default=None, alias="EXCHANGE_RATE_API_URL")
    default_usd_inr_rate: float = Field(83.0, alias="DEFAULT_USD_INR_RATE")
    static_exchange_rates: str = Field("USD:1,INR:83,EUR:0.92,GBP:0.79", alias="STATIC_EXCHANGE_RATES")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def retry_delays(self) -> tuple[float, ...]:
        return tuple(float(d) for d in self.notification_retry_delays.split(",") if d.strip())

    def exchange_rates(self) -> dict[str, float]:
        rates = {}
        for pair in self.static_exchange_rates.split(","):
            if ":" not in pair:
                continue
            code, value = pair.split(":", 1)
            rates[code.strip().upper()] = float(value)
        return rates

settings = Settings()
