"""Central environment-driven settings for the payment subsystem.

The process loads this once at startup. Gateway credentials and tuning knobs
are controlled by environment variables (see `.env.example`).
"""

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict


PLACEHOLDER_SECRET_KEYS = {
    "your-lipila-secret-key-here",
    "LPLSECK-1e60018354064c8bb933b19044c22170",
}


class GatewayConfig(BaseModel):
    """Explicit, immutable gateway configuration passed to clients by injection."""

    model_config = ConfigDict(frozen=True)

    secret_key: str
    base_url: str
    currency: str = "ZMW"
    mock_mode: bool = False
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    mobile_money_timeout_seconds: float = 45.0
    card_timeout_seconds: float = 30.0
    status_timeout_seconds: float = 30.0
    health_timeout_seconds: float = 10.0
    phone_country_code: str = "260"
    phone_national_length: int = 9
    public_base_url: str = "http://localhost:3000"


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "paygate"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./paygate.db"
    public_base_url: str = "http://localhost:3000"
    otel_exporter_otlp_endpoint: str | None = None
    lipila_secret_key: str = ""
    lipila_base_url: str = "https://lipila-prod.hobbiton.app"
    lipila_currency: str = "ZMW"
    lipila_mock_mode: bool = False
    gateway_max_retries: int = 3
    gateway_retry_delay_seconds: float = 2.0
    mobile_money_timeout_seconds: float = 45.0
    card_timeout_seconds: float = 30.0
    status_timeout_seconds: float = 30.0
    health_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 3.0
    poll_timeout_seconds: float = 300.0
    phone_country_code: str = "260"
    phone_national_length: int = 9
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def gateway_config(self) -> GatewayConfig:
        """Build the gateway config handed to `GatewayClient`/`PaymentOrchestrator`."""

        return GatewayConfig(
            secret_key=self.lipila_secret_key,
            base_url=self.lipila_base_url.rstrip("/"),
            currency=self.lipila_currency,
            mock_mode=self.lipila_mock_mode,
            max_retries=self.gateway_max_retries,
            retry_delay_seconds=self.gateway_retry_delay_seconds,
            mobile_money_timeout_seconds=self.mobile_money_timeout_seconds,
            card_timeout_seconds=self.card_timeout_seconds,
            status_timeout_seconds=self.status_timeout_seconds,
            health_timeout_seconds=self.health_timeout_seconds,
            phone_country_code=self.phone_country_code,
            phone_national_length=self.phone_national_length,
            public_base_url=self.public_base_url.rstrip("/"),
        )


settings = CommonSettings()
