from pydantic_settings import BaseSettings

from costpulse.models import AzureCredentials


class Settings(BaseSettings):
    # Azure service principal
    azure_subscription_id: str | None = None
    azure_tenant_id: str | None = None
    azure_client_id: str | None = None
    azure_client_secret: str | None = None
    azure_resource_group: str | None = None
    azure_region: str = "westeurope"

    # External endpoints
    retail_prices_url: str = "https://prices.azure.com/api/retail/prices"
    cost_management_url: str = "https://management.azure.com"
    login_url: str = "https://login.microsoftonline.com"
    exchange_rate_url: str = "https://api.exchangerate-api.com/v4/latest/USD"

    # Scheduling
    refresh_interval_seconds: int = 30
    exchange_rate_interval_seconds: int = 300  # 5 minutes
    snapshot_max_age_seconds: int = 300  # pull path rebuilds past this age
    initial_refresh_delay_seconds: float = 1.0

    # I/O bounds
    request_timeout_seconds: float = 15.0
    broadcast_send_timeout_seconds: float = 5.0
    pricing_max_pages: int = 5

    # Token cache: renew once this fraction of the lifetime remains
    token_safety_margin_ratio: float = 0.1

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    def credentials(self) -> AzureCredentials | None:
        """Return the configured service principal, or None if any field is missing."""
        values = {
            "subscription_id": self.azure_subscription_id,
            "tenant_id": self.azure_tenant_id,
            "client_id": self.azure_client_id,
            "client_secret": self.azure_client_secret,
            "resource_group": self.azure_resource_group,
        }
        if not all(values.values()):
            return None
        return AzureCredentials(region=self.azure_region, **values)


settings = Settings()
