from pydantic import BaseModel, Field


class ConfigCheckRequest(BaseModel):
    """Candidate service principal. Accepts snake_case or the dashboard's camelCase keys."""

    subscription_id: str | None = Field(default=None, alias="subscriptionId")
    tenant_id: str | None = Field(default=None, alias="tenantId")
    client_id: str | None = Field(default=None, alias="clientId")
    client_secret: str | None = Field(default=None, alias="clientSecret")
    resource_group: str | None = Field(default=None, alias="resourceGroup")
    region: str | None = None

    model_config = {"populate_by_name": True}


class ConfigCheckResponse(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None
    errors: dict[str, str] | None = None
