"""
Credential validation. Malformed service principal settings are rejected here,
before any token exchange or data fetch is attempted.
"""
import re

from costpulse.models import AzureCredentials

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)
RESOURCE_GROUP_RE = re.compile(r"^[a-zA-Z0-9._()-]+$")

SUPPORTED_REGIONS = (
    "westeurope", "northeurope", "eastus", "westus", "eastus2", "westus2",
    "centralus", "southcentralus", "westcentralus", "northcentralus",
    "canadacentral", "canadaeast", "brazilsouth", "southafricanorth",
    "eastasia", "southeastasia", "japaneast", "japanwest",
    "australiaeast", "australiasoutheast", "centralindia", "southindia",
    "westindia", "koreacentral", "koreasouth",
)

REQUIRED_FIELDS = ("subscription_id", "tenant_id", "client_id", "client_secret", "resource_group", "region")


class ConfigError(ValueError):
    """Invalid or incomplete credentials. Carries one message per offending field."""

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        super().__init__("Invalid configuration: " + ", ".join(f"{k}: {v}" for k, v in errors.items()))


def is_valid_uuid(value: str) -> bool:
    return bool(UUID_RE.match(value))


def is_valid_client_secret(value: str) -> bool:
    return 32 <= len(value) <= 255


def is_valid_resource_group(name: str) -> bool:
    return 1 <= len(name) <= 90 and bool(RESOURCE_GROUP_RE.match(name)) and not name.endswith(".")


def is_valid_region(region: str) -> bool:
    return region.lower() in SUPPORTED_REGIONS


def validate_credentials(data: dict) -> AzureCredentials:
    """Check a candidate credential set and return it as AzureCredentials.

    Raises:
        ConfigError: listing every missing or malformed field.
    """
    errors: dict[str, str] = {}
    values = {name: str(data.get(name) or "").strip() for name in REQUIRED_FIELDS}

    for name, value in values.items():
        if not value:
            errors[name] = "required"

    for name in ("subscription_id", "tenant_id", "client_id"):
        if name not in errors and not is_valid_uuid(values[name]):
            errors[name] = "must be a UUID"

    if "client_secret" not in errors and not is_valid_client_secret(values["client_secret"]):
        errors["client_secret"] = "must be 32-255 characters"

    if "resource_group" not in errors and not is_valid_resource_group(values["resource_group"]):
        errors["resource_group"] = "invalid resource group name"

    if "region" not in errors and not is_valid_region(values["region"]):
        errors["region"] = "unsupported region"

    if errors:
        raise ConfigError(errors)

    values["region"] = values["region"].lower()
    return AzureCredentials(**values)
