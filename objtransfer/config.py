"""Configuration loading for objtransfer.

Supports two configuration sources:
1. Environment variables (for CI/CD) - takes priority
2. config.json file (for local development)

Environment Variable Format:
    PROVIDER_{KEY}=Name|Endpoint|Region|Style
    {KEY}_ACCESS_KEY=xxx
    {KEY}_SECRET_KEY=xxx
    {KEY}_NAMESPACE=xxx          (optional)
    {KEY}_COMPARTMENT_ID=xxx     (optional)

    TRANSFER_PART_SIZE, TRANSFER_STREAM_PART_SIZE, TRANSFER_MAX_WORKERS,
    TRANSFER_RETRY_MAX_ATTEMPTS, TRANSFER_RETRY_DELAYS (comma separated)

Example:
    PROVIDER_OCI=Oracle Cloud|https://{namespace}.compat.objectstorage.us-ashburn-1.oraclecloud.com|us-ashburn-1|path
    OCI_ACCESS_KEY=your-access-key
    OCI_SECRET_KEY=your-secret-key
    OCI_NAMESPACE=your-namespace

JSON Format:
    {
        "providers": {"oci": {"provider_name": ..., "endpoint_url": ..., ...}},
        "transfer": {"part_size": 134217728, "max_workers": 5, ...}
    }
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

from objtransfer.errors import ConfigurationError
from objtransfer.models import ProviderConfig, RetryPolicy, TransferConfig

# Required fields for a provider configuration
REQUIRED_FIELDS = [
    "provider_name",
    "endpoint_url",
    "aws_access_key_id",
    "aws_secret_access_key",
    "region_name",
]

TRANSFER_INT_FIELDS = ["part_size", "stream_part_size", "min_part_size", "max_workers"]

TRANSFER_ENV_VARS = {
    "TRANSFER_PART_SIZE": "part_size",
    "TRANSFER_STREAM_PART_SIZE": "stream_part_size",
    "TRANSFER_MAX_WORKERS": "max_workers",
    "TRANSFER_RETRY_MAX_ATTEMPTS": "retry_max_attempts",
    "TRANSFER_RETRY_DELAYS": "retry_delays",
}


def _read_json(config_path: str) -> dict[str, Any]:
    path = Path(config_path)

    if not path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError("Config file must contain a JSON object")
    return data


def load_from_json(config_path: str) -> dict[str, ProviderConfig]:
    """Load provider configurations from a JSON file.

    Args:
        config_path: Path to the config.json file.

    Returns:
        Dictionary mapping provider keys to ProviderConfig objects.
        Only enabled providers are included.

    Raises:
        ConfigurationError: If file doesn't exist, contains invalid JSON,
                            or is missing required fields.
    """
    data = _read_json(config_path)
    providers: dict[str, ProviderConfig] = {}

    for key, config in data.get("providers", {}).items():
        # Skip disabled providers
        if not config.get("enabled", True):
            continue

        for field in REQUIRED_FIELDS:
            if field not in config:
                raise ConfigurationError(
                    f"Missing required field '{field}' for provider '{key}'"
                )

        providers[key] = ProviderConfig(
            key=key,
            provider_name=config["provider_name"],
            endpoint_url=config["endpoint_url"],
            aws_access_key_id=config["aws_access_key_id"],
            aws_secret_access_key=config["aws_secret_access_key"],
            region_name=config["region_name"],
            namespace=config.get("namespace"),
            compartment_id=config.get("compartment_id"),
            addressing_style=config.get("addressing_style", "path"),
            presigned_parts=bool(config.get("presigned_parts", False)),
            enabled=True,
        )

    return providers


def load_from_env() -> dict[str, ProviderConfig]:
    """Load provider configurations from environment variables.

    Discovers providers by looking for PROVIDER_* environment variables.
    For each provider, expects corresponding credential variables.

    Returns:
        Dictionary mapping provider keys to ProviderConfig objects.

    Raises:
        ConfigurationError: If environment variables are malformed or
                            required credential variables are missing.
    """
    providers: dict[str, ProviderConfig] = {}

    for env_key, env_value in os.environ.items():
        if not env_key.startswith("PROVIDER_"):
            continue

        # Extract provider key (e.g., "PROVIDER_OCI" -> "OCI")
        provider_key = env_key[len("PROVIDER_"):]

        # Parse pipe-delimited value: Name|Endpoint|Region|Style
        parts = env_value.split("|")
        if len(parts) != 4:
            raise ConfigurationError(
                f"Invalid format for {env_key}. Expected: Name|Endpoint|Region|Style"
            )

        name, endpoint, region, style = parts

        access_key_var = f"{provider_key}_ACCESS_KEY"
        secret_key_var = f"{provider_key}_SECRET_KEY"

        access_key = os.environ.get(access_key_var)
        if not access_key:
            raise ConfigurationError(f"Missing environment variable: {access_key_var}")

        secret_key = os.environ.get(secret_key_var)
        if not secret_key:
            raise ConfigurationError(f"Missing environment variable: {secret_key_var}")

        providers[provider_key] = ProviderConfig(
            key=provider_key,
            provider_name=name,
            endpoint_url=endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            namespace=os.environ.get(f"{provider_key}_NAMESPACE") or None,
            compartment_id=os.environ.get(f"{provider_key}_COMPARTMENT_ID") or None,
            addressing_style=style,
            enabled=True,
        )

    return providers


def has_env_providers() -> bool:
    """Check if any PROVIDER_* environment variables exist."""
    return any(key.startswith("PROVIDER_") for key in os.environ)


def load_providers(
    config_path: str = "config.json",
) -> dict[str, ProviderConfig]:
    """Load provider configurations with environment priority.

    Priority order:
    1. Environment variables (if any PROVIDER_* vars exist)
    2. config.json file

    Raises:
        ConfigurationError: If no providers are configured or all are disabled.
    """
    providers: dict[str, ProviderConfig] = {}

    if has_env_providers():
        providers = load_from_env()
    elif Path(config_path).exists():
        providers = load_from_json(config_path)

    if not providers:
        raise ConfigurationError(
            "No providers configured. Set PROVIDER_* environment variables "
            "or create a config.json file with at least one enabled provider."
        )

    return providers


def _parse_int(name: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid integer for {name}: {value!r}") from e
    if number < 1:
        raise ConfigurationError(f"{name} must be positive, got {number}")
    return number


def _parse_delays(name: str, value: Any) -> tuple[float, ...]:
    if isinstance(value, str):
        value = [v for v in value.split(",") if v.strip()]
    try:
        delays = tuple(float(v) for v in value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid delays for {name}: {value!r}") from e
    if any(d < 0 for d in delays):
        raise ConfigurationError(f"{name} must not contain negative delays")
    return delays


def build_transfer_config(settings: dict[str, Any]) -> TransferConfig:
    """Build a TransferConfig from a flat settings dictionary.

    Raises:
        ConfigurationError: If a value is malformed.
    """
    config = TransferConfig()
    for field in TRANSFER_INT_FIELDS:
        if settings.get(field) is not None:
            setattr(config, field, _parse_int(field, settings[field]))

    retry = config.retry
    if settings.get("retry_max_attempts") is not None:
        retry = RetryPolicy(
            max_attempts=_parse_int("retry_max_attempts", settings["retry_max_attempts"]),
            delays=retry.delays,
        )
    if settings.get("retry_delays") is not None:
        retry = RetryPolicy(
            max_attempts=retry.max_attempts,
            delays=_parse_delays("retry_delays", settings["retry_delays"]),
        )
    config.retry = retry
    return config


def load_transfer_config(config_path: Optional[str] = None) -> TransferConfig:
    """Load transfer settings from the JSON "transfer" section and env overrides.

    Environment variables (TRANSFER_*) win over the JSON file.
    """
    settings: dict[str, Any] = {}

    if config_path and Path(config_path).exists():
        settings.update(_read_json(config_path).get("transfer", {}))

    for env_var, field in TRANSFER_ENV_VARS.items():
        value = os.environ.get(env_var)
        if value:
            settings[field] = value

    return build_transfer_config(settings)
