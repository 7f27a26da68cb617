"""Configuration loader with environment variable support."""
import os
import re
from typing import Any, Dict, Optional
from pathlib import Path
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Overrides and secrets read from the environment or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: Optional[str] = None
    rpc_url: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_api_url: Optional[str] = None
    factory_address: Optional[str] = None
    router_address: Optional[str] = None
    private_key: Optional[str] = None


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in config values."""
    if isinstance(value, str):
        # Replace ${VAR_NAME} with environment variable value
        pattern = r'\$\{([^}]+)\}'
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.getenv(var_name, '')
            value = value.replace(f'${{{var_name}}}', env_value)
        return value
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


def load_config(config_path: str = "config.yaml", settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable expansion.

    Args:
        config_path: Path to config.yaml file
        settings: Environment overrides (read from the process and .env when omitted)

    Returns:
        Configuration dictionary
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, 'r') as f:
        config = yaml.safe_load(f) or {}

    # Expand environment variables
    config = _expand_env_vars(config)

    # Apply environment variable overrides
    settings = settings or Settings()

    if log_level := settings.log_level:
        config.setdefault("logging", {})["level"] = log_level

    if rpc_url := settings.rpc_url:
        config.setdefault("rpc", {})["url"] = rpc_url

    if api_key := settings.openai_api_key:
        config.setdefault("completion", {})["api_key"] = api_key

    if api_url := settings.openai_api_url:
        config.setdefault("completion", {})["api_url"] = api_url

    if factory := settings.factory_address:
        config.setdefault("contracts", {})["factory"] = factory

    if router := settings.router_address:
        config.setdefault("contracts", {})["router"] = router

    if private_key := settings.private_key:
        config.setdefault("signer", {})["private_key"] = private_key

    return config
