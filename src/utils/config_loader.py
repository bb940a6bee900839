"""
Configuration loader for the checkout fee service
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ValidationError
import logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "checkout_config.yml"


class UpstreamConfig(BaseModel):
    """Upstream commerce API connection settings"""

    api_base_url: str = "https://api.bigcommerce.com"
    store_hash: str = ""
    access_token: str = Field(default="", repr=False)
    timeout_seconds: float = Field(default=15.0, gt=0.0, le=120.0)

    @property
    def configured(self) -> bool:
        return bool(self.store_hash and self.access_token)


class FeeConfig(BaseModel):
    """Shipping insurance fee definition"""

    name: str = "Shipping Insurance"
    display_name: str = "Shipping Insurance"
    type: str = "custom_fee"
    source: str = "AA"
    rate: float = Field(default=0.04, gt=0.0, lt=1.0)
    tax_class_id: Optional[int] = None


class RemovalConfig(BaseModel):
    """Fee removal strategy tuning"""

    settle_delay_seconds: float = Field(default=2.0, ge=0.0)
    verify_attempts: int = Field(default=5, ge=1, le=10)
    verify_backoff_seconds: float = Field(default=2.0, ge=0.0)
    minimized_cost: float = Field(default=0.01, ge=0.0)
    reject_empty_fee_collection: bool = True
    strict_http_status: bool = False


class ServerConfig(BaseModel):
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class CheckoutServiceConfig(BaseModel):
    """Complete service configuration"""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    fee: FeeConfig = Field(default_factory=FeeConfig)
    removal: RemovalConfig = Field(default_factory=RemovalConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


def _env_overrides() -> Dict[str, Dict[str, Any]]:
    overrides: Dict[str, Dict[str, Any]] = {"upstream": {}, "server": {}}
    if os.getenv("BIGCOMMERCE_STORE_HASH"):
        overrides["upstream"]["store_hash"] = os.environ["BIGCOMMERCE_STORE_HASH"].strip()
    if os.getenv("BIGCOMMERCE_ACCESS_TOKEN"):
        overrides["upstream"]["access_token"] = os.environ["BIGCOMMERCE_ACCESS_TOKEN"].strip()
    if os.getenv("BIGCOMMERCE_API_BASE_URL"):
        overrides["upstream"]["api_base_url"] = os.environ["BIGCOMMERCE_API_BASE_URL"].strip()

    origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "").split(",") if o.strip()]
    if origins:
        overrides["server"]["allowed_origins"] = origins
    return overrides


def load_checkout_config(config_path: Optional[Path] = None) -> CheckoutServiceConfig:
    """
    Load and validate service configuration from YAML file plus environment

    Args:
        config_path: Path to config file. Defaults to $CHECKOUT_CONFIG_PATH or
            config/checkout_config.yml. A missing default file means "all defaults".

    Returns:
        Validated CheckoutServiceConfig object

    Raises:
        FileNotFoundError: If an explicitly requested config file doesn't exist
        ValidationError: If config doesn't match schema
    """
    explicit = config_path is not None or bool(os.getenv("CHECKOUT_CONFIG_PATH"))
    if config_path is None:
        config_path = Path(os.getenv("CHECKOUT_CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        logger.info("No config file at %s; using defaults", config_path)

    for section, values in _env_overrides().items():
        if values:
            data.setdefault(section, {})
            data[section] = {**(data[section] or {}), **values}

    try:
        config = CheckoutServiceConfig(**data)
        logger.info(f"Successfully loaded config from {config_path}")
        return config
    except ValidationError as e:
        logger.error(f"Config validation failed: {e}")
        raise
