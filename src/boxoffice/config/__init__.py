"""Configuration — marketplace parameters and logging setup."""

from boxoffice.config.logging import configure_logging
from boxoffice.config.resolver import DEFAULT_CONFIG_DIR, MarketplaceConfig

__all__ = ["DEFAULT_CONFIG_DIR", "MarketplaceConfig", "configure_logging"]
