"""
Gateway Configuration Module

Provides centralized configuration management for the WhatsApp gateway.
"""

from .schema import (
    CodexConfig,
    GatewayConfig,
    HTTPConfig,
    OwnerConfig,
    ReplyConfig,
    WhatsAppConfig,
)
from .loader import apply_env_overrides, create_default_config, load_config, load_config_from_file

__all__ = [
    "GatewayConfig",
    "HTTPConfig",
    "WhatsAppConfig",
    "OwnerConfig",
    "ReplyConfig",
    "CodexConfig",
    "apply_env_overrides",
    "create_default_config",
    "load_config",
    "load_config_from_file",
]
