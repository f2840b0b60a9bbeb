"""
Gateway Configuration Loader

Loads configuration from YAML files with environment variable interpolation,
then applies the flat environment overrides (PORT, REPLY_MODE, ...).

Environment Variable Interpolation:
- ${VAR_NAME} - Required variable, raises error if not set
- ${VAR_NAME:-default} - Optional variable with default value

Example:
```yaml
http:
  admin_token: "${GATEWAY_ADMIN_TOKEN:-}"
reply:
  mode: webhook
  webhook_url: "${WEBHOOK_URL:-http://localhost:9000/reply}"
```
"""

import os
import re
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union
import logging

import yaml

from ..core.errors import ConfigError
from .schema import LOG_LEVELS, REPLY_MODES, GatewayConfig

logger = logging.getLogger(__name__)

# Pattern for environment variable substitution: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r'\$\{([^}:]+)(?::-([^}]*))?\}')

CONFIG_FILENAME = "gateway.yaml"

TRUE_VALUES = ("1", "true", "yes", "y", "on")
FALSE_VALUES = ("0", "false", "no", "n", "off")


def interpolate_env_vars(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """
    Recursively interpolate environment variables in configuration values.

    Supports:
    - ${VAR_NAME} - Required, raises ConfigError if not set
    - ${VAR_NAME:-default} - Optional with default value
    """
    env = os.environ if environ is None else environ

    if isinstance(value, str):
        def replace_env_var(match):
            var_name = match.group(1)
            default_value = match.group(2)

            env_value = env.get(var_name)

            if env_value is not None:
                return env_value
            elif default_value is not None:
                return default_value
            else:
                raise ConfigError(
                    f"Environment variable '{var_name}' is required but not set. "
                    f"Set it or provide a default: ${{{var_name}:-default}}"
                )

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v, env) for k, v in value.items()}

    elif isinstance(value, list):
        return [interpolate_env_vars(item, env) for item in value]

    else:
        return value


# =============================================================================
# VALUE PARSERS (invalid input falls back to the default)
# =============================================================================

def parse_port(value: Optional[str], fallback: int) -> int:
    if not value:
        return fallback
    try:
        parsed = int(value.strip())
    except ValueError:
        return fallback
    if parsed <= 0 or parsed > 65535:
        return fallback
    return parsed


def parse_int(value: Optional[str], fallback: int) -> int:
    if not value:
        return fallback
    try:
        parsed = int(value.strip())
    except ValueError:
        return fallback
    return parsed if parsed > 0 else fallback


def parse_bool(value: Optional[str], fallback: bool) -> bool:
    if not value:
        return fallback
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    return fallback


def parse_log_level(value: Optional[str], fallback: str) -> str:
    normalized = (value or "").strip().lower()
    return normalized if normalized in LOG_LEVELS else fallback


def parse_reply_mode(value: Optional[str], fallback: str) -> str:
    normalized = (value or "").strip().lower()
    return normalized if normalized in REPLY_MODES else fallback


def parse_list(value: Optional[str]) -> List[str]:
    """Comma-separated list; blanks dropped."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def apply_env_overrides(
    config: GatewayConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> GatewayConfig:
    """
    Apply environment variable overrides on top of a loaded config.

    Mutates and returns the config.
    """
    env = os.environ if environ is None else environ

    config.http.port = parse_port(env.get("PORT"), config.http.port)
    config.http.host = _clean(env.get("HOST")) or config.http.host
    if "GATEWAY_ADMIN_TOKEN" in env:
        config.http.admin_token = _clean(env.get("GATEWAY_ADMIN_TOKEN"))

    config.log_level = parse_log_level(env.get("LOG_LEVEL"), parse_log_level(config.log_level, "info"))
    config.enable_cli = parse_bool(env.get("ENABLE_CLI"), config.enable_cli)

    auth_state_dir = _clean(env.get("AUTH_STATE_DIR"))
    if auth_state_dir:
        config.whatsapp.auth_state_dir = Path(auth_state_dir)
    config.whatsapp.allow_groups = parse_bool(env.get("ALLOW_GROUPS"), config.whatsapp.allow_groups)
    config.whatsapp.max_inbound_chars = parse_int(
        env.get("MAX_INBOUND_CHARS"), config.whatsapp.max_inbound_chars
    )
    config.whatsapp.bridge_http_url = _clean(env.get("BRIDGE_HTTP_URL")) or config.whatsapp.bridge_http_url
    config.whatsapp.bridge_ws_url = _clean(env.get("BRIDGE_WS_URL")) or config.whatsapp.bridge_ws_url

    owner_numbers = parse_list(env.get("OWNER_NUMBERS"))
    if owner_numbers:
        config.owners.numbers = owner_numbers
    owner_jids = parse_list(env.get("OWNER_JIDS"))
    if owner_jids:
        config.owners.jids = owner_jids
    config.owners.pairing_code = _clean(env.get("PAIRING_CODE")) or config.owners.pairing_code

    config.reply.mode = parse_reply_mode(env.get("REPLY_MODE"), parse_reply_mode(config.reply.mode, "echo"))
    config.reply.webhook_url = _clean(env.get("WEBHOOK_URL")) or config.reply.webhook_url
    config.reply.max_reply_chars = parse_int(env.get("MAX_REPLY_CHARS"), config.reply.max_reply_chars)

    config.codex.bin = _clean(env.get("CODEX_BIN")) or config.codex.bin
    config.codex.workdir = _clean(env.get("CODEX_WORKDIR")) or config.codex.workdir
    config.codex.sandbox = _clean(env.get("CODEX_SANDBOX")) or config.codex.sandbox
    config.codex.model = _clean(env.get("CODEX_MODEL")) or config.codex.model
    config.codex.timeout_ms = parse_int(env.get("CODEX_TIMEOUT_MS"), config.codex.timeout_ms)

    return config


def load_config_from_file(
    config_path: Union[str, Path],
    interpolate: bool = True,
    environ: Optional[Mapping[str, str]] = None,
) -> GatewayConfig:
    """
    Load gateway configuration from a YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigError: If a required environment variable is not set or the
            file is not a YAML mapping
        yaml.YAMLError: If YAML is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f)

    if raw_config is None:
        raw_config = {}

    if not isinstance(raw_config, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {config_path}")

    # Interpolate environment variables
    if interpolate:
        try:
            raw_config = interpolate_env_vars(raw_config, environ)
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            raise

    # Set working directory to config file's directory if not specified
    if "working_dir" not in raw_config:
        raw_config["working_dir"] = str(config_path.parent.absolute())

    return GatewayConfig.from_dict(raw_config)


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    working_dir: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> GatewayConfig:
    """
    Load gateway configuration with sensible defaults.

    Search order for configuration:
    1. Explicit config_path if provided
    2. gateway.yaml (or config/gateway.yaml) in working_dir
    3. gateway.yaml (or config/gateway.yaml) in current directory
    4. Default configuration

    Environment overrides are applied last in every case.
    """
    if config_path:
        config = load_config_from_file(config_path, environ=environ)
        return apply_env_overrides(config, environ)

    search_paths = []

    if working_dir:
        working_dir = Path(working_dir)
        search_paths.append(working_dir / CONFIG_FILENAME)
        search_paths.append(working_dir / "config" / CONFIG_FILENAME)

    cwd = Path.cwd()
    search_paths.append(cwd / CONFIG_FILENAME)
    search_paths.append(cwd / "config" / CONFIG_FILENAME)

    for path in search_paths:
        if path.exists():
            logger.info(f"Found configuration at {path}")
            return apply_env_overrides(load_config_from_file(path, environ=environ), environ)

    logger.info(f"No {CONFIG_FILENAME} found, using default configuration")
    config = GatewayConfig(working_dir=Path(working_dir) if working_dir else cwd)
    return apply_env_overrides(config, environ)


def create_default_config(output_path: Optional[Union[str, Path]] = None) -> Path:
    """
    Create a default gateway.yaml configuration file.

    Returns:
        Path to created configuration file
    """
    output_path = Path(output_path) if output_path else Path(CONFIG_FILENAME)

    default_config = """# WhatsApp Gateway Configuration
# Environment variables can be used: ${VAR_NAME} or ${VAR_NAME:-default}

log_level: info
enable_cli: true

http:
  host: 127.0.0.1
  port: 8080
  # Required when host is not loopback
  admin_token: "${GATEWAY_ADMIN_TOKEN:-}"
  rate_limit_per_minute: 120

whatsapp:
  auth_state_dir: ./auth_state
  bridge_http_url: http://localhost:3000
  bridge_ws_url: ws://localhost:3001
  allow_groups: false
  max_inbound_chars: 4000

# Pre-configured owners skip the PAIR handshake
owners:
  numbers: []
  jids: []

reply:
  mode: echo            # echo | webhook | codex
  # webhook_url: "${WEBHOOK_URL}"
  max_reply_chars: 3500

codex:
  bin: codex
  workdir: .
  sandbox: read-only
  timeout_ms: 120000
"""

    with open(output_path, 'w') as f:
        f.write(default_config)

    logger.info(f"Created default configuration at {output_path}")
    return output_path
