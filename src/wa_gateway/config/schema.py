"""
Gateway Configuration Schema

Defines the configuration structure for the WhatsApp gateway.
All configuration can be specified via gateway.yaml or environment variables.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

REPLY_MODES = ("echo", "webhook", "codex")
LOG_LEVELS = ("fatal", "error", "warn", "info", "debug", "trace")


def _as_bool(value: Any, default: bool) -> bool:
    """YAML bool, or an interpolated string such as "true" / "off"."""
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("1", "true", "yes", "y", "on"):
            return True
        if normalized in ("", "0", "false", "no", "n", "off"):
            return False
        return default
    return bool(value)


@dataclass
class HTTPConfig:
    """Configuration for the HTTP control surface"""
    host: str = "127.0.0.1"
    port: int = 8080
    admin_token: Optional[str] = None
    rate_limit_per_minute: int = 120


@dataclass
class WhatsAppConfig:
    """Configuration for the WhatsApp connection"""
    auth_state_dir: Path = field(default_factory=lambda: Path("./auth_state"))
    bridge_http_url: str = "http://localhost:3000"
    bridge_ws_url: str = "ws://localhost:3001"
    allow_groups: bool = False
    max_inbound_chars: int = 4000


@dataclass
class OwnerConfig:
    """Statically configured owners (override persisted pairing state)"""
    numbers: List[str] = field(default_factory=list)
    jids: List[str] = field(default_factory=list)
    pairing_code: Optional[str] = None


@dataclass
class CodexConfig:
    """Configuration for the codex reply backend"""
    bin: str = "codex"
    workdir: str = "."
    sandbox: str = "read-only"
    model: Optional[str] = None
    timeout_ms: int = 120_000
    skip_git_repo_check: bool = True


@dataclass
class ReplyConfig:
    """Configuration for the reply backend"""
    mode: str = "echo"  # "echo", "webhook" or "codex"
    webhook_url: Optional[str] = None
    webhook_timeout_seconds: float = 25.0
    max_reply_chars: int = 3500


@dataclass
class GatewayConfig:
    """
    Central configuration for the gateway.

    Example gateway.yaml:
    ```yaml
    log_level: info
    enable_cli: true

    http:
      host: 127.0.0.1
      port: 8080
      admin_token: "${GATEWAY_ADMIN_TOKEN:-}"

    whatsapp:
      auth_state_dir: ./auth_state
      bridge_http_url: http://localhost:3000
      bridge_ws_url: ws://localhost:3001
      allow_groups: false

    owners:
      numbers: ["+1 862 520 6066"]

    reply:
      mode: webhook
      webhook_url: "${WEBHOOK_URL}"
    ```
    """
    log_level: str = "info"
    enable_cli: bool = True

    http: HTTPConfig = field(default_factory=HTTPConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    owners: OwnerConfig = field(default_factory=OwnerConfig)
    reply: ReplyConfig = field(default_factory=ReplyConfig)
    codex: CodexConfig = field(default_factory=CodexConfig)

    # Working directory (defaults to current directory)
    working_dir: Path = field(default_factory=Path.cwd)

    @property
    def auth_state_dir(self) -> Path:
        """auth_state_dir resolved against the working directory"""
        path = Path(self.whatsapp.auth_state_dir)
        return path if path.is_absolute() else self.working_dir / path

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GatewayConfig":
        """Create GatewayConfig from dictionary (e.g., parsed YAML)"""
        http_data = data.get("http") or {}
        http_config = HTTPConfig(
            host=str(http_data.get("host", "127.0.0.1")),
            port=int(http_data.get("port", 8080)),
            admin_token=http_data.get("admin_token") or None,
            rate_limit_per_minute=int(http_data.get("rate_limit_per_minute", 120)),
        )

        wa_data = data.get("whatsapp") or {}
        whatsapp_config = WhatsAppConfig(
            auth_state_dir=Path(wa_data.get("auth_state_dir", "./auth_state")),
            bridge_http_url=wa_data.get("bridge_http_url", "http://localhost:3000"),
            bridge_ws_url=wa_data.get("bridge_ws_url", "ws://localhost:3001"),
            allow_groups=_as_bool(wa_data.get("allow_groups"), False),
            max_inbound_chars=int(wa_data.get("max_inbound_chars", 4000)),
        )

        owners_data = data.get("owners") or {}
        pairing_code = owners_data.get("pairing_code")
        owner_config = OwnerConfig(
            numbers=[str(n) for n in owners_data.get("numbers") or []],
            jids=[str(j) for j in owners_data.get("jids") or []],
            pairing_code=str(pairing_code) if pairing_code else None,
        )

        reply_data = data.get("reply") or {}
        reply_config = ReplyConfig(
            mode=reply_data.get("mode", "echo"),
            webhook_url=reply_data.get("webhook_url") or None,
            webhook_timeout_seconds=float(reply_data.get("webhook_timeout_seconds", 25.0)),
            max_reply_chars=int(reply_data.get("max_reply_chars", 3500)),
        )

        codex_data = data.get("codex") or {}
        codex_config = CodexConfig(
            bin=codex_data.get("bin", "codex"),
            workdir=codex_data.get("workdir", "."),
            sandbox=codex_data.get("sandbox", "read-only"),
            model=codex_data.get("model") or None,
            timeout_ms=int(codex_data.get("timeout_ms", 120_000)),
            skip_git_repo_check=_as_bool(codex_data.get("skip_git_repo_check"), True),
        )

        return cls(
            log_level=data.get("log_level", "info"),
            enable_cli=_as_bool(data.get("enable_cli"), True),
            http=http_config,
            whatsapp=whatsapp_config,
            owners=owner_config,
            reply=reply_config,
            codex=codex_config,
            working_dir=Path(data.get("working_dir", ".")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (for serialization)"""
        return {
            "log_level": self.log_level,
            "enable_cli": self.enable_cli,
            "http": {
                "host": self.http.host,
                "port": self.http.port,
                "admin_token": self.http.admin_token,
                "rate_limit_per_minute": self.http.rate_limit_per_minute,
            },
            "whatsapp": {
                "auth_state_dir": str(self.whatsapp.auth_state_dir),
                "bridge_http_url": self.whatsapp.bridge_http_url,
                "bridge_ws_url": self.whatsapp.bridge_ws_url,
                "allow_groups": self.whatsapp.allow_groups,
                "max_inbound_chars": self.whatsapp.max_inbound_chars,
            },
            "owners": {
                "numbers": list(self.owners.numbers),
                "jids": list(self.owners.jids),
                "pairing_code": self.owners.pairing_code,
            },
            "reply": {
                "mode": self.reply.mode,
                "webhook_url": self.reply.webhook_url,
                "webhook_timeout_seconds": self.reply.webhook_timeout_seconds,
                "max_reply_chars": self.reply.max_reply_chars,
            },
            "codex": {
                "bin": self.codex.bin,
                "workdir": self.codex.workdir,
                "sandbox": self.codex.sandbox,
                "model": self.codex.model,
                "timeout_ms": self.codex.timeout_ms,
                "skip_git_repo_check": self.codex.skip_git_repo_check,
            },
            "working_dir": str(self.working_dir),
        }
