"""
Gateway Host

Wires configuration, status, owners, reply backend, controller, HTTP
server and console together and runs them until the console exits or
the process is interrupted.
"""

import asyncio
import logging
from typing import Optional

from .channels.console import GatewayConsole
from .channels.http_server import FixedWindowRateLimiter, GatewayHTTPServer
from .channels.whatsapp.client import BridgeSocket
from .channels.whatsapp.credentials import CredentialStore
from .config import GatewayConfig
from .core.gateway import GatewayController
from .core.owners import OwnerRegistry
from .core.status import StatusStore
from .replies import create_replier

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

LOG_LEVELS = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


def configure_logging(config: GatewayConfig, debug: bool = False) -> None:
    """Set the root level and add a file handler under auth_state_dir."""
    level = logging.DEBUG if debug else LOG_LEVELS.get(config.log_level, logging.INFO)
    logging.getLogger().setLevel(level)

    auth_state_dir = config.auth_state_dir
    auth_state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(auth_state_dir / "gateway.log")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(file_handler)


def build_socket_factory(config: GatewayConfig):
    """Socket factory producing bridge-backed sockets."""
    def factory(credentials: CredentialStore) -> BridgeSocket:
        return BridgeSocket(
            credentials,
            http_url=config.whatsapp.bridge_http_url,
            ws_url=config.whatsapp.bridge_ws_url,
        )
    return factory


def build_controller(config: GatewayConfig) -> GatewayController:
    """Create status, owners, replier and the controller that ties them together."""
    status = StatusStore()

    owners = OwnerRegistry(
        config.auth_state_dir,
        owner_numbers=config.owners.numbers,
        owner_jids=config.owners.jids,
        pairing_code=config.owners.pairing_code,
    )
    owners.load_from_disk()
    status.set_owners(owners.get_owner_jids())

    replier = create_replier(config)

    return GatewayController(
        config,
        status,
        owners,
        replier,
        build_socket_factory(config),
    )


def build_http_server(config: GatewayConfig, controller: GatewayController) -> GatewayHTTPServer:
    """HTTP control surface for a controller, limited per config.http."""
    return GatewayHTTPServer(
        controller,
        host=config.http.host,
        port=config.http.port,
        admin_token=config.http.admin_token,
        rate_limiter=FixedWindowRateLimiter(max_requests=config.http.rate_limit_per_minute),
    )


async def run_gateway(config: GatewayConfig, debug: bool = False) -> None:
    """Run the gateway host"""
    configure_logging(config, debug=debug)

    controller = build_controller(config)

    # Refuses an insecure bind before anything listens
    http_server = build_http_server(config, controller)

    print("🚀 WhatsApp Gateway starting...")
    print(f"   HTTP: http://{config.http.host}:{config.http.port}")
    print(f"   Auth state: {config.auth_state_dir}")
    print(f"   Reply mode: {config.reply.mode}")
    if not controller.owners.is_paired():
        print(f"   Pairing code: {controller.get_pairing_code()}")

    console: Optional[GatewayConsole] = None
    servers = [http_server.start()]

    if config.enable_cli:
        console = GatewayConsole(controller, root_dir=config.working_dir)

        async def run_console():
            try:
                await console.run()
            finally:
                await http_server.stop()

        servers.append(run_console())
    else:
        print("CLI disabled (ENABLE_CLI=false). Use HTTP /init to start.")

    try:
        await asyncio.gather(*servers)
    finally:
        print("\n👋 Shutting down gateway...")
        await http_server.stop()
        await controller.shutdown()
        close_replier = getattr(controller.replier, "close", None)
        if close_replier is not None:
            await close_replier()
        logger.info("Gateway stopped")
