"""
WhatsApp Gateway - Entry Point
"""

import asyncio
import argparse
import logging
import sys

import yaml

from .config import create_default_config, load_config
from .core.errors import GatewayError
from .server import run_gateway

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(
        description="WhatsApp Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with gateway.yaml (or defaults) and the interactive console
  python -m wa_gateway

  # Headless, onboarding over HTTP
  python -m wa_gateway --no-cli

  # Listen publicly (requires GATEWAY_ADMIN_TOKEN)
  GATEWAY_ADMIN_TOKEN=secret python -m wa_gateway --host 0.0.0.0

  # Write a starter gateway.yaml
  python -m wa_gateway --init-config
"""
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to gateway.yaml (default: search ./gateway.yaml, ./config/gateway.yaml)'
    )

    parser.add_argument(
        '--host',
        help='HTTP bind address (overrides config and HOST)'
    )

    parser.add_argument(
        '--port', '-p',
        type=int,
        help='HTTP port (overrides config and PORT)'
    )

    parser.add_argument(
        '--no-cli',
        action='store_true',
        help='Disable the interactive console'
    )

    parser.add_argument(
        '--init-config',
        action='store_true',
        help='Write a default gateway.yaml and exit'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.init_config:
        path = create_default_config(args.config)
        print(f"✅ Wrote {path}")
        return

    try:
        config = load_config(args.config)
    except (FileNotFoundError, GatewayError, yaml.YAMLError) as e:
        logger.error(f"Cannot load configuration: {e}")
        print(f"\n❌ Error: {e}")
        sys.exit(1)

    if args.host:
        config.http.host = args.host
    if args.port:
        config.http.port = args.port
    if args.no_cli:
        config.enable_cli = False

    try:
        await run_gateway(config, debug=args.debug)
    except GatewayError as e:
        logger.error(str(e))
        print(f"\n❌ Error: {e}")
        sys.exit(1)


def run():
    """Entry point for console script"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nBye.")


if __name__ == '__main__':
    run()
