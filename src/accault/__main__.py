# Main Entry Point - runs the accault API server
#
# Configuration comes from the environment / .env; see VaultConfig.

import argparse
import logging
import sys
from dataclasses import replace

from . import __version__
from .config import VaultConfig
from .core import ConfigurationError, EventSeverity, EventType, get_audit_logger


def main():
    """Main entry point for accault."""
    parser = argparse.ArgumentParser(
        description="accault - multi-user encrypted account vault API server"
    )
    parser.add_argument("--env-file", default=None, help="Path to a .env file to load")
    parser.add_argument("--host", default=None, help="Bind host (overrides ACCAULT_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides ACCAULT_PORT)")
    parser.add_argument("--version", action="version", version=f"accault v{__version__}")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = VaultConfig.from_env(args.env_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.host or args.port:
        config = replace(config, host=args.host or config.host, port=args.port or config.port)

    from .api.main import start_api_server

    try:
        start_api_server(config)
    except KeyboardInterrupt:
        print("\n\nShutting down...")
    finally:
        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_STOP,
            severity=EventSeverity.INFO,
            message="accault API stopped",
        )


if __name__ == "__main__":
    main()
