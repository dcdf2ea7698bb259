"""
DID Login Command Line Interface.

Provides commands for generating the service identity and running the server.
"""

import argparse
import sys
import logging

from didlogin.config import load_settings
from didlogin.errors import DIDLoginError
from didlogin.keys import generate_identity


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def cmd_init(args: argparse.Namespace) -> int:
    """Generate a new Ed25519 identity for the service."""
    keypair = generate_identity()

    if args.env:
        print(f"export DIDLOGIN_DID='{keypair.did}'")
        print(f"export DIDLOGIN_PRIVATE_KEY='{keypair.private_key_jwk}'")
    else:
        print(f"DID: {keypair.did}")
        print("\n--- PRIVATE KEY (Keep Secret / Set as DIDLOGIN_PRIVATE_KEY) ---")
        print(keypair.private_key_jwk)
        print("\n--- PUBLIC KEY ---")
        print(keypair.public_key_jwk)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the web service."""
    import uvicorn

    from didlogin.server import create_app

    try:
        settings = load_settings()
    except DIDLoginError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(args.log_level or settings.log_level)
    app = create_app(settings)

    logging.getLogger(__name__).info(
        f"Server running at http://localhost:{settings.port}/"
    )
    uvicorn.run(app, host=args.bind, port=settings.port, log_level="info")
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="didlogin",
        description="Web session login through DID wallets",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    init_parser = subparsers.add_parser("init", help="Generate a service identity")
    init_parser.add_argument("--env", action="store_true", help="Output as environment variables")

    serve_parser = subparsers.add_parser("serve", help="Run the web service (needs HOST and PORT)")
    serve_parser.add_argument("--bind", default="0.0.0.0", help="Interface to listen on")
    serve_parser.add_argument("--log-level", help="Override DIDLOGIN_LOG_LEVEL")

    args = parser.parse_args()

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "serve":
        return cmd_serve(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
