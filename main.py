#!/usr/bin/env python3
"""
OAuth Login Gateway
Sign in with GitHub, Facebook, Google or Instagram; one local user per email.
"""

import argparse
import logging
import os
import sys

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "info").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)

#
# NOTE: Keep gateway imports lazy (inside main) so `--migrate` does not import FastAPI.
#


def main() -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="OAuth login gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply pending schema migrations (POSTGRES_DSN or POSTGRES_* must be set)
  python main.py --migrate up

  # Roll back the most recent migration
  python main.py --migrate down

  # Run the HTTP server
  python main.py --serve --port 3000
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP login gateway")
    parser.add_argument(
        "--migrate",
        choices=["up", "down"],
        help="Apply pending migrations (up) or roll back the latest one (down)",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=3000, help="Server listen port (default: 3000)")

    args = parser.parse_args()

    if args.migrate:
        from gateway.store.migrate import run_cli

        return run_cli(args.migrate)

    if args.serve:
        from gateway.api.server import run

        run(host=args.host, port=args.port)
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
